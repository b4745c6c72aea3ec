"""
Classification client.

Sends a bounded sample of rows to the oracle and enforces the response
contract. Classification failure is data, not a control-flow fault:
``classify`` never raises, and every failure produces the designated
fallback result (``unknown`` with zero confidence).
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.config import settings
from app.domain.ingestion.oracle import ClassificationOracle, call_with_timeout, get_oracle
from app.domain.ingestion.schemas import SchemaLabel

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTION = "Unable to analyze data automatically. Please check the format."


class ClassificationResult(BaseModel):
    """Oracle verdict for one upload. Wire names are camelCase (``detectedType``)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    detected_type: SchemaLabel
    confidence: float = Field(ge=0.0, le=1.0)
    normalized_data: List[Dict[str, Any]] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @field_validator("detected_type", mode="before")
    @classmethod
    def _lowercase_label(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def is_fallback(self) -> bool:
        """True for the 'no usable classification' value, never a real zero-confidence guess."""
        return self.detected_type is SchemaLabel.UNKNOWN and self.confidence == 0

    def analysis_summary(self) -> Dict[str, Any]:
        """The part of the result persisted on the upload record."""
        return {
            "confidence": self.confidence,
            "suggestions": list(self.suggestions),
            "errors": list(self.errors),
        }


def fallback_result(error: Exception) -> ClassificationResult:
    return ClassificationResult(
        detected_type=SchemaLabel.UNKNOWN,
        confidence=0.0,
        normalized_data=[],
        suggestions=[FALLBACK_SUGGESTION],
        errors=[f"Analysis failed: {str(error) or type(error).__name__}"],
    )


def _duplicate_headers(headers: List[str]) -> List[str]:
    seen = set()
    duplicates = []
    for header in headers:
        if header in seen and header not in duplicates:
            duplicates.append(header)
        seen.add(header)
    return duplicates


def classify(
    headers: List[str],
    sample_rows: List[Dict[str, str]],
    max_sample: Optional[int] = None,
    oracle: Optional[ClassificationOracle] = None,
    timeout_seconds: Optional[float] = None,
) -> ClassificationResult:
    """
    Classify a table from its headers and at most ``max_sample`` rows.

    Args:
        headers: Column headers as parsed.
        sample_rows: Rows to sample from; only the first ``max_sample`` are sent.
        max_sample: Sample bound (defaults to ``settings.oracle_sample_size``).
        oracle: Oracle to ask (defaults to the configured provider).
        timeout_seconds: Caller-enforced bound on the oracle call.

    Returns:
        The oracle's result, or the fallback result on transport error,
        timeout, or a response that does not match the contract.
    """
    if max_sample is None:
        max_sample = settings.oracle_sample_size
    if timeout_seconds is None:
        timeout_seconds = settings.oracle_timeout_seconds
    sample = [dict(row) for row in list(sample_rows)[:max(max_sample, 0)]]

    try:
        oracle = oracle or get_oracle()
        raw = call_with_timeout(oracle.classify, timeout_seconds, list(headers), sample)
        result = ClassificationResult.model_validate(raw)
    except Exception as exc:
        logger.warning("Classification failed, returning fallback result: %s", exc)
        return fallback_result(exc)

    duplicates = _duplicate_headers(headers)
    if duplicates:
        result.suggestions.append(
            f"Duplicate column headers make the mapping ambiguous: {', '.join(duplicates)}"
        )

    logger.info(
        "Classified %d sampled rows as %s (confidence %.2f) via %s",
        len(sample),
        result.detected_type.value,
        result.confidence,
        getattr(oracle, "name", type(oracle).__name__),
    )
    return result
