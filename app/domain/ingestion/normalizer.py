"""
Bulk normalization of a full row set against a confirmed schema label.

The oracle is asked in chunks so each call stays within the model's output
budget. Any failure falls back to the original rows unchanged; the commit
stage validates every record, so a fallback surfaces there as validation
errors instead of failing the analysis.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.domain.ingestion.oracle import ClassificationOracle, OracleError, call_with_timeout, get_oracle
from app.domain.ingestion.schemas import SchemaLabel

logger = logging.getLogger(__name__)


@dataclass
class NormalizationReport:
    records: List[Dict[str, Any]]
    error: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return self.error is not None


def _originals(rows: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    return [dict(row) for row in rows]


def normalize_with_report(
    headers: List[str],
    all_rows: List[Dict[str, str]],
    detected_type: SchemaLabel,
    oracle: Optional[ClassificationOracle] = None,
    timeout_seconds: Optional[float] = None,
    chunk_size: Optional[int] = None,
) -> NormalizationReport:
    """Normalize every row and say whether the original rows were returned instead."""
    if detected_type is SchemaLabel.UNKNOWN:
        return NormalizationReport(_originals(all_rows), "Cannot normalize rows without a known data type")

    if timeout_seconds is None:
        timeout_seconds = settings.oracle_timeout_seconds
    chunk_size = max(chunk_size or settings.normalize_chunk_size, 1)
    rows = list(all_rows)

    normalized: List[Dict[str, Any]] = []
    try:
        oracle = oracle or get_oracle()
        for start in range(0, len(rows), chunk_size):
            chunk = rows[start:start + chunk_size]
            records = call_with_timeout(oracle.normalize, timeout_seconds, list(headers), chunk, detected_type)
            if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
                raise OracleError("Oracle returned something other than a list of records")
            if len(records) != len(chunk):
                raise OracleError(
                    f"Oracle returned {len(records)} records for rows {start + 1}-{start + len(chunk)}"
                )
            normalized.extend(records)
    except Exception as exc:
        logger.warning(
            "Bulk normalization of %d %s rows failed, keeping original rows: %s",
            len(rows),
            detected_type.value,
            exc,
        )
        return NormalizationReport(_originals(rows), f"Normalization failed: {exc}")

    logger.info("Normalized %d %s rows", len(normalized), detected_type.value)
    return NormalizationReport(normalized)


def normalize_all(
    headers: List[str],
    all_rows: List[Dict[str, str]],
    detected_type: SchemaLabel,
    oracle: Optional[ClassificationOracle] = None,
    timeout_seconds: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Transform every row to the canonical shape of ``detected_type``; never raises."""
    return normalize_with_report(headers, all_rows, detected_type, oracle, timeout_seconds).records
