"""
Classification oracles.

An oracle looks at spreadsheet headers and rows and answers two questions:
which of the five property-management schemas the data represents, and what
the rows look like in that schema's canonical shape. Two implementations
share the same narrow interface:

- ``AnthropicOracle`` asks Claude through LangChain. Its answers are
  non-deterministic and the call is slow and fallible.
- ``HeuristicOracle`` matches header names against per-schema synonym lists.
  Deterministic; used when no model credential is configured and in tests.

Oracles raise ``OracleError`` on any failure. Turning failures into fallback
values is the job of the classifier and normalizer, not of the oracle.
"""
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from app.core.config import settings
from app.domain.ingestion.schemas import KNOWN_LABELS, RECORD_MODELS, SchemaLabel, canonical_fields

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class OracleError(Exception):
    """Raised when the oracle cannot produce a usable answer."""
    pass


class OracleTimeoutError(OracleError):
    """Raised when the oracle does not answer within the configured bound."""
    pass


def call_with_timeout(func: Callable[..., _T], timeout_seconds: Optional[float], *args: Any) -> _T:
    """
    Run ``func(*args)`` and give up after ``timeout_seconds``.

    The worker thread is abandoned, not joined, on timeout; the underlying
    HTTP client carries the same bound so the thread ends shortly after.
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return func(*args)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=timeout_seconds)
    except FuturesTimeoutError as exc:
        future.cancel()
        raise OracleTimeoutError(f"Oracle did not respond within {timeout_seconds} seconds") from exc
    finally:
        executor.shutdown(wait=False)


class ClassificationOracle:
    """Interface shared by every oracle implementation."""

    name = "oracle"

    def classify(self, headers: List[str], sample_rows: List[Dict[str, str]]) -> Dict[str, Any]:
        """Return a raw classification payload (detectedType, confidence, normalizedData, ...)."""
        raise NotImplementedError

    def normalize(self, headers: List[str], rows: List[Dict[str, str]], label: SchemaLabel) -> List[Dict[str, Any]]:
        """Return one canonical record per input row, in input order."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Heuristic oracle
# ---------------------------------------------------------------------------

FIELD_SYNONYMS: Dict[SchemaLabel, Dict[str, List[str]]] = {
    SchemaLabel.TENANTS: {
        "name": ["name", "tenant", "tenant_name", "full_name", "resident", "resident_name"],
        "email": ["email", "email_address", "e_mail"],
        "phone": ["phone", "phone_number", "mobile", "telephone", "cell"],
        "building": ["building", "building_name", "property", "property_name"],
        "building_id": ["building_id"],
        "unit": ["unit", "unit_number", "unit_no", "apartment", "apt"],
        "move_in_date": ["move_in_date", "move_in", "lease_start", "lease_start_date", "start_date"],
        "move_out_date": ["move_out_date", "move_out", "lease_end", "lease_end_date", "end_date"],
        "monthly_rent": ["monthly_rent", "rent", "rent_amount"],
        "status": ["status", "tenant_status"],
        "rent_status": ["rent_status", "payment_status"],
        "arrears": ["arrears", "balance", "balance_due", "outstanding"],
    },
    SchemaLabel.BUILDINGS: {
        "name": ["name", "building", "building_name", "property", "property_name"],
        "address": ["address", "street", "street_address"],
        "city": ["city", "town"],
        "building_type": ["building_type", "property_type", "type"],
        "total_units": ["total_units", "units", "unit_count", "number_of_units"],
        "floors": ["floors", "stories", "floor_count"],
        "year_built": ["year_built", "built", "construction_year"],
        "status": ["status"],
    },
    SchemaLabel.EXPENSES: {
        "category": ["category", "expense_type", "expense_category", "type"],
        "description": ["description", "details", "memo", "notes"],
        "amount": ["amount", "cost", "total", "expense_amount"],
        "expense_date": ["expense_date", "date", "invoice_date", "paid_on"],
        "vendor": ["vendor", "supplier", "payee", "contractor"],
        "payment_method": ["payment_method", "method", "paid_by"],
        "status": ["status", "expense_status"],
    },
    SchemaLabel.UNITS: {
        "unit_number": ["unit_number", "unit", "unit_no", "apartment", "apt"],
        "bedrooms": ["bedrooms", "beds", "bedroom", "br"],
        "bathrooms": ["bathrooms", "baths", "bathroom", "ba"],
        "size_sqft": ["size_sqft", "sqft", "square_feet", "size", "area"],
        "rent_amount": ["rent_amount", "rent", "monthly_rent", "asking_rent"],
        "status": ["status", "occupancy", "occupancy_status"],
    },
    SchemaLabel.PAYMENTS: {
        "amount": ["amount", "amount_paid", "payment_amount", "paid"],
        "payment_type": ["payment_type", "type", "category"],
        "payment_method": ["payment_method", "method"],
        "payment_date": ["payment_date", "date", "paid_on", "transaction_date"],
        "status": ["status", "payment_status"],
        "reference_number": ["reference_number", "reference", "ref", "transaction_id", "receipt", "receipt_number"],
        "description": ["description", "memo", "notes"],
    },
}


def normalize_header(header: str) -> str:
    """``"Move-In Date "`` -> ``"move_in_date"``."""
    return re.sub(r'[^a-z0-9]+', '_', header.strip().lower()).strip('_')


def _required_fields(label: SchemaLabel) -> List[str]:
    model = RECORD_MODELS[label]
    return [name for name, info in model.model_fields.items() if info.is_required()]


def map_headers(headers: List[str], label: SchemaLabel) -> Dict[str, str]:
    """Map canonical field -> source header for ``label``; each header is used once."""
    normalized = {header: normalize_header(header) for header in headers}
    used = set()
    mapping: Dict[str, str] = {}

    for field_name, synonyms in FIELD_SYNONYMS[label].items():
        for synonym in synonyms:
            match = next(
                (header for header in headers if header not in used and normalized[header] == synonym),
                None,
            )
            if match is not None:
                mapping[field_name] = match
                used.add(match)
                break
    return mapping


class HeuristicOracle(ClassificationOracle):
    """Rule-based oracle: header synonyms decide both the label and the field mapping."""

    name = "heuristic"

    def score(self, headers: List[str], label: SchemaLabel) -> Tuple[float, Dict[str, str]]:
        mapping = map_headers(headers, label)
        required = _required_fields(label)
        required_hit = sum(1 for field_name in required if field_name in mapping)
        required_share = required_hit / len(required) if required else 1.0
        header_share = len(mapping) / len(headers) if headers else 0.0
        return round(0.5 * required_share + 0.5 * header_share, 2), mapping

    def classify(self, headers: List[str], sample_rows: List[Dict[str, str]]) -> Dict[str, Any]:
        best_label = SchemaLabel.UNKNOWN
        best_score = 0.0
        best_mapping: Dict[str, str] = {}
        for label in KNOWN_LABELS:
            label_score, mapping = self.score(headers, label)
            if label_score > best_score:
                best_label, best_score, best_mapping = label, label_score, mapping

        if best_label is SchemaLabel.UNKNOWN:
            return {
                "detectedType": SchemaLabel.UNKNOWN.value,
                "confidence": 0.0,
                "normalizedData": [],
                "suggestions": ["Rename columns to match a known layout (e.g. name, email, unit for tenants)."],
                "errors": ["No column matched a known property-management schema"],
            }

        unmapped = [header for header in headers if header not in best_mapping.values()]
        missing = [field_name for field_name in _required_fields(best_label) if field_name not in best_mapping]
        suggestions = []
        errors = []
        if unmapped:
            suggestions.append(f"Columns not recognised and ignored: {', '.join(unmapped)}")
        if missing:
            errors.append(f"Missing required {best_label.value} fields: {', '.join(missing)}")

        return {
            "detectedType": best_label.value,
            "confidence": best_score,
            "normalizedData": self._apply(sample_rows, best_mapping),
            "suggestions": suggestions,
            "errors": errors,
        }

    def normalize(self, headers: List[str], rows: List[Dict[str, str]], label: SchemaLabel) -> List[Dict[str, Any]]:
        return self._apply(rows, map_headers(headers, label))

    @staticmethod
    def _apply(rows: List[Dict[str, str]], mapping: Dict[str, str]) -> List[Dict[str, Any]]:
        return [
            {field_name: row.get(header, "") for field_name, header in mapping.items()}
            for row in rows
        ]


# ---------------------------------------------------------------------------
# LLM oracle
# ---------------------------------------------------------------------------

CLASSIFY_SYSTEM_PROMPT = (
    "You are a data analysis expert specializing in property management data. "
    "Always respond with a single valid JSON object and nothing else."
)

NORMALIZE_SYSTEM_PROMPT = (
    "You are a data transformation expert for property management data. "
    "Always respond with a single valid JSON array of objects and nothing else."
)

SCHEMA_GUIDE = """TENANTS: name (string), email (string), phone (string), building (building name), unit (string),
  move_in_date (YYYY-MM-DD), move_out_date (YYYY-MM-DD or null), monthly_rent (number),
  status (active|moving-out|moved-out), rent_status (current|late), arrears (number)
BUILDINGS: name, address, city, building_type (string), total_units (integer), floors (integer),
  year_built (integer), status (active|maintenance|archived)
EXPENSES: category, description, amount (number), expense_date (YYYY-MM-DD), vendor, payment_method,
  status (pending|paid|overdue)
UNITS: unit_number (string), bedrooms (integer), bathrooms (integer), size_sqft (number), rent_amount (number),
  status (vacant|occupied|maintenance)
PAYMENTS: amount (number), payment_type (rent|deposit|maintenance|utility|late_fee|other), payment_method,
  payment_date (YYYY-MM-DD), status (pending|completed|failed|refunded), reference_number, description"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _render_rows(rows: List[Dict[str, str]]) -> str:
    return "\n".join(f"Row {index}: {json.dumps(row, ensure_ascii=False)}" for index, row in enumerate(rows, start=1))


def extract_json(content: Any) -> Any:
    """Parse the JSON payload of a model reply, tolerating a Markdown code fence around it."""
    if isinstance(content, list):
        # Anthropic content blocks
        content = "".join(block.get("text", "") if isinstance(block, dict) else str(block) for block in content)
    text = str(content or "").strip()
    if not text:
        raise OracleError("Empty response from oracle")

    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Oracle response is not valid JSON: {exc}") from exc


class AnthropicOracle(ClassificationOracle):
    """Oracle backed by a Claude model through LangChain."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.anthropic_api_key or "").strip()
        self.model = model or settings.oracle_model
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.oracle_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.oracle_max_retries
        self._llm = None

    def _get_llm(self) -> ChatAnthropic:
        if not self.api_key:
            raise OracleError("Anthropic API key not configured. Set ANTHROPIC_API_KEY in your environment.")
        if self._llm is None:
            self._llm = ChatAnthropic(
                model=self.model,
                api_key=self.api_key,
                temperature=0.1,
                max_tokens=4096,
                timeout=self.timeout_seconds,
                max_retries=self.max_retries,
            )
        return self._llm

    def _ask(self, system_prompt: str, prompt: str) -> Any:
        llm = self._get_llm()
        try:
            response = llm.invoke([SystemMessage(content=system_prompt), HumanMessage(content=prompt)])
        except Exception as exc:
            raise OracleError(f"Oracle request failed: {exc}") from exc
        return extract_json(response.content)

    def classify(self, headers: List[str], sample_rows: List[Dict[str, str]]) -> Dict[str, Any]:
        labels = "|".join(label.value for label in SchemaLabel)
        prompt = f"""Analyze this spreadsheet and determine what type of property management data it represents.

Headers: {", ".join(headers)}

Sample rows ({len(sample_rows)}):
{_render_rows(sample_rows)}

Possible data types: tenants, buildings, expenses, units, payments. Use unknown when none fits.

Canonical schemas:
{SCHEMA_GUIDE}

Respond with a JSON object:
{{
  "detectedType": "{labels}",
  "confidence": 0.0-1.0,
  "normalizedData": [the sample rows transformed to the detected schema],
  "suggestions": ["improvements the uploader could make"],
  "errors": ["data quality problems you noticed"]
}}"""
        payload = self._ask(CLASSIFY_SYSTEM_PROMPT, prompt)
        if not isinstance(payload, dict):
            raise OracleError("Oracle classification response is not a JSON object")
        return payload

    def normalize(self, headers: List[str], rows: List[Dict[str, str]], label: SchemaLabel) -> List[Dict[str, Any]]:
        fields = ", ".join(canonical_fields(label))
        prompt = f"""Transform ALL {len(rows)} rows of this {label.value} data to the canonical {label.value.upper()} schema.

Headers: {", ".join(headers)}

Rows:
{_render_rows(rows)}

Canonical schemas:
{SCHEMA_GUIDE}

Return a JSON array with exactly {len(rows)} objects, one per row and in the same order, using only these keys: {fields}.
Use null for missing optional fields. Dates must be YYYY-MM-DD; numbers must be plain JSON numbers."""
        payload = self._ask(NORMALIZE_SYSTEM_PROMPT, prompt)
        if not isinstance(payload, list):
            raise OracleError("Oracle normalization response is not a JSON array")
        return payload


def get_oracle() -> ClassificationOracle:
    """Build the oracle selected by ``settings.oracle_provider``."""
    provider = (settings.oracle_provider or "anthropic").strip().lower()
    if provider == "heuristic":
        return HeuristicOracle()
    if provider == "anthropic":
        return AnthropicOracle()
    raise ValueError(f"Unknown oracle provider: {settings.oracle_provider!r}")
