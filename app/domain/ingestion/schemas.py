"""
Canonical record shapes for the five ingestible data types.

Normalized rows reach the commit stage either from the oracle or, when the
oracle failed, as the untouched spreadsheet rows. Every row is therefore
validated against the pydantic model for its schema label before insertion;
the models also coerce the loose values spreadsheets carry ("$1,200.50",
"03/15/2024", "Moving out") into the stored types.
"""
import re
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.utils.date import parse_flexible_date


class SchemaLabel(str, Enum):
    """Data types the classifier can detect."""
    TENANTS = "tenants"
    BUILDINGS = "buildings"
    EXPENSES = "expenses"
    UNITS = "units"
    PAYMENTS = "payments"
    UNKNOWN = "unknown"


KNOWN_LABELS = [label for label in SchemaLabel if label is not SchemaLabel.UNKNOWN]


class UnsupportedDataTypeError(ValueError):
    """Raised when a commit names a data type with no target table."""


class RecordValidationError(ValueError):
    """Raised when normalized rows do not conform to their canonical schema."""

    def __init__(self, data_type: str, row_errors: List[str]):
        self.data_type = data_type
        self.row_errors = row_errors
        super().__init__(f"{len(row_errors)} {data_type} record(s) failed validation")


def parse_schema_label(value: Any) -> SchemaLabel:
    """Map a free-form label onto one of the five known labels or raise."""
    label = str(value or "").strip().lower()
    for known in KNOWN_LABELS:
        if known.value == label:
            return known
    raise UnsupportedDataTypeError(f"Unsupported data type: {value!r}")


_NUMBER_NOISE = re.compile(r'[\s$€£,]')


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def coerce_number(value: Any) -> Optional[float]:
    """Turn spreadsheet amounts ("$1,200.50", "(75)", 12) into floats."""
    if _blank(value):
        return None
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = _NUMBER_NOISE.sub("", str(value))
    negative = text.startswith("(") and text.endswith(")")
    try:
        number = float(text.strip("()"))
    except ValueError:
        raise ValueError(f"expected a number, got {value!r}") from None
    return -number if negative else number


def coerce_integer(value: Any) -> Optional[int]:
    number = coerce_number(value)
    if number is None:
        return None
    if not number.is_integer():
        raise ValueError(f"expected a whole number, got {value!r}")
    return int(number)


def coerce_date(value: Any) -> Optional[str]:
    if _blank(value):
        return None
    parsed = parse_flexible_date(value, log_context="commit")
    if parsed is None:
        raise ValueError(f"expected a date, got {value!r}")
    return parsed


def coerce_choice(value: Any, separator: str = "-") -> Optional[str]:
    """Lower-case enum values and unify separators ("Moving Out" -> "moving-out")."""
    if _blank(value):
        return None
    return re.sub(r'[\s_-]+', separator, str(value).strip().lower())


class CanonicalRecord(BaseModel):
    """
    Base for canonical records.

    Blank cells are dropped before validation so optional fields stay None and
    enum fields take their documented default; unknown keys are ignored.
    """
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    number_fields: ClassVar[Tuple[str, ...]] = ()
    integer_fields: ClassVar[Tuple[str, ...]] = ()
    date_fields: ClassVar[Tuple[str, ...]] = ()
    choice_separators: ClassVar[Dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_cells(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {key: value for key, value in data.items() if not _blank(value)}

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_loose_values(cls, value: Any, info) -> Any:
        name = info.field_name
        if name in cls.number_fields:
            return coerce_number(value)
        if name in cls.integer_fields:
            return coerce_integer(value)
        if name in cls.date_fields:
            return coerce_date(value)
        if name in cls.choice_separators:
            return coerce_choice(value, cls.choice_separators[name])
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Numeric cells in text columns (unit "4", phone 5551234)
            if name in cls.model_fields and cls.model_fields[name].annotation in (str, Optional[str]):
                return str(int(value)) if float(value).is_integer() else str(value)
        return value


class TenantRecord(CanonicalRecord):
    number_fields = ("monthly_rent", "arrears")
    date_fields = ("move_in_date", "move_out_date")
    choice_separators = {"status": "-", "rent_status": "-"}

    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    building: Optional[str] = None
    building_id: Optional[str] = None
    unit: str = Field(min_length=1)
    # Bulk tenant imports have always defaulted a missing move-in to the import day
    move_in_date: date = Field(default_factory=date.today)
    move_out_date: Optional[date] = None
    monthly_rent: float = Field(default=0, ge=0)
    status: Literal["active", "moving-out", "moved-out"] = "active"
    rent_status: Literal["current", "late"] = "current"
    arrears: float = Field(default=0, ge=0)


class BuildingRecord(CanonicalRecord):
    integer_fields = ("total_units", "floors", "year_built")
    choice_separators = {"status": "-"}

    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    building_type: Optional[str] = None
    total_units: int = Field(default=0, ge=0)
    floors: Optional[int] = Field(default=None, ge=0)
    year_built: Optional[int] = Field(default=None, ge=1600, le=2200)
    status: Literal["active", "maintenance", "archived"] = "active"


class ExpenseRecord(CanonicalRecord):
    number_fields = ("amount",)
    date_fields = ("expense_date",)
    choice_separators = {"status": "-"}

    category: str = Field(min_length=1)
    description: Optional[str] = None
    amount: float = Field(ge=0)
    expense_date: date
    vendor: Optional[str] = None
    payment_method: Optional[str] = None
    status: Literal["pending", "paid", "overdue"] = "pending"


class UnitRecord(CanonicalRecord):
    number_fields = ("size_sqft", "rent_amount")
    integer_fields = ("bedrooms", "bathrooms")
    choice_separators = {"status": "-"}

    unit_number: str = Field(min_length=1)
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    size_sqft: Optional[float] = Field(default=None, ge=0)
    rent_amount: float = Field(default=0, ge=0)
    status: Literal["vacant", "occupied", "maintenance"] = "vacant"


class PaymentRecord(CanonicalRecord):
    number_fields = ("amount",)
    date_fields = ("payment_date",)
    choice_separators = {"status": "-", "payment_type": "_"}

    amount: float = Field(ge=0)
    payment_type: Literal["rent", "deposit", "maintenance", "utility", "late_fee", "other"] = "other"
    payment_method: Optional[str] = None
    payment_date: date
    status: Literal["pending", "completed", "failed", "refunded"] = "pending"
    reference_number: Optional[str] = None
    description: Optional[str] = None


RECORD_MODELS: Dict[SchemaLabel, Type[CanonicalRecord]] = {
    SchemaLabel.TENANTS: TenantRecord,
    SchemaLabel.BUILDINGS: BuildingRecord,
    SchemaLabel.EXPENSES: ExpenseRecord,
    SchemaLabel.UNITS: UnitRecord,
    SchemaLabel.PAYMENTS: PaymentRecord,
}


def canonical_fields(label: SchemaLabel) -> List[str]:
    """Field names of the canonical shape for a label, in declaration order."""
    return list(RECORD_MODELS[label].model_fields.keys())


def _format_validation_error(row_number: int, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "record"
        problems.append(f"{field}: {item.get('msg')}")
    return f"Row {row_number}: " + "; ".join(problems)


def validate_records(label: SchemaLabel, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate and coerce every record for ``label``.

    Returns plain dicts ready for insertion. Raises RecordValidationError with
    one message per failing row (1-indexed) when any row does not conform.
    """
    model = RECORD_MODELS[label]
    validated: List[Dict[str, Any]] = []
    row_errors: List[str] = []

    for index, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            row_errors.append(f"Row {index}: expected an object, got {type(record).__name__}")
            continue
        try:
            validated.append(model.model_validate(record).model_dump())
        except ValidationError as exc:
            row_errors.append(_format_validation_error(index, exc))

    if row_errors:
        raise RecordValidationError(label.value, row_errors)
    return validated
