"""
Commit stage: validate normalized records and insert them, in batches, into
the one target table their data type names.

Batches are inserted in order, each in its own transaction. The first batch
that fails stops the commit: rows from earlier batches stay in place and
later batches are never attempted, so ``inserted_count`` is exactly the size
of the batches before the failing one.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.db.target_tables import get_building_ids, insert_rows
from app.domain.ingestion import lifecycle
from app.domain.ingestion.schemas import (
    RecordValidationError,
    SchemaLabel,
    parse_schema_label,
    validate_records,
)

logger = logging.getLogger(__name__)

TARGET_TABLES: Dict[SchemaLabel, str] = {
    SchemaLabel.TENANTS: "tenants",
    SchemaLabel.BUILDINGS: "buildings",
    SchemaLabel.EXPENSES: "expenses",
    SchemaLabel.UNITS: "units",
    SchemaLabel.PAYMENTS: "payments",
}


@dataclass
class CommitResult:
    inserted_count: int
    target_table: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def target_table_for(data_type: Any) -> str:
    """Single table for a label; raises UnsupportedDataTypeError for anything else."""
    return TARGET_TABLES[parse_schema_label(data_type)]


def _resolve_buildings(records: List[Dict[str, Any]], company_id: str) -> List[str]:
    """Swap tenant ``building`` names for ``building_id``; returns a warning per unmatched name."""
    names_needed = any(record.get("building") and not record.get("building_id") for record in records)
    building_ids = get_building_ids(company_id) if names_needed else {}

    unmatched: List[str] = []
    for record in records:
        name = record.pop("building", None)
        if record.get("building_id") or not name:
            continue
        building_id = building_ids.get(str(name).strip().lower())
        if building_id:
            record["building_id"] = building_id
        elif name not in unmatched:
            unmatched.append(name)

    return [f"Building '{name}' not found; tenants were saved without a building" for name in unmatched]


def _batches(records: List[Dict[str, Any]], size: int):
    for start in range(0, len(records), size):
        yield records[start:start + size]


def commit(
    upload_id: str,
    data_type: Any,
    normalized_records: List[Dict[str, Any]],
    company_id: str,
    user_id: str,
    batch_size: Optional[int] = None,
) -> CommitResult:
    """
    Persist an analyzed upload's records.

    Raises before anything is written:
        UnsupportedDataTypeError: ``data_type`` is not one of the five labels
        UploadNotFoundError: no such upload for ``company_id``
        RecordValidationError: a record does not conform to its schema
        InvalidTransitionError: the upload is not processed, or a commit already ran

    Batch insert failures do not raise; they end the commit and are reported
    in ``CommitResult.errors``.
    """
    label = parse_schema_label(data_type)
    table_name = TARGET_TABLES[label]
    batch_size = max(batch_size or settings.commit_batch_size, 1)

    upload = lifecycle.require_upload(upload_id)
    if upload.get("company_account_id") != company_id:
        raise lifecycle.UploadNotFoundError(upload_id)
    # total_rows is only meaningful once analysis has finished
    lifecycle.ensure_committable(upload)

    records = list(normalized_records or [])
    total_rows = int(upload.get("total_rows") or 0)
    if len(records) > total_rows:
        raise RecordValidationError(
            label.value,
            [f"Upload {upload_id} has {total_rows} rows but {len(records)} records were submitted"],
        )

    validated = validate_records(label, records)
    lifecycle.begin_commit(upload_id)

    inserted_count = 0
    errors: List[str] = []
    warnings: List[str] = []
    try:
        if label is SchemaLabel.TENANTS:
            warnings.extend(_resolve_buildings(validated, company_id))

        for record in validated:
            record["company_account_id"] = company_id
            record["user_id"] = user_id
            record["upload_id"] = upload_id

        for number, batch in enumerate(_batches(validated, batch_size), start=1):
            try:
                insert_rows(table_name, batch)
            except Exception as exc:
                logger.error("Batch %d of upload %s into %s failed: %s", number, upload_id, table_name, exc)
                errors.append(f"{table_name.capitalize()}: {exc}")
                break
            inserted_count += len(batch)
            logger.info("Inserted batch %d (%d rows) of upload %s into %s", number, len(batch), upload_id, table_name)

        if errors:
            lifecycle.fail_commit(upload_id, "; ".join(errors), processed_rows=inserted_count)
        else:
            lifecycle.complete_commit(upload_id, processed_rows=inserted_count)
    except Exception as exc:
        logger.exception("Commit of upload %s failed", upload_id)
        try:
            lifecycle.fail_commit(upload_id, str(exc) or type(exc).__name__, processed_rows=inserted_count)
        except Exception as cleanup_error:
            logger.warning("Could not mark commit of upload %s as failed: %s", upload_id, cleanup_error)
        raise

    return CommitResult(
        inserted_count=inserted_count,
        target_table=table_name,
        errors=errors,
        warnings=warnings,
    )
