"""
Database operations for upload records.

One row per submitted file. Rows are only mutated by the ingestion pipeline
and never deleted by it; state changes are guarded updates that name the
state the row is expected to be in, so a zero row-count means the change
was rejected.
"""
import json
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError

from app.db.session import get_engine


_table_initialized = False
_table_init_lock = threading.Lock()
_T = TypeVar("_T")

UPLOAD_COLUMNS = """
    id, company_account_id, user_id, file_name, file_url, storage_path,
    file_size, content_type, status, commit_status, detected_type,
    ai_analysis, total_rows, processed_rows, error_message,
    commit_error_message, uploaded_at, analyzed_at, committed_at, updated_at
"""

_TIMESTAMP_FIELDS = ("uploaded_at", "analyzed_at", "committed_at", "updated_at")


def ensure_uploads_table():
    """Create the uploads table on-demand if it is missing."""
    global _table_initialized
    if _table_initialized:
        return

    with _table_init_lock:
        if _table_initialized:
            return
        create_uploads_table()
        _table_initialized = True


def _reset_table_flag():
    global _table_initialized
    with _table_init_lock:
        _table_initialized = False


def _is_missing_table_error(error: ProgrammingError) -> bool:
    """Return True if the error indicates the uploads table is missing."""
    origin = getattr(error, "orig", None)
    return getattr(origin, "pgcode", None) == "42P01"


def _run_with_table_retry(operation: Callable[[], _T]) -> _T:
    """Execute a database operation and recreate uploads if it vanished."""
    try:
        return operation()
    except ProgrammingError as error:
        if not _is_missing_table_error(error):
            raise
        _reset_table_flag()
        ensure_uploads_table()
        return operation()


def create_uploads_table():
    """Create the uploads table if it doesn't exist."""
    engine = get_engine()

    statements = [
        """CREATE EXTENSION IF NOT EXISTS "pgcrypto" """,
        """
        CREATE TABLE IF NOT EXISTS uploads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            company_account_id VARCHAR(255) NOT NULL,
            user_id VARCHAR(255) NOT NULL,
            file_name VARCHAR(500) NOT NULL,
            file_url TEXT,
            storage_path VARCHAR(1000) NOT NULL,
            file_size BIGINT NOT NULL,
            content_type VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'uploaded',
            commit_status VARCHAR(20) NOT NULL DEFAULT 'not_started',
            detected_type VARCHAR(20),
            ai_analysis JSONB,
            total_rows INTEGER NOT NULL DEFAULT 0,
            processed_rows INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            commit_error_message TEXT,
            uploaded_at TIMESTAMP DEFAULT NOW(),
            analyzed_at TIMESTAMP,
            committed_at TIMESTAMP,
            updated_at TIMESTAMP DEFAULT NOW(),
            CONSTRAINT uploads_processed_le_total CHECK (processed_rows <= total_rows),
            CONSTRAINT uploads_failed_has_message CHECK (status <> 'failed' OR error_message IS NOT NULL)
        )
        """,
        """CREATE INDEX IF NOT EXISTS idx_uploads_company ON uploads(company_account_id, uploaded_at DESC)""",
        """CREATE INDEX IF NOT EXISTS idx_uploads_status ON uploads(status)""",
    ]

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))

    global _table_initialized
    _table_initialized = True


def _row_to_upload(row) -> Dict[str, Any]:
    record = dict(row._mapping)
    record["id"] = str(record["id"])
    for field in _TIMESTAMP_FIELDS:
        value = record.get(field)
        record[field] = value.isoformat() if value else None
    if isinstance(record.get("ai_analysis"), str):
        record["ai_analysis"] = json.loads(record["ai_analysis"])
    return record


def insert_upload(
    company_account_id: str,
    user_id: str,
    file_name: str,
    storage_path: str,
    file_size: int,
    file_url: Optional[str] = None,
    content_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a new upload record in state ``uploaded``."""
    ensure_uploads_table()
    engine = get_engine()

    insert_sql = f"""
    INSERT INTO uploads (
        id, company_account_id, user_id, file_name, file_url, storage_path,
        file_size, content_type, status, commit_status
    )
    VALUES (
        :id, :company_account_id, :user_id, :file_name, :file_url, :storage_path,
        :file_size, :content_type, 'uploaded', 'not_started'
    )
    RETURNING {UPLOAD_COLUMNS}
    """
    params = {
        "id": str(uuid.uuid4()),
        "company_account_id": company_account_id,
        "user_id": user_id,
        "file_name": file_name,
        "file_url": file_url,
        "storage_path": storage_path,
        "file_size": file_size,
        "content_type": content_type,
    }

    def _insert() -> Dict[str, Any]:
        with engine.begin() as conn:
            row = conn.execute(text(insert_sql), params).fetchone()
            return _row_to_upload(row)

    return _run_with_table_retry(_insert)


def is_valid_upload_id(upload_id: Any) -> bool:
    """Ids are UUIDs; anything else cannot name a row and must not reach the UUID cast."""
    try:
        uuid.UUID(str(upload_id))
    except (TypeError, ValueError):
        return False
    return True


def get_upload_by_id(upload_id: str) -> Optional[Dict[str, Any]]:
    """Get a specific upload record by ID."""
    if not is_valid_upload_id(upload_id):
        return None
    ensure_uploads_table()
    engine = get_engine()

    query_sql = f"SELECT {UPLOAD_COLUMNS} FROM uploads WHERE id = :upload_id"

    def _fetch() -> Optional[Dict[str, Any]]:
        with engine.connect() as conn:
            row = conn.execute(text(query_sql), {"upload_id": upload_id}).fetchone()
            return _row_to_upload(row) if row else None

    return _run_with_table_retry(_fetch)


def list_uploads(
    company_account_id: str,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """List a company's uploads, most recent first."""
    ensure_uploads_table()
    engine = get_engine()

    where_clauses = ["company_account_id = :company_account_id"]
    params: Dict[str, Any] = {"company_account_id": company_account_id, "offset": offset}
    if status:
        where_clauses.append("status = :status")
        params["status"] = status

    query_sql = f"""
    SELECT {UPLOAD_COLUMNS}
    FROM uploads
    WHERE {" AND ".join(where_clauses)}
    ORDER BY uploaded_at DESC, id
    """
    if limit is not None:
        query_sql += " LIMIT :limit"
        params["limit"] = limit
    query_sql += " OFFSET :offset"

    def _fetch() -> List[Dict[str, Any]]:
        with engine.connect() as conn:
            return [_row_to_upload(row) for row in conn.execute(text(query_sql), params)]

    return _run_with_table_retry(_fetch)


def count_uploads(company_account_id: str, status: Optional[str] = None) -> int:
    ensure_uploads_table()
    engine = get_engine()

    query_sql = "SELECT COUNT(*) FROM uploads WHERE company_account_id = :company_account_id"
    params: Dict[str, Any] = {"company_account_id": company_account_id}
    if status:
        query_sql += " AND status = :status"
        params["status"] = status

    def _count() -> int:
        with engine.connect() as conn:
            return int(conn.execute(text(query_sql), params).scalar() or 0)

    return _run_with_table_retry(_count)


def update_upload_status(
    upload_id: str,
    expected_status: str,
    status: str,
    detected_type: Optional[str] = None,
    ai_analysis: Optional[Dict[str, Any]] = None,
    total_rows: Optional[int] = None,
    error_message: Optional[str] = None,
) -> bool:
    """Move the analysis status from ``expected_status`` to ``status``; False when the row was elsewhere."""
    if not is_valid_upload_id(upload_id):
        return False
    ensure_uploads_table()
    engine = get_engine()

    update_parts = ["status = :status", "updated_at = NOW()"]
    params: Dict[str, Any] = {"upload_id": upload_id, "status": status, "expected_status": expected_status}

    if status in ("processed", "failed"):
        update_parts.append("analyzed_at = NOW()")
    if detected_type is not None:
        update_parts.append("detected_type = :detected_type")
        params["detected_type"] = detected_type
    if ai_analysis is not None:
        update_parts.append("ai_analysis = CAST(:ai_analysis AS JSONB)")
        params["ai_analysis"] = json.dumps(ai_analysis)
    if total_rows is not None:
        update_parts.append("total_rows = :total_rows")
        params["total_rows"] = total_rows
    if error_message is not None:
        update_parts.append("error_message = :error_message")
        params["error_message"] = error_message

    update_sql = f"""
    UPDATE uploads
    SET {", ".join(update_parts)}
    WHERE id = :upload_id AND status = :expected_status
    """

    def _update() -> bool:
        with engine.begin() as conn:
            return conn.execute(text(update_sql), params).rowcount > 0

    return _run_with_table_retry(_update)


def update_commit_status(
    upload_id: str,
    expected_commit_status: str,
    commit_status: str,
    required_status: Optional[str] = None,
    processed_rows: Optional[int] = None,
    commit_error_message: Optional[str] = None,
) -> bool:
    """Move the commit status from ``expected_commit_status`` to ``commit_status``."""
    if not is_valid_upload_id(upload_id):
        return False
    ensure_uploads_table()
    engine = get_engine()

    update_parts = ["commit_status = :commit_status", "updated_at = NOW()"]
    params: Dict[str, Any] = {
        "upload_id": upload_id,
        "commit_status": commit_status,
        "expected_commit_status": expected_commit_status,
    }
    where_parts = ["id = :upload_id", "commit_status = :expected_commit_status"]

    if required_status is not None:
        where_parts.append("status = :required_status")
        params["required_status"] = required_status
    if commit_status in ("committed", "failed"):
        update_parts.append("committed_at = NOW()")
    if processed_rows is not None:
        update_parts.append("processed_rows = :processed_rows")
        params["processed_rows"] = processed_rows
    if commit_error_message is not None:
        update_parts.append("commit_error_message = :commit_error_message")
        params["commit_error_message"] = commit_error_message

    update_sql = f"""
    UPDATE uploads
    SET {", ".join(update_parts)}
    WHERE {" AND ".join(where_parts)}
    """

    def _update() -> bool:
        with engine.begin() as conn:
            return conn.execute(text(update_sql), params).rowcount > 0

    return _run_with_table_retry(_update)
