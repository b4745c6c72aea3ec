"""
Upload intake: store the file bytes, then write the metadata row.

The record exists only once both have succeeded. If the metadata write
fails after the bytes were stored, the stored object is removed so storage
does not accumulate orphans; a failed cleanup is logged, never raised.
"""
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.config import settings
from app.domain.uploads import uploads as upload_repository
from app.integrations import storage

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


class UploadRejectedError(ValueError):
    """Input error: the file is empty, too large, or not a supported spreadsheet type."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


def max_upload_bytes() -> int:
    return settings.upload_max_file_size_mb * 1024 * 1024


def _path_segment(value: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", value.strip()).strip("._")


def sanitize_file_name(file_name: str) -> str:
    """``"Q1 rent roll (final).csv"`` -> ``"Q1_rent_roll_final_.csv"``."""
    return _path_segment(os.path.basename(file_name or "")) or "upload"


def build_storage_path(company_id: str, file_name: str, now: Optional[datetime] = None) -> str:
    stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
    return f"uploads/{_path_segment(company_id) or 'unknown'}/{stamp}_{sanitize_file_name(file_name)}"


def validate_upload(file_name: str, content_type: Optional[str], file_size: int) -> None:
    """Reject files over the size ceiling or whose type is not CSV/XLS/XLSX."""
    if file_size <= 0:
        raise UploadRejectedError(f"{file_name} is empty")
    if file_size > max_upload_bytes():
        raise UploadRejectedError(
            f"{file_name} is too large. Maximum allowed upload size is {settings.upload_max_file_size_mb}MB.",
            status_code=413,
        )

    extension = os.path.splitext(file_name or "")[1].lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    # Browsers report CSV as anything from text/plain to application/octet-stream
    if mime not in settings.allowed_upload_content_types and extension not in settings.allowed_upload_extensions:
        raise UploadRejectedError(
            f"Unsupported file type for {file_name}. Please upload a CSV, XLS or XLSX file."
        )


def register_upload(
    file_content: bytes,
    file_name: str,
    content_type: Optional[str],
    company_id: str,
    user_id: str,
) -> Dict[str, Any]:
    """
    Validate, store and record one submitted file.

    Returns:
        The new upload record, in status ``uploaded``.

    Raises:
        UploadRejectedError: missing owner, empty, oversized or unsupported file
        StorageUploadError: the bytes could not be stored
    """
    if not company_id or not user_id:
        raise UploadRejectedError("company_id and user_id are required")
    validate_upload(file_name, content_type, len(file_content))

    storage_path = build_storage_path(company_id, file_name)
    stored = storage.upload_file(file_content, storage_path, content_type=content_type)

    try:
        record = upload_repository.insert_upload(
            company_account_id=company_id,
            user_id=user_id,
            file_name=file_name,
            storage_path=stored["file_path"],
            file_size=len(file_content),
            file_url=stored.get("file_url"),
            content_type=content_type,
        )
    except Exception:
        logger.exception("Failed to record upload metadata for %s; removing stored file", storage_path)
        if not storage.delete_file(storage_path):
            logger.error("Could not remove orphaned upload %s", storage_path)
        raise

    logger.info("Upload %s stored for company %s (%d bytes)", record["id"], company_id, len(file_content))
    return record
