"""
Upload history for a company: the records themselves, newest first, and a
small aggregate view over them.
"""
from collections import Counter
from typing import Any, Dict, List, Optional

from app.domain.uploads import uploads as upload_repository


def get_upload_history(
    company_id: str,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """All upload records for ``company_id``, most recent first."""
    return upload_repository.list_uploads(company_id, status=status, limit=limit, offset=offset)


def get_upload_statistics(company_id: str) -> Dict[str, Any]:
    """
    Aggregate a company's uploads.

    Returns:
        Dictionary with ``total_uploads``, counts ``by_status``,
        ``by_commit_status`` and ``by_detected_type`` (records never
        classified are left out of the latter), and ``total_rows_committed``.
    """
    records = upload_repository.list_uploads(company_id)

    by_status = Counter(record.get("status") for record in records)
    by_commit_status = Counter(record.get("commit_status") for record in records)
    by_detected_type = Counter(record["detected_type"] for record in records if record.get("detected_type"))

    return {
        "total_uploads": len(records),
        "by_status": dict(by_status),
        "by_commit_status": dict(by_commit_status),
        "by_detected_type": dict(by_detected_type),
        "total_rows_committed": sum(int(record.get("processed_rows") or 0) for record in records),
    }
