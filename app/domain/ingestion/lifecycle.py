"""
Status transitions for upload records.

Two small state machines live on each record:

    status:         uploaded -> analyzing -> processed | failed
    commit_status:  not_started -> committing -> committed | failed

Every transition is a guarded update naming the state the record must be in,
so a second analysis or commit request for the same upload is rejected
instead of overwriting the first run's state.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from app.domain.uploads import uploads as upload_repository

logger = logging.getLogger(__name__)


class AnalysisStatus(str, Enum):
    UPLOADED = "uploaded"
    ANALYZING = "analyzing"
    PROCESSED = "processed"
    FAILED = "failed"


class CommitStatus(str, Enum):
    NOT_STARTED = "not_started"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"


ANALYSIS_TRANSITIONS = {
    AnalysisStatus.UPLOADED: {AnalysisStatus.ANALYZING},
    AnalysisStatus.ANALYZING: {AnalysisStatus.PROCESSED, AnalysisStatus.FAILED},
    AnalysisStatus.PROCESSED: set(),
    AnalysisStatus.FAILED: set(),
}

COMMIT_TRANSITIONS = {
    CommitStatus.NOT_STARTED: {CommitStatus.COMMITTING},
    CommitStatus.COMMITTING: {CommitStatus.COMMITTED, CommitStatus.FAILED},
    CommitStatus.COMMITTED: set(),
    CommitStatus.FAILED: set(),
}


class UploadNotFoundError(LookupError):
    """Raised when an upload id does not name a record."""

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Upload {upload_id} not found")


class InvalidTransitionError(Exception):
    """Raised when a record is not in the state a transition starts from."""

    def __init__(self, upload_id: str, current: Optional[str], target: str):
        self.upload_id = upload_id
        self.current = current
        self.target = target
        super().__init__(f"Upload {upload_id} cannot move from '{current}' to '{target}'")


def can_transition(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    return target in ANALYSIS_TRANSITIONS[current]


def can_commit_transition(current: CommitStatus, target: CommitStatus) -> bool:
    return target in COMMIT_TRANSITIONS[current]


def require_upload(upload_id: str) -> Dict[str, Any]:
    upload = upload_repository.get_upload_by_id(upload_id)
    if upload is None:
        raise UploadNotFoundError(upload_id)
    return upload


def _move(upload_id: str, current: AnalysisStatus, target: AnalysisStatus, **fields) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(upload_id, current.value, target.value)

    moved = upload_repository.update_upload_status(
        upload_id,
        expected_status=current.value,
        status=target.value,
        **fields,
    )
    if not moved:
        upload = require_upload(upload_id)
        raise InvalidTransitionError(upload_id, upload.get("status"), target.value)
    logger.info("Upload %s: %s -> %s", upload_id, current.value, target.value)


def _move_commit(
    upload_id: str,
    current: CommitStatus,
    target: CommitStatus,
    required_status: Optional[AnalysisStatus] = None,
    **fields,
) -> None:
    if not can_commit_transition(current, target):
        raise InvalidTransitionError(upload_id, current.value, target.value)

    moved = upload_repository.update_commit_status(
        upload_id,
        expected_commit_status=current.value,
        commit_status=target.value,
        required_status=required_status.value if required_status else None,
        **fields,
    )
    if not moved:
        upload = require_upload(upload_id)
        if required_status and upload.get("status") != required_status.value:
            raise InvalidTransitionError(upload_id, upload.get("status"), target.value)
        raise InvalidTransitionError(upload_id, upload.get("commit_status"), target.value)
    logger.info("Upload %s commit: %s -> %s", upload_id, current.value, target.value)


def begin_analysis(upload_id: str) -> None:
    """uploaded -> analyzing. Rejects records that were already analyzed or are being analyzed."""
    _move(upload_id, AnalysisStatus.UPLOADED, AnalysisStatus.ANALYZING)


def complete_analysis(
    upload_id: str,
    detected_type: str,
    ai_analysis: Dict[str, Any],
    total_rows: int,
) -> None:
    """analyzing -> processed, recording the label, the analysis blob and the row count."""
    _move(
        upload_id,
        AnalysisStatus.ANALYZING,
        AnalysisStatus.PROCESSED,
        detected_type=detected_type,
        ai_analysis=ai_analysis,
        total_rows=total_rows,
    )


def fail_analysis(
    upload_id: str,
    error_message: str,
    detected_type: Optional[str] = None,
    ai_analysis: Optional[Dict[str, Any]] = None,
    total_rows: Optional[int] = None,
) -> None:
    """analyzing -> failed. ``error_message`` is mandatory for a failed record."""
    _move(
        upload_id,
        AnalysisStatus.ANALYZING,
        AnalysisStatus.FAILED,
        error_message=error_message or "Analysis failed",
        detected_type=detected_type,
        ai_analysis=ai_analysis,
        total_rows=total_rows,
    )


def ensure_committable(upload: Dict[str, Any]) -> None:
    """Reject a loaded record that is not processed or whose commit already started."""
    upload_id = upload.get("id")
    if upload.get("status") != AnalysisStatus.PROCESSED.value:
        raise InvalidTransitionError(upload_id, upload.get("status"), CommitStatus.COMMITTING.value)
    if upload.get("commit_status") != CommitStatus.NOT_STARTED.value:
        raise InvalidTransitionError(upload_id, upload.get("commit_status"), CommitStatus.COMMITTING.value)


def begin_commit(upload_id: str) -> None:
    """not_started -> committing; only a processed record can be committed."""
    _move_commit(
        upload_id,
        CommitStatus.NOT_STARTED,
        CommitStatus.COMMITTING,
        required_status=AnalysisStatus.PROCESSED,
    )


def complete_commit(upload_id: str, processed_rows: int) -> None:
    _move_commit(
        upload_id,
        CommitStatus.COMMITTING,
        CommitStatus.COMMITTED,
        processed_rows=processed_rows,
    )


def fail_commit(upload_id: str, error_message: str, processed_rows: int = 0) -> None:
    # processed_rows records what did land; earlier batches are not rolled back
    _move_commit(
        upload_id,
        CommitStatus.COMMITTING,
        CommitStatus.FAILED,
        processed_rows=processed_rows,
        commit_error_message=error_message or "Commit failed",
    )
