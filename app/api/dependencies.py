"""
Shared dependencies and helpers for the API routers.

``get_oracle_dependency`` is overridable through ``app.dependency_overrides``
so tests can swap the oracle for a deterministic one.
"""
from fastapi import HTTPException

from app.domain.ingestion.lifecycle import InvalidTransitionError, UploadNotFoundError
from app.domain.ingestion.oracle import ClassificationOracle, get_oracle
from app.domain.ingestion.parser import ParseError
from app.domain.ingestion.schemas import RecordValidationError, UnsupportedDataTypeError
from app.domain.uploads.intake import UploadRejectedError
from app.integrations.storage import StorageError


def get_oracle_dependency() -> ClassificationOracle:
    """The classification oracle selected by configuration."""
    return get_oracle()


def domain_http_exception(exc: Exception) -> HTTPException:
    """
    Translate an ingestion error into the HTTP error the caller should see.

    Anything that is not a known domain error becomes a 500; callers log
    those with traceback before raising.
    """
    if isinstance(exc, UploadNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UnsupportedDataTypeError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, UploadRejectedError):
        return HTTPException(status_code=exc.status_code, detail=str(exc))
    if isinstance(exc, RecordValidationError):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "dataType": exc.data_type, "errors": exc.row_errors},
        )
    if isinstance(exc, ParseError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=502, detail=f"Storage error: {exc}")
    return HTTPException(status_code=500, detail=f"{type(exc).__name__}: {exc}")
