"""
Upload intake, history and server-side analysis endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from app.api.dependencies import domain_http_exception, get_oracle_dependency
from app.api.schemas.shared import (
    AnalyzeDataResponse,
    UploadDetailResponse,
    UploadListResponse,
    UploadRecordInfo,
    UploadResponse,
    UploadStatisticsResponse,
)
from app.domain.ingestion import lifecycle
from app.domain.ingestion.oracle import ClassificationOracle
from app.domain.ingestion.pipeline import analyze_stored_upload
from app.domain.ingestion.schemas import SchemaLabel
from app.domain.uploads import uploads as upload_repository
from app.domain.uploads.history import get_upload_history, get_upload_statistics
from app.domain.uploads.intake import register_upload, validate_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("", response_model=UploadResponse)
async def upload_file_endpoint(
    file: UploadFile = File(...),
    company_id: str = Form(...),
    user_id: str = Form(...),
):
    """
    Store a spreadsheet and create its upload record.

    Parameters:
    - file: CSV, XLS or XLSX file (10MB max)
    - company_id: Owning company
    - user_id: Submitting user

    Returns:
    - The upload record in status 'uploaded' and the stored file's URL
    """
    file_name = file.filename or "upload"
    try:
        # Reject on the declared size before buffering the body
        if file.size is not None:
            validate_upload(file_name, file.content_type, file.size)
        file_content = await file.read()
        record = register_upload(
            file_content=file_content,
            file_name=file_name,
            content_type=file.content_type,
            company_id=company_id,
            user_id=user_id,
        )
    except Exception as e:
        error = domain_http_exception(e)
        if error.status_code >= 500:
            logger.exception("Upload of %s failed", file.filename)
        raise error

    return UploadResponse(
        success=True,
        message="File uploaded successfully",
        file_url=record.get("file_url"),
        upload=UploadRecordInfo(**record),
    )


@router.get("", response_model=UploadListResponse)
async def list_uploads_endpoint(
    company_id: str = Query(..., min_length=1),
    status: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
):
    """
    Upload history for a company, most recent first.

    Parameters:
    - company_id: Company whose uploads to list
    - status: Filter by analysis status ('uploaded', 'analyzing', 'processed', 'failed')
    - limit / offset: Optional pagination
    """
    try:
        records = get_upload_history(company_id, status=status, limit=limit, offset=offset)
        total_count = upload_repository.count_uploads(company_id, status=status)
    except Exception as e:
        logger.exception("Failed to list uploads for company %s", company_id)
        raise HTTPException(status_code=500, detail=f"Failed to list uploads: {str(e)}")

    return UploadListResponse(
        success=True,
        uploads=[UploadRecordInfo(**record) for record in records],
        total_count=total_count,
        limit=limit,
        offset=offset,
    )


@router.get("/statistics", response_model=UploadStatisticsResponse)
async def upload_statistics_endpoint(company_id: str = Query(..., min_length=1)):
    """Counts of a company's uploads by status, commit status and detected type."""
    try:
        stats = get_upload_statistics(company_id)
    except Exception as e:
        logger.exception("Failed to compute upload statistics for company %s", company_id)
        raise HTTPException(status_code=500, detail=f"Failed to retrieve statistics: {str(e)}")

    return UploadStatisticsResponse(success=True, company_id=company_id, **stats)


@router.get("/{upload_id}", response_model=UploadDetailResponse)
async def get_upload_endpoint(upload_id: str):
    try:
        record = lifecycle.require_upload(upload_id)
    except Exception as e:
        error = domain_http_exception(e)
        if error.status_code >= 500:
            logger.exception("Failed to load upload %s", upload_id)
        raise error

    return UploadDetailResponse(success=True, upload=UploadRecordInfo(**record))


@router.post("/{upload_id}/analyze", response_model=AnalyzeDataResponse)
def analyze_stored_upload_endpoint(
    upload_id: str,
    oracle: ClassificationOracle = Depends(get_oracle_dependency),
):
    """
    Download the stored file, parse it and classify it.

    A file with no data rows moves the record to 'failed' and returns 422.
    """
    try:
        result = analyze_stored_upload(upload_id, oracle=oracle)
    except Exception as e:
        error = domain_http_exception(e)
        if error.status_code >= 500:
            logger.exception("Analysis of stored upload %s failed", upload_id)
        raise error

    record = upload_repository.get_upload_by_id(upload_id)
    return AnalyzeDataResponse(
        success=result.detected_type is not SchemaLabel.UNKNOWN,
        analysis=result,
        upload=UploadRecordInfo(**record) if record else None,
    )
