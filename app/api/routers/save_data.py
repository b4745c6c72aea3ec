"""
Commit endpoint: write an analyzed upload's records to their target table.
"""
import logging

from fastapi import APIRouter, HTTPException

from app.api.dependencies import domain_http_exception
from app.api.schemas.shared import SaveDataRequest, SaveDataResponse
from app.domain.ingestion.commit import commit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["commit"])


@router.post("/save-data", response_model=SaveDataResponse)
def save_data_endpoint(request: SaveDataRequest):
    """
    Validate and insert normalized records in batches.

    - 400: unsupported dataType
    - 404: unknown upload (or one owned by another company)
    - 409: upload not processed, or already committed
    - 422: records fail validation; nothing is written
    - 500: a batch insert failed; ``detail.insertedCount`` rows from earlier
      batches were kept and later batches were not attempted
    """
    try:
        result = commit(
            request.upload_id,
            request.data_type,
            request.normalized_data,
            company_id=request.company_id,
            user_id=request.user_id,
        )
    except Exception as e:
        error = domain_http_exception(e)
        if error.status_code >= 500:
            logger.exception("Commit of upload %s failed", request.upload_id)
        raise error

    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={
                "message": f"Failed to save data after inserting {result.inserted_count} rows",
                "insertedCount": result.inserted_count,
                "targetTable": result.target_table,
                "errors": result.errors,
                "warnings": result.warnings,
            },
        )

    return SaveDataResponse(
        success=True,
        inserted_count=result.inserted_count,
        target_table=result.target_table,
        errors=[],
        warnings=result.warnings,
        message=f"Successfully saved {result.inserted_count} {result.target_table} records",
    )
