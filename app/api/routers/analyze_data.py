"""
Classification endpoint for rows the client already parsed.
"""
import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import domain_http_exception, get_oracle_dependency
from app.api.schemas.shared import AnalyzeDataRequest, AnalyzeDataResponse, UploadRecordInfo
from app.domain.ingestion.oracle import ClassificationOracle
from app.domain.ingestion.pipeline import analyze_upload
from app.domain.ingestion.schemas import SchemaLabel
from app.domain.uploads import uploads as upload_repository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


@router.post("/analyze-data", response_model=AnalyzeDataResponse)
def analyze_data_endpoint(
    request: AnalyzeDataRequest,
    oracle: ClassificationOracle = Depends(get_oracle_dependency),
):
    """
    Classify an upload's rows and, when ``allRows`` is larger than the
    sample, normalize the full set.

    Request body (camelCase):
    - uploadId: Upload in status 'uploaded'
    - headers: Parsed header row
    - sampleRows: Rows to classify from (at most 5 are sent to the model)
    - allRows: Optional full row set to normalize

    Returns:
    - analysis: detectedType, confidence, normalizedData, suggestions, errors
    - upload: the record after analysis ('processed' or 'failed')

    A second request for the same upload is rejected with 409.
    """
    sample_rows = request.string_rows(request.sample_rows)
    all_rows = request.string_rows(request.all_rows) if request.all_rows is not None else None

    try:
        result = analyze_upload(
            request.upload_id,
            request.headers,
            sample_rows,
            all_rows=all_rows,
            oracle=oracle,
        )
    except Exception as e:
        error = domain_http_exception(e)
        if error.status_code >= 500:
            logger.exception("Analysis of upload %s failed", request.upload_id)
        raise error

    record = upload_repository.get_upload_by_id(request.upload_id)
    return AnalyzeDataResponse(
        success=result.detected_type is not SchemaLabel.UNKNOWN,
        analysis=result,
        upload=UploadRecordInfo(**record) if record else None,
    )
