from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain.ingestion.classifier import ClassificationResult


class CamelModel(BaseModel):
    """Request/response bodies of the ingestion endpoints: camelCase on the wire, snake_case accepted."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadRecordInfo(BaseModel):
    """One upload record as stored"""
    id: str
    company_account_id: str
    user_id: str
    file_name: str
    file_url: Optional[str] = None
    storage_path: str
    file_size: int
    content_type: Optional[str] = None
    status: str
    commit_status: str
    detected_type: Optional[str] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    total_rows: int = 0
    processed_rows: int = 0
    error_message: Optional[str] = None
    commit_error_message: Optional[str] = None
    uploaded_at: Optional[str] = None
    analyzed_at: Optional[str] = None
    committed_at: Optional[str] = None
    updated_at: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool
    message: str
    file_url: Optional[str] = None
    upload: UploadRecordInfo


class UploadListResponse(BaseModel):
    success: bool
    uploads: List[UploadRecordInfo]
    total_count: int
    limit: Optional[int] = None
    offset: int = 0


class UploadDetailResponse(BaseModel):
    success: bool
    upload: UploadRecordInfo


class UploadStatisticsResponse(BaseModel):
    success: bool
    company_id: str
    total_uploads: int
    by_status: Dict[str, int]
    by_commit_status: Dict[str, int]
    by_detected_type: Dict[str, int]
    total_rows_committed: int


class AnalyzeDataRequest(CamelModel):
    upload_id: str
    headers: List[str] = Field(min_length=1)
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list)
    all_rows: Optional[List[Dict[str, Any]]] = None

    def string_rows(self, rows: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        """Cells arrive as JSON scalars; the pipeline works on strings."""
        return [
            {str(key): "" if value is None else str(value) for key, value in row.items()}
            for row in rows
        ]


class AnalyzeDataResponse(CamelModel):
    success: bool
    analysis: ClassificationResult
    upload: Optional[UploadRecordInfo] = None


class SaveDataRequest(CamelModel):
    upload_id: str
    data_type: str
    normalized_data: List[Dict[str, Any]]
    company_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class SaveDataResponse(CamelModel):
    success: bool
    inserted_count: int
    target_table: str
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    message: str
