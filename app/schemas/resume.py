from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class ResumeReviewResponse(BaseModel):
    id: str
    company_name: str
    job_title: str
    job_description: str
    status: str  # "pending" until the analysis has been stored, then "complete"
    feedback: Optional[Dict[str, Any]] = None
    created_at: Optional[int] = None
    preview_url: Optional[str] = None


class IngestionAcceptedResponse(BaseModel):
    ingestion_id: str
    state: str
    status_text: str
    message: str = "Resume received. Analysis in progress."


class IngestionStatusResponse(BaseModel):
    ingestion_id: str
    state: str
    status_text: str
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    record_id: Optional[str] = None
    transitions: List[List[str]] = []


class DeletionResponse(BaseModel):
    id: str
    blob_resume_deleted: bool
    blob_image_deleted: bool
    kv_deleted: bool
    handle_released: bool
    removed_from_collection: bool
    shadowed_keys_deleted: int = 0
