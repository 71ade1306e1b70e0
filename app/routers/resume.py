import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response

from app.core.config import settings
from app.core.exceptions import HandleReleasedError
from app.core.limiter import limiter
from app.core.logging import owner_var
from app.routers.auth_deps import Principal, get_current_user
from app.schemas.resume import (
    DeletionResponse, IngestionAcceptedResponse, IngestionStatusResponse, ResumeReviewResponse
)
from app.services.ingestion import UploadedDocument
from app.services.reconciler import ReviewEntry
from app.services.review_session import ReviewSession, SessionRegistry, session_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/resumes")


def get_session_registry() -> SessionRegistry:
    return session_registry


async def get_review_session(
    current_user: Principal = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> ReviewSession:
    owner_var.set(current_user.subject)
    return registry.get(current_user.subject)


def _to_response(entry: ReviewEntry) -> ResumeReviewResponse:
    record = entry.record
    preview_url = None
    if entry.handle is not None and not entry.handle.released:
        preview_url = f"{settings.api_prefix}/resumes/{record.id}/preview"
    return ResumeReviewResponse(
        id=record.id,
        company_name=record.company_name,
        job_title=record.job_title,
        job_description=record.job_description,
        status="pending" if record.is_pending else "complete",
        feedback=record.feedback,
        created_at=record.created_at,
        preview_url=preview_url,
    )


@router.post("", status_code=202, response_model=IngestionAcceptedResponse)
@limiter.limit(settings.upload_rate_limit)
async def upload_resume(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    company_name: str = Form(""),
    job_title: str = Form(""),
    job_description: str = Form(""),
    session: ReviewSession = Depends(get_review_session),
):
    """
    Accept a PDF resume and start its ingestion in the background.
    Progress is exposed through the ingestion status endpoint.
    """
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file.")
    if len(data) > settings.ingestion.max_upload_mb * 1024 * 1024:
        raise HTTPException(status_code=413, detail="File exceeds size limit.")
    if not data.startswith(b"%PDF-"):
        raise HTTPException(status_code=400, detail="Only PDF resumes are supported.")

    document = UploadedDocument(
        filename=file.filename or "resume.pdf",
        data=data,
        content_type=file.content_type or "application/pdf",
    )
    orchestrator = session.start_ingestion()
    background_tasks.add_task(
        session.run_ingestion, orchestrator, document, company_name, job_title, job_description
    )
    logger.info(
        f"Queued ingestion {orchestrator.ingestion_id} for {document.filename}",
        extra={"size": len(data)},
    )
    return IngestionAcceptedResponse(
        ingestion_id=orchestrator.ingestion_id,
        state=orchestrator.state.value,
        status_text=orchestrator.status_text,
    )


@router.get("/ingestions/{ingestion_id}", response_model=IngestionStatusResponse)
def get_ingestion_status(ingestion_id: str, session: ReviewSession = Depends(get_review_session)):
    orchestrator = session.get_ingestion(ingestion_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Ingestion not found")
    return IngestionStatusResponse(**orchestrator.snapshot())


@router.get("", response_model=List[ResumeReviewResponse])
async def list_resumes(session: ReviewSession = Depends(get_review_session)):
    collection = await session.refresh()
    return [_to_response(entry) for entry in collection]


@router.get("/{resume_id}", response_model=ResumeReviewResponse)
async def get_resume(resume_id: str, session: ReviewSession = Depends(get_review_session)):
    entry = await session.get(resume_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Resume not found")
    return _to_response(entry)


@router.get("/{resume_id}/preview")
async def get_resume_preview(resume_id: str, session: ReviewSession = Depends(get_review_session)):
    entry = await session.get(resume_id)
    if entry is None or entry.handle is None:
        raise HTTPException(status_code=404, detail="Preview not available")
    try:
        content = entry.handle.read()
    except HandleReleasedError:
        raise HTTPException(status_code=404, detail="Preview not available")
    return Response(content=content, media_type=entry.handle.content_type)


@router.delete("/{resume_id}", response_model=DeletionResponse)
async def delete_resume(resume_id: str, session: ReviewSession = Depends(get_review_session)):
    result = await session.delete(resume_id)
    return DeletionResponse(id=resume_id, **result.to_dict())
