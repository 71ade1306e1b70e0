"""
Resume ingestion pipeline.

Drives one upload through an explicit state machine:

    PENDING -> UPLOADING -> CONVERTING -> UPLOADING_IMAGE -> PERSISTING_DRAFT
            -> ANALYZING -> PERSISTING_FINAL -> DONE

Any active state may move to FAILED. Steps run strictly in order; each remote
call is a suspension point and the uploads and the analysis are raced against
a timer. The draft written in PERSISTING_DRAFT is never rolled back: a record
with pending feedback is a valid outcome the user can see and re-upload from.
"""

import asyncio
import dataclasses
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.config import IngestionSettings
from app.core.exceptions import (
    AnalysisFailed,
    ConversionFailed,
    FailureKind,
    IngestionError,
    InvalidTransition,
    OperationTimeout,
    PersistFailed,
    UploadFailed,
)
from app.core.prompts import prepare_instructions
from app.services.analysis_client import AnalysisClient
from app.services.rasterizer import RasterizedImage
from app.services.record_codec import ResumeRecord, encode_record, storage_key_for
from app.stores.blob_store import BlobStore
from app.stores.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class IngestionState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    CONVERTING = "converting"
    UPLOADING_IMAGE = "uploading_image"
    PERSISTING_DRAFT = "persisting_draft"
    ANALYZING = "analyzing"
    PERSISTING_FINAL = "persisting_final"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE = {
    IngestionState.PENDING: IngestionState.UPLOADING,
    IngestionState.UPLOADING: IngestionState.CONVERTING,
    IngestionState.CONVERTING: IngestionState.UPLOADING_IMAGE,
    IngestionState.UPLOADING_IMAGE: IngestionState.PERSISTING_DRAFT,
    IngestionState.PERSISTING_DRAFT: IngestionState.ANALYZING,
    IngestionState.ANALYZING: IngestionState.PERSISTING_FINAL,
    IngestionState.PERSISTING_FINAL: IngestionState.DONE,
}

STATUS_TEXT = {
    IngestionState.PENDING: "Waiting to start...",
    IngestionState.UPLOADING: "Uploading the file...",
    IngestionState.CONVERTING: "Converting to image...",
    IngestionState.UPLOADING_IMAGE: "Uploading the image...",
    IngestionState.PERSISTING_DRAFT: "Preparing data...",
    IngestionState.ANALYZING: "Analyzing...",
    IngestionState.PERSISTING_FINAL: "Saving feedback...",
    IngestionState.DONE: "Analysis complete",
}


@dataclass(frozen=True)
class UploadedDocument:
    filename: str
    data: bytes
    content_type: str = "application/pdf"


async def call_with_timeout(func: Callable, *args: Any, timeout: float, operation: str) -> Any:
    """
    Run a blocking collaborator call off the event loop, racing it against a timer.

    Once the timer wins the caller gets OperationTimeout; the worker thread is
    abandoned and whatever it eventually returns is discarded.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError:
        raise OperationTimeout(operation, timeout) from None


def extract_feedback_text(response: Any) -> str:
    """Normalize the analysis reply: content is a string or a list led by a text part."""
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        raise ValueError(f"Unexpected analysis response type: {type(response).__name__}")

    message = response.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return content
    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict) and isinstance(first.get("text"), str):
            return first["text"]
    raise ValueError("Analysis response carries no text content")


def parse_feedback(text: str) -> Dict[str, Any]:
    """Parse the feedback JSON object, tolerating prose or code fences around it."""
    try:
        data = json.loads(text)
    except ValueError:
        json_match = re.search(r"\{.*\}", text or "", re.DOTALL)
        if not json_match:
            raise ValueError("Analysis result is not JSON")
        data = json.loads(json_match.group())
    if not isinstance(data, dict) or not data:
        raise ValueError("Analysis result is not a JSON object")
    return data


def feedback_from_response(response: Any) -> Dict[str, Any]:
    """Structured replies are taken as they are; text replies are parsed."""
    structured = None
    if isinstance(response, dict) and "message" not in response:
        structured = response
    elif isinstance(response, dict) and isinstance(response.get("message"), dict):
        content = response["message"].get("content")
        if isinstance(content, dict):
            structured = content
    if structured is None:
        return parse_feedback(extract_feedback_text(response))
    if not structured:
        raise ValueError("Analysis result is an empty object")
    return structured


class IngestionOrchestrator:
    """Runs a single ingestion. Create one instance per uploaded document."""

    def __init__(
        self,
        blob_store: BlobStore,
        kv_store: KeyValueStore,
        analysis_client: AnalysisClient,
        rasterizer: Callable[[bytes, str], RasterizedImage],
        ingestion_settings: Optional[IngestionSettings] = None,
    ):
        self.blob_store = blob_store
        self.kv_store = kv_store
        self.analysis_client = analysis_client
        self.rasterizer = rasterizer
        self.settings = ingestion_settings or IngestionSettings()

        self.ingestion_id = uuid.uuid4().hex
        self.state = IngestionState.PENDING
        self.status_text = STATUS_TEXT[IngestionState.PENDING]
        self.failure_kind: Optional[FailureKind] = None
        self.error: Optional[str] = None
        self.record_id: Optional[str] = None
        self.storage_key: Optional[str] = None
        self.transitions: List[Tuple[IngestionState, IngestionState]] = []

    # --- state machine ---

    def _advance(self, target: IngestionState) -> None:
        if _NEXT_STATE.get(self.state) != target:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {target.value}")
        self.transitions.append((self.state, target))
        self.state = target
        self.status_text = STATUS_TEXT[target]
        logger.info(f"Ingestion {self.ingestion_id}: {self.status_text}")

    def _fail(self, error: IngestionError) -> None:
        if self.state in (IngestionState.DONE, IngestionState.FAILED):
            raise InvalidTransition(f"Cannot fail a finished ingestion ({self.state.value})")
        self.transitions.append((self.state, IngestionState.FAILED))
        self.state = IngestionState.FAILED
        self.failure_kind = error.kind
        self.status_text = error.status_text
        self.error = error.message

    @property
    def finished(self) -> bool:
        return self.state in (IngestionState.DONE, IngestionState.FAILED)

    # --- pipeline ---

    async def ingest(self, document: UploadedDocument, company_name: str, job_title: str, job_description: str) -> str:
        if self.state != IngestionState.PENDING:
            raise InvalidTransition("An orchestrator runs a single ingestion")

        uploaded: List[str] = []
        try:
            self._advance(IngestionState.UPLOADING)
            resume_path = await self._upload(
                document.data, document.filename, document.content_type,
                UploadFailed, "document upload",
            )
            uploaded.append(resume_path)

            self._advance(IngestionState.CONVERTING)
            image = await self._convert(document)

            self._advance(IngestionState.UPLOADING_IMAGE)
            image_path = await self._upload(
                image.data, image.filename, image.content_type,
                lambda message: UploadFailed(message, status_text="Error: Failed to upload image"),
                "image upload",
            )
            uploaded.append(image_path)

            self._advance(IngestionState.PERSISTING_DRAFT)
            record_id = str(uuid.uuid4())
            draft = ResumeRecord(
                id=record_id,
                resume_path=resume_path,
                image_path=image_path,
                company_name=company_name,
                job_title=job_title,
                job_description=job_description,
                feedback=None,
                created_at=int(time.time() * 1000),
                storage_key=storage_key_for(record_id, self.settings.record_prefix),
            )
            await self._persist(draft)
        except IngestionError as e:
            self._fail(e)
            await self._discard_uploads(uploaded)
            logger.warning(f"Ingestion {self.ingestion_id} aborted before any record was written: {e.message}")
            raise

        # From here on the draft stays in place whatever happens
        self.record_id = draft.id
        self.storage_key = draft.storage_key
        try:
            self._advance(IngestionState.ANALYZING)
            feedback = await self._analyze(draft)

            self._advance(IngestionState.PERSISTING_FINAL)
            await self._persist(dataclasses.replace(draft, feedback=feedback))
        except IngestionError as e:
            self._fail(e)
            logger.warning(f"Ingestion {self.ingestion_id} left draft {draft.storage_key} pending: {e.message}")
            raise

        self._advance(IngestionState.DONE)
        return draft.id

    async def _upload(self, data: bytes, filename: str, content_type: str, failure, operation: str) -> str:
        try:
            path = await call_with_timeout(
                self.blob_store.upload, data, filename, content_type,
                timeout=self.settings.upload_timeout_seconds, operation=operation,
            )
        except OperationTimeout:
            raise
        except Exception as e:
            raise failure(f"{operation} failed: {e}") from e
        if not path:
            raise failure(f"{operation} returned no path")
        return path

    async def _convert(self, document: UploadedDocument) -> RasterizedImage:
        try:
            image = await asyncio.to_thread(self.rasterizer, document.data, document.filename)
        except Exception as e:
            raise ConversionFailed(f"Conversion of {document.filename} failed: {e}") from e
        if image is None or not image.data:
            raise ConversionFailed(f"Conversion of {document.filename} produced no image")
        return image

    async def _persist(self, record: ResumeRecord) -> None:
        try:
            await asyncio.to_thread(self.kv_store.set, record.key, encode_record(record))
        except Exception as e:
            raise PersistFailed(f"Failed to write {record.key}: {e}") from e

    async def _analyze(self, record: ResumeRecord) -> Dict[str, Any]:
        instructions = prepare_instructions(record.job_title, record.job_description)
        try:
            response = await call_with_timeout(
                self.analysis_client.analyze, record.resume_path, instructions,
                timeout=self.settings.analysis_timeout_seconds, operation="analysis",
            )
        except OperationTimeout:
            raise
        except Exception as e:
            raise AnalysisFailed(f"Analysis request failed: {e}") from e
        if not response:
            raise AnalysisFailed("Analysis service returned no result")

        try:
            return feedback_from_response(response)
        except ValueError as e:
            raise AnalysisFailed(f"Malformed analysis result: {e}") from e

    async def _discard_uploads(self, paths: List[str]) -> None:
        for path in paths:
            try:
                await asyncio.to_thread(self.blob_store.delete, path)
            except Exception as e:
                logger.warning(f"Could not remove orphaned blob {path}: {e}")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "ingestion_id": self.ingestion_id,
            "state": self.state.value,
            "status_text": self.status_text,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "error": self.error,
            "record_id": self.record_id,
            "transitions": [(src.value, dst.value) for src, dst in self.transitions],
        }
