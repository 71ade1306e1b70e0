"""
Per-user review sessions.

A session owns the canonical collection shown to one user, the ingestions it
has started and the stores behind them. The collection is replaced only by
refresh(), which releases the superseded collection's display handles, and
shrinks only through delete().
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from typing import Callable, Dict, Optional

from app.core.config import IngestionSettings, settings
from app.core.exceptions import IngestionError
from app.database import SessionLocal
from app.services.analysis_client import AnalysisClient, OpenRouterAnalysisClient
from app.services.deletion import DeletionCoordinator, DeletionResult
from app.services.ingestion import IngestionOrchestrator, UploadedDocument
from app.services.rasterizer import RasterizedImage, convert_pdf_to_image
from app.services.reconciler import CollectionReconciler, ResumeCollection, ReviewEntry
from app.services.record_codec import ResumeRecord
from app.stores.blob_store import BlobStore, build_blob_store
from app.stores.kv_store import KeyValueStore, SqlKeyValueStore

logger = logging.getLogger(__name__)


class ReviewSession:
    def __init__(
        self,
        owner: str,
        blob_store: BlobStore,
        kv_store: KeyValueStore,
        analysis_client: AnalysisClient,
        rasterizer: Callable[[bytes, str], RasterizedImage] = convert_pdf_to_image,
        ingestion_settings: Optional[IngestionSettings] = None,
    ):
        self.owner = owner
        self.blob_store = blob_store
        self.kv_store = kv_store
        self.analysis_client = analysis_client
        self.rasterizer = rasterizer
        self.settings = ingestion_settings or settings.ingestion

        self.reconciler = CollectionReconciler(blob_store, kv_store, self.settings.record_prefix)
        self.deleter = DeletionCoordinator(blob_store, kv_store, self.settings.record_prefix)
        self.collection: Optional[ResumeCollection] = None
        self.ingestions: "OrderedDict[str, IngestionOrchestrator]" = OrderedDict()
        self._lock = asyncio.Lock()

    # --- ingestion ---

    def start_ingestion(self) -> IngestionOrchestrator:
        orchestrator = IngestionOrchestrator(
            self.blob_store, self.kv_store, self.analysis_client, self.rasterizer, self.settings
        )
        self.ingestions[orchestrator.ingestion_id] = orchestrator
        self._trim_history()
        return orchestrator

    def _trim_history(self) -> None:
        finished = [key for key, job in self.ingestions.items() if job.finished]
        while len(self.ingestions) > self.settings.history_size and finished:
            self.ingestions.pop(finished.pop(0), None)

    def get_ingestion(self, ingestion_id: str) -> Optional[IngestionOrchestrator]:
        return self.ingestions.get(ingestion_id)

    async def run_ingestion(
        self,
        orchestrator: IngestionOrchestrator,
        document: UploadedDocument,
        company_name: str,
        job_title: str,
        job_description: str,
    ) -> Optional[str]:
        """Background entry point; the outcome is read back from the orchestrator."""
        try:
            return await orchestrator.ingest(document, company_name, job_title, job_description)
        except IngestionError as e:
            logger.warning(
                f"Ingestion {orchestrator.ingestion_id} failed: {e.message}",
                extra={"owner": self.owner, "failure_kind": e.kind.value},
            )
            return None

    # --- collection ---

    async def refresh(self) -> ResumeCollection:
        async with self._lock:
            fresh = await self.reconciler.reconcile_all()
            superseded, self.collection = self.collection, fresh
            if superseded is not None:
                superseded.release()
            return fresh

    async def get(self, record_id: str) -> Optional[ReviewEntry]:
        if self.collection is None or record_id not in self.collection:
            await self.refresh()
        return self.collection.get(record_id)

    async def delete(self, record_id: str) -> DeletionResult:
        if self.collection is None or record_id not in self.collection:
            await self.refresh()
        async with self._lock:
            # A refresh may have swapped the collection while we waited for the lock
            entry = self.collection.get(record_id) if self.collection is not None else None
            if entry is None:
                # Unknown here; still clear the deterministic key in case it exists
                entry = ReviewEntry(record=ResumeRecord(id=record_id))
            return await self.deleter.delete(entry, self.collection)

    def close(self) -> None:
        if self.collection is not None:
            released = self.collection.release()
            logger.info(f"Closed review session for {self.owner}, released {released} handles")
            self.collection = None


def build_review_session(owner: str) -> ReviewSession:
    blob_store = build_blob_store(settings.storage, owner)
    kv_store = SqlKeyValueStore(SessionLocal, owner)
    analysis_client = OpenRouterAnalysisClient(
        blob_store, settings.ai, timeout=settings.ingestion.analysis_timeout_seconds
    )
    rasterizer = functools.partial(convert_pdf_to_image, dpi=settings.ingestion.preview_dpi)
    return ReviewSession(owner, blob_store, kv_store, analysis_client, rasterizer)


class SessionRegistry:
    def __init__(self, factory: Callable[[str], ReviewSession] = build_review_session):
        self.factory = factory
        self._sessions: Dict[str, ReviewSession] = {}

    def get(self, owner: str) -> ReviewSession:
        session = self._sessions.get(owner)
        if session is None:
            session = self.factory(owner)
            self._sessions[owner] = session
        return session

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()


session_registry = SessionRegistry()
