"""
Collection reconciliation.

Rebuilds the canonical collection of resume reviews from the flat key-value
namespace. The namespace may hold repeated keys, stale drafts next to their
completed counterparts, entries deleted mid-scan and payloads that are not
records at all; every entry resolves to Loaded or Skipped and only Loaded
entries reach the collection.
"""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

from app.core.exceptions import RecordDecodeError
from app.services.display_handles import DisplayHandle, DisplayHandleRegistry
from app.services.record_codec import RECORD_PREFIX, ResumeRecord, decode_record
from app.stores.blob_store import BlobStore
from app.stores.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Loaded:
    key: str
    record: ResumeRecord


@dataclass(frozen=True)
class Skipped:
    key: str
    reason: str


EntryOutcome = Union[Loaded, Skipped]


@dataclass
class ReviewEntry:
    """A reconciled record plus its preview handle, if the preview could be fetched."""
    record: ResumeRecord
    handle: Optional[DisplayHandle] = None

    @property
    def id(self) -> str:
        return self.record.id


@dataclass
class ResumeCollection:
    """Ordered, id-unique set of review entries. Owns the display handles it hands out."""
    handles: DisplayHandleRegistry = field(default_factory=DisplayHandleRegistry)
    skipped: List[Skipped] = field(default_factory=list)
    _entries: Dict[str, ReviewEntry] = field(default_factory=dict)
    # Records stored under other keys for an id that lost deduplication
    _shadowed: Dict[str, List[ResumeRecord]] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ReviewEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._entries

    def get(self, record_id: str) -> Optional[ReviewEntry]:
        return self._entries.get(record_id)

    def put(self, entry: ReviewEntry) -> None:
        # Re-assigning an existing id keeps its original position
        self._entries[entry.id] = entry

    def remove(self, record_id: str) -> Optional[ReviewEntry]:
        self._shadowed.pop(record_id, None)
        return self._entries.pop(record_id, None)

    def shadow(self, record: ResumeRecord) -> None:
        self._shadowed.setdefault(record.id, []).append(record)

    def shadowed(self, record_id: str) -> List[ResumeRecord]:
        return list(self._shadowed.get(record_id, []))

    def release(self) -> int:
        """Release every handle this collection created."""
        return self.handles.release_all()


class CollectionReconciler:
    def __init__(self, blob_store: BlobStore, kv_store: KeyValueStore, prefix: str = RECORD_PREFIX):
        self.blob_store = blob_store
        self.kv_store = kv_store
        self.prefix = prefix

    async def reconcile_all(self) -> ResumeCollection:
        collection = ResumeCollection()
        try:
            keys = await asyncio.to_thread(self.kv_store.list, f"{self.prefix}*")
        except Exception as e:
            logger.error(f"Listing {self.prefix}* failed, returning an empty collection: {e}")
            return collection

        for key in dict.fromkeys(keys or []):
            outcome = await self._load(key)
            if isinstance(outcome, Skipped):
                self._skip(collection, outcome)
                continue
            await self._admit(collection, outcome)

        logger.info(
            f"Reconciled {len(collection)} reviews",
            extra={"skipped": len(collection.skipped)},
        )
        return collection

    async def _load(self, key: str) -> EntryOutcome:
        try:
            raw = await asyncio.to_thread(self.kv_store.get, key)
        except Exception as e:
            return Skipped(key, f"unreadable: {e}")
        if not raw:
            # Deleted between listing and reading
            return Skipped(key, "missing")
        try:
            return Loaded(key, decode_record(raw, storage_key=key))
        except RecordDecodeError as e:
            return Skipped(key, f"malformed: {e}")

    async def _admit(self, collection: ResumeCollection, loaded: Loaded) -> None:
        record = loaded.record
        kept = collection.get(record.id)
        if kept is not None:
            # Only feedback presence is compared, not createdAt or content. When
            # both duplicates are complete the first one seen is kept, which
            # may not be the most recent analysis.
            if not (kept.record.is_pending and not record.is_pending):
                collection.shadow(record)
                self._skip(collection, Skipped(loaded.key, f"duplicate of {kept.record.key}"))
                return
            if kept.handle is not None:
                kept.handle.release()
            collection.shadow(kept.record)
            self._skip(collection, Skipped(kept.record.key, f"superseded by {loaded.key}"))

        handle = await self._hydrate(collection, record)
        collection.put(ReviewEntry(record=record, handle=handle))

    async def _hydrate(self, collection: ResumeCollection, record: ResumeRecord) -> Optional[DisplayHandle]:
        if not record.image_path:
            return None
        try:
            data = await asyncio.to_thread(self.blob_store.read, record.image_path)
        except Exception as e:
            logger.warning(f"Preview for {record.id} unavailable: {e}")
            return None
        if not data:
            logger.warning(f"Preview for {record.id} not found at {record.image_path}")
            return None
        content_type = mimetypes.guess_type(record.image_path)[0] or "image/png"
        return collection.handles.create(data, content_type)

    @staticmethod
    def _skip(collection: ResumeCollection, skipped: Skipped) -> None:
        collection.skipped.append(skipped)
        logger.info(f"Skipped {skipped.key}: {skipped.reason}")
