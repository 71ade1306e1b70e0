import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from app.services.reconciler import ResumeCollection, ReviewEntry
from app.services.record_codec import RECORD_PREFIX, ResumeRecord, storage_key_for
from app.stores.blob_store import BlobStore
from app.stores.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class DeletionResult:
    blob_resume_deleted: bool = False
    blob_image_deleted: bool = False
    kv_deleted: bool = False
    handle_released: bool = False
    removed_from_collection: bool = False
    shadowed_keys_deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DeletionCoordinator:
    """
    Removes a review from every backing store, best effort.

    Each step is attempted on its own and a failing step never blocks the
    others; the caller always gets a result, never an exception. A remote
    delete that fails leaves an orphan behind, which is accepted.
    """

    def __init__(self, blob_store: BlobStore, kv_store: KeyValueStore, prefix: str = RECORD_PREFIX):
        self.blob_store = blob_store
        self.kv_store = kv_store
        self.prefix = prefix

    async def delete(self, entry: ReviewEntry, collection: Optional[ResumeCollection] = None) -> DeletionResult:
        record = entry.record
        result = DeletionResult()

        if record.resume_path:
            result.blob_resume_deleted = await self._attempt(self.blob_store.delete, record.resume_path)
        if record.image_path:
            result.blob_image_deleted = await self._attempt(self.blob_store.delete, record.image_path)

        key = record.storage_key or storage_key_for(record.id, self.prefix)
        result.kv_deleted = await self._attempt(self.kv_store.delete, key)

        # Stale copies under other keys would bring the review back on the next reconcile
        if collection is not None:
            await self._delete_shadowed(record, key, collection, result)

        if entry.handle is not None:
            try:
                result.handle_released = entry.handle.release()
            except Exception as e:
                logger.warning(f"Failed to release preview handle for {record.id}: {e}")

        if collection is not None:
            result.removed_from_collection = collection.remove(record.id) is not None

        logger.info(f"Deleted review {record.id}", extra=result.to_dict())
        return result

    @staticmethod
    async def _attempt(operation, target: str) -> bool:
        try:
            await asyncio.to_thread(operation, target)
            return True
        except Exception as e:
            logger.warning(f"Delete of {target} failed: {e}")
            return False

    async def _delete_shadowed(
        self, record: ResumeRecord, key: str, collection: ResumeCollection, result: DeletionResult
    ) -> None:
        own_paths = {record.resume_path, record.image_path}
        for stale in collection.shadowed(record.id):
            for path in (stale.resume_path, stale.image_path):
                if path and path not in own_paths:
                    own_paths.add(path)
                    await self._attempt(self.blob_store.delete, path)
            if stale.key != key and await self._attempt(self.kv_store.delete, stale.key):
                result.shadowed_keys_deleted += 1
