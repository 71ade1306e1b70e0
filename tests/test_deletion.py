import asyncio

from app.services.deletion import DeletionCoordinator
from app.services.reconciler import CollectionReconciler, ReviewEntry
from app.services.record_codec import ResumeRecord

from conftest import PNG_BYTES, record_payload


def _load(blob_store, kv_store):
    return asyncio.run(CollectionReconciler(blob_store, kv_store).reconcile_all())


def _delete(blob_store, kv_store, entry, collection=None):
    return asyncio.run(DeletionCoordinator(blob_store, kv_store).delete(entry, collection))


def _seed(blob_store, kv_store, key="resume:A", record_id="A"):
    blob_store.blobs["blobs/a.pdf"] = b"%PDF-1.4"
    blob_store.blobs["blobs/a.png"] = PNG_BYTES
    kv_store.set(key, record_payload(record_id, resume_path="blobs/a.pdf", image_path="blobs/a.png"))


def test_delete_removes_every_resource(blob_store, kv_store):
    _seed(blob_store, kv_store)
    collection = _load(blob_store, kv_store)
    entry = collection.get("A")
    handle = entry.handle

    result = _delete(blob_store, kv_store, entry, collection)

    assert result.blob_resume_deleted and result.blob_image_deleted and result.kv_deleted
    assert result.handle_released and result.removed_from_collection
    assert blob_store.blobs == {}
    assert kv_store.data == {}
    assert handle.released
    assert len(collection) == 0
    assert len(collection.handles) == 0


def test_delete_uses_discovered_key(blob_store, kv_store):
    _seed(blob_store, kv_store, key="resume:legacy-A")
    collection = _load(blob_store, kv_store)

    _delete(blob_store, kv_store, collection.get("A"), collection)

    assert "resume:legacy-A" not in kv_store.data


def test_unknown_key_falls_back_to_record_id(blob_store, kv_store):
    kv_store.set("resume:Z", record_payload("Z"))

    result = _delete(blob_store, kv_store, ReviewEntry(record=ResumeRecord(id="Z")))

    assert result.kv_deleted
    assert kv_store.data == {}
    assert not result.blob_resume_deleted
    assert not result.removed_from_collection


def test_unresolvable_image_still_removes_the_entry(blob_store, kv_store):
    """Deleting a record whose image blob is gone completes and clears the key."""
    _seed(blob_store, kv_store)
    collection = _load(blob_store, kv_store)
    blob_store.blobs.pop("blobs/a.png")
    blob_store.delete_failures = {"blobs/a.png"}

    result = _delete(blob_store, kv_store, collection.get("A"), collection)

    assert not result.blob_image_deleted
    assert result.blob_resume_deleted
    assert result.kv_deleted
    assert "resume:A" not in kv_store.data
    assert collection.get("A") is None


def test_delete_twice_is_harmless(blob_store, kv_store):
    _seed(blob_store, kv_store)
    collection = _load(blob_store, kv_store)
    entry = collection.get("A")

    _delete(blob_store, kv_store, entry, collection)
    second = _delete(blob_store, kv_store, entry, collection)

    assert second.kv_deleted
    assert not second.handle_released
    assert not second.removed_from_collection
