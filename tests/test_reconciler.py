import asyncio
import json

import pytest

from app.core.config import IngestionSettings
from app.core.exceptions import AnalysisServiceError, HandleReleasedError
from app.services.ingestion import IngestionOrchestrator, UploadedDocument
from app.services.reconciler import CollectionReconciler, Skipped

from conftest import PDF_BYTES, PNG_BYTES, FakeAnalysisClient, fake_rasterizer, record_payload


def _reconcile(blob_store, kv_store):
    return asyncio.run(CollectionReconciler(blob_store, kv_store).reconcile_all())


def test_duplicate_with_feedback_wins_regardless_of_order(blob_store, kv_store):
    """Two entries for id X, one draft and one complete: one record with the feedback."""
    kv_store.set("resume:X", record_payload("X", feedback={"overallScore": 70}))
    kv_store.set("resume:X:draft", record_payload("X", feedback=""))
    collection = _reconcile(blob_store, kv_store)
    assert len(collection) == 1
    assert collection.get("X").record.feedback == {"overallScore": 70}

    kv_store.data.clear()
    kv_store.set("resume:X:draft", record_payload("X", feedback=""))
    kv_store.set("resume:X", record_payload("X", feedback={"overallScore": 70}))
    collection = _reconcile(blob_store, kv_store)
    assert len(collection) == 1
    assert collection.get("X").record.feedback == {"overallScore": 70}
    assert collection.get("X").record.storage_key == "resume:X"


def test_replacement_keeps_first_seen_position(blob_store, kv_store):
    kv_store.set("resume:a", record_payload("A"))
    kv_store.set("resume:b", record_payload("B", feedback={"overallScore": 50}))
    kv_store.set("resume:a2", record_payload("A", feedback={"overallScore": 90}))

    collection = _reconcile(blob_store, kv_store)

    assert [entry.id for entry in collection] == ["A", "B"]
    assert collection.get("A").record.feedback["overallScore"] == 90


def test_first_completed_duplicate_is_kept(blob_store, kv_store):
    kv_store.set("resume:one", record_payload("Y", feedback={"overallScore": 40}))
    kv_store.set("resume:two", record_payload("Y", feedback={"overallScore": 95}))

    collection = _reconcile(blob_store, kv_store)

    assert collection.get("Y").record.feedback["overallScore"] == 40
    assert Skipped("resume:two", "duplicate of resume:one") in collection.skipped


def test_malformed_and_missing_entries_are_skipped(blob_store, kv_store):
    kv_store.set("resume:good", record_payload("G"))
    kv_store.set("resume:broken", "{not json")
    kv_store.set("resume:list", json.dumps([1, 2]))
    kv_store.set("resume:noid", json.dumps({"companyName": "Acme"}))
    kv_store.extra_listed = ["resume:vanished"]
    kv_store.get_failures = {"resume:list"}

    collection = _reconcile(blob_store, kv_store)

    assert [entry.id for entry in collection] == ["G"]
    reasons = {skipped.key: skipped.reason for skipped in collection.skipped}
    assert reasons["resume:broken"].startswith("malformed")
    assert reasons["resume:noid"] == "malformed: record has no id"
    assert reasons["resume:list"].startswith("unreadable")
    assert reasons["resume:vanished"] == "missing"


def test_repeated_keys_are_read_once(blob_store, kv_store):
    kv_store.set("resume:a", record_payload("A"))
    kv_store.extra_listed = ["resume:a", "resume:a"]

    collection = _reconcile(blob_store, kv_store)

    assert len(collection) == 1
    assert collection.skipped == []


def test_listing_failure_yields_empty_collection(blob_store, kv_store):
    kv_store.set("resume:a", record_payload("A"))
    kv_store.fail_list = True

    assert len(_reconcile(blob_store, kv_store)) == 0


def test_preview_is_wrapped_in_a_display_handle(blob_store, kv_store):
    blob_store.blobs["blobs/a.png"] = PNG_BYTES
    kv_store.set("resume:a", record_payload("A", image_path="blobs/a.png"))

    collection = _reconcile(blob_store, kv_store)
    handle = collection.get("A").handle

    assert handle.url.startswith("blob:")
    assert handle.read() == PNG_BYTES
    assert handle.content_type == "image/png"
    assert len(collection.handles) == 1


def test_missing_preview_keeps_the_record(blob_store, kv_store):
    blob_store.read_failures = {"blobs/broken.png"}
    kv_store.set("resume:a", record_payload("A", image_path="blobs/gone.png"))
    kv_store.set("resume:b", record_payload("B", image_path="blobs/broken.png"))

    collection = _reconcile(blob_store, kv_store)

    assert [entry.id for entry in collection] == ["A", "B"]
    assert all(entry.handle is None for entry in collection)


def test_superseded_draft_releases_its_handle(blob_store, kv_store):
    blob_store.blobs["blobs/a.png"] = PNG_BYTES
    kv_store.set("resume:draft", record_payload("A", image_path="blobs/a.png"))
    kv_store.set("resume:final", record_payload("A", feedback={"overallScore": 1}, image_path="blobs/a.png"))

    collection = _reconcile(blob_store, kv_store)

    assert len(collection.handles) == 1
    assert collection.get("A").handle.read() == PNG_BYTES


def test_release_revokes_every_handle(blob_store, kv_store):
    blob_store.blobs["blobs/a.png"] = PNG_BYTES
    kv_store.set("resume:a", record_payload("A", image_path="blobs/a.png"))
    collection = _reconcile(blob_store, kv_store)
    handle = collection.get("A").handle

    assert collection.release() == 1
    assert handle.released
    with pytest.raises(HandleReleasedError):
        handle.read()


def test_failed_ingestion_surfaces_draft(blob_store, kv_store):
    """An ingestion that dies after the draft still shows up, user fields intact."""
    orchestrator = IngestionOrchestrator(
        blob_store, kv_store,
        FakeAnalysisClient(error=AnalysisServiceError("provider down")),
        fake_rasterizer,
        IngestionSettings(),
    )
    with pytest.raises(Exception):
        asyncio.run(orchestrator.ingest(
            UploadedDocument("cv.pdf", PDF_BYTES), "Globex", "Analyst", "Crunch numbers"
        ))

    collection = _reconcile(blob_store, kv_store)
    entry = collection.get(orchestrator.record_id)

    assert entry.record.is_pending
    assert (entry.record.company_name, entry.record.job_title, entry.record.job_description) == (
        "Globex", "Analyst", "Crunch numbers"
    )
    assert entry.handle is not None
