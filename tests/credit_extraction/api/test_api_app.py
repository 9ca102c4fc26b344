import pytest

from credit_extraction.api import tasks
from credit_extraction.api.app import create_app
from credit_extraction.core.lifecycle import ReportLifecycleManager
from credit_extraction.core.orchestrator import ExtractionOrchestrator


@pytest.fixture
def manager(memory_store, fake_backend, fast_settings, clock, report_text):
    orchestrator = ExtractionOrchestrator(
        [fake_backend("primary_ocr", report_text, confidence=0.9)],
        settings=fast_settings,
        clock=clock,
        stop_at_first_accepted=True,
        record_failed_attempts=True,
    )
    return ReportLifecycleManager(memory_store, orchestrator, strategy="highest_confidence")


@pytest.fixture
def client(manager):
    app = create_app(manager)
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_unknown_document_is_404(client):
    resp = client.get("/api/documents/missing")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "NOT_FOUND"


def test_process_then_read_back(client):
    resp = client.post("/api/documents/doc-1/process", json={})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["extraction_status"] == "completed"
    assert "raw_text" not in body
    assert body["raw_text_chars"] > 0

    results = client.get("/api/documents/doc-1/results").get_json()["results"]
    assert [r["extraction_method"] for r in results] == ["primary_ocr"]

    entities = client.get("/api/documents/doc-1/entities").get_json()
    assert entities["run_id"] == results[0]["id"]
    assert entities["entities"]["personal_information"][0]["full_name"] == "John Smith"
    assert entities["entities"]["credit_accounts"][0]["creditor_name"] == "Capital One Platinum"

    again = client.post("/api/documents/doc-1/process", json={})
    assert again.status_code == 409
    assert again.get_json()["error"] == "INVALID_TRANSITION"


def test_missing_consolidation_is_404(client):
    resp = client.get("/api/documents/doc-1/consolidation")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "no_consolidation"}


def test_reconsolidate_validates_strategy_and_status(client):
    bad = client.post("/api/documents/doc-1/reconsolidate", json={"strategy": "coin_flip"})
    assert bad.status_code == 400
    assert bad.get_json() == {"error": "invalid_strategy"}

    pending = client.post("/api/documents/doc-1/reconsolidate", json={})
    assert pending.status_code == 409

    client.post("/api/documents/doc-1/process", json={})
    resp = client.post("/api/documents/doc-1/reconsolidate", json={"strategy": "manual_review"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["metadata"]["primary_source"] == "primary_ocr"
    assert body["metadata"]["requires_human_review"] is True
    assert body["comparison"]["differences"] == []

    stored = client.get("/api/documents/doc-1/consolidation").get_json()
    assert stored["consolidation_strategy"] == "manual_review"


def test_replace_consolidation(client):
    client.post("/api/documents/doc-1/process", json={})
    payload = {
        "primary_source": "primary_ocr",
        "confidence_level": 0.95,
        "consolidation_strategy": "manual_review",
        "requires_human_review": False,
        "processed_at": "2024-05-01T12:00:00Z",
    }

    invalid = client.put("/api/documents/doc-1/consolidation", json={**payload, "confidence_level": 3})
    assert invalid.status_code == 400
    assert invalid.get_json() == {"error": "invalid_request"}

    mismatch = client.put("/api/documents/doc-1/consolidation", json={**payload, "document_id": "doc-9"})
    assert mismatch.status_code == 400
    assert mismatch.get_json() == {"error": "document_mismatch"}

    unknown = client.put("/api/documents/doc-1/consolidation", json={**payload, "primary_source": "nobody"})
    assert unknown.status_code == 400
    assert unknown.get_json()["error"] == "VALIDATION_FAILED"

    ok = client.put("/api/documents/doc-1/consolidation", json=payload)
    assert ok.status_code == 200
    assert ok.get_json()["document_id"] == "doc-1"
    assert ok.get_json()["requires_human_review"] is True

    confirmed = client.put(
        "/api/documents/doc-1/consolidation",
        json={**payload, "consolidation_strategy": "highest_confidence"},
    )
    assert confirmed.get_json()["requires_human_review"] is False


def test_delete_document(client):
    assert client.delete("/api/documents/doc-1").status_code == 204
    assert client.get("/api/documents/doc-1").status_code == 404
    assert client.delete("/api/documents/doc-1").status_code == 404


def test_async_process_enqueues_task(client, monkeypatch):
    queued = []

    class _Result:
        id = "task-123"

    class _Task:
        def delay(self, document_id, force):
            queued.append((document_id, force))
            return _Result()

    monkeypatch.setattr(tasks, "process_report_task", _Task())
    resp = client.post("/api/documents/doc-1/process", json={"async": True, "force": True})
    assert resp.status_code == 202
    assert resp.get_json() == {"document_id": "doc-1", "task_id": "task-123"}
    assert queued == [("doc-1", True)]


def test_summary_counts_stored_results(client):
    client.post("/api/documents/doc-1/process", json={})
    summary = client.get("/api/summary").get_json()
    assert summary["total_results"] == 1
    assert summary["documents"] == 1
    assert summary["methods"]["primary_ocr"]["succeeded"] == 1
