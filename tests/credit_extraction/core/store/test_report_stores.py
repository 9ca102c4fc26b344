import pytest

from credit_extraction.core.errors import NOT_FOUND, VALIDATION_FAILED, StoreError
from credit_extraction.core.models import Document, EntityKind, ExtractionStatus
from credit_extraction.core.store import InMemoryReportStore, JsonReportStore


@pytest.fixture
def json_store(tmp_path):
    store = JsonReportStore(tmp_path / "reports", upload_dir=tmp_path / "uploads")
    store.create_document(Document(id="doc-1", file_path="doc-1.pdf"))
    return store


def test_status_roundtrip_is_persisted(json_store, tmp_path):
    json_store.set_status("doc-1", ExtractionStatus.failed, "boom")
    reopened = JsonReportStore(tmp_path / "reports", upload_dir=tmp_path / "uploads")
    document = reopened.get_document("doc-1")
    assert document.extraction_status is ExtractionStatus.failed
    assert document.processing_errors == "boom"
    assert reopened.document_ids() == ["doc-1"]
    assert not list((tmp_path / "reports").glob("*.tmp"))


def test_duplicate_document_is_rejected(json_store):
    with pytest.raises(StoreError) as exc:
        json_store.create_document(Document(id="doc-1", file_path="other.pdf"))
    assert exc.value.code == VALIDATION_FAILED


@pytest.mark.parametrize("bad_id", ["../escape", ".hidden", "a/b", ""])
def test_unsafe_ids_are_rejected(json_store, bad_id):
    with pytest.raises(StoreError) as exc:
        json_store.get_document(bad_id)
    assert exc.value.code == VALIDATION_FAILED


def test_missing_document_emits_store_error(json_store, events):
    with pytest.raises(StoreError) as exc:
        json_store.get_document("nope")
    assert exc.value.code == NOT_FOUND
    errors = [fields for name, fields in events if name == "extraction_store_error"]
    assert errors == [{"document_id": "nope", "code": NOT_FOUND, "where": "get_document"}]


def test_corrupt_record_is_a_validation_failure(json_store, tmp_path):
    (tmp_path / "reports" / "doc-1.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError) as exc:
        json_store.get_document("doc-1")
    assert exc.value.code == VALIDATION_FAILED


def test_download_bytes_resolves_relative_paths(json_store, tmp_path):
    (tmp_path / "uploads").mkdir()
    (tmp_path / "uploads" / "doc-1.pdf").write_bytes(b"%PDF-1.4")
    assert json_store.download_bytes("doc-1.pdf") == b"%PDF-1.4"
    with pytest.raises(StoreError) as exc:
        json_store.download_bytes("missing.pdf")
    assert exc.value.code == NOT_FOUND


@pytest.mark.parametrize("path", ["../secret.txt", "../../etc/passwd", "nested/../../secret.txt"])
def test_download_bytes_rejects_paths_outside_upload_dir(json_store, tmp_path, path):
    (tmp_path / "uploads").mkdir()
    (tmp_path / "secret.txt").write_bytes(b"not an upload")
    with pytest.raises(StoreError) as exc:
        json_store.download_bytes(path)
    assert exc.value.code == VALIDATION_FAILED


def test_download_bytes_rejects_absolute_paths_elsewhere(json_store, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"not an upload")
    with pytest.raises(StoreError) as exc:
        json_store.download_bytes(str(secret))
    assert exc.value.code == VALIDATION_FAILED


def test_results_are_appended_once(json_store, make_result):
    result = make_result("primary_ocr", "Name: John Smith", 0.9)
    json_store.add_results("doc-1", [result])
    json_store.add_results("doc-1", [result])
    stored = json_store.list_results("doc-1")
    assert [r.id for r in stored] == [result.id]
    assert stored[0].created_at == result.created_at


def test_results_for_another_document_are_rejected(json_store, make_result):
    with pytest.raises(StoreError) as exc:
        json_store.add_results("doc-1", [make_result("primary_ocr", "x", 0.5, document_id="doc-2")])
    assert exc.value.code == VALIDATION_FAILED
    assert json_store.list_results("doc-1") == []


def test_entities_are_replaced_as_one_run(json_store):
    json_store.replace_all_entities(
        "doc-1",
        {
            EntityKind.credit_accounts: [{"creditor_name": "Capital One", "current_balance": 10.0}],
            EntityKind.collections: [],
        },
        run_id="run-1",
    )
    entities = json_store.get_all_entities("doc-1")
    assert set(entities) == set(EntityKind)
    assert entities[EntityKind.credit_accounts][0]["creditor_name"] == "Capital One"
    assert entities[EntityKind.credit_inquiries] == []
    assert json_store.entity_run_id("doc-1") == "run-1"

    json_store.purge_entities("doc-1")
    assert json_store.get_entities("doc-1", EntityKind.credit_accounts) == []
    assert json_store.entity_run_id("doc-1") is None


def test_delete_document(json_store):
    json_store.delete_document("doc-1")
    assert not json_store.has_document("doc-1")
    with pytest.raises(StoreError) as exc:
        json_store.delete_document("doc-1")
    assert exc.value.code == NOT_FOUND


def test_memory_store_hands_out_copies(memory_store):
    document = memory_store.get_document("doc-1")
    document.raw_text = "changed outside the store"
    assert memory_store.get_document("doc-1").raw_text is None

    memory_store.upsert_raw_text("doc-1", "stored text")
    assert memory_store.get_document("doc-1").raw_text == "stored text"
    assert memory_store.download_bytes("uploads/doc-1.pdf").startswith(b"%PDF")


def test_memory_store_missing_file(memory_store):
    with pytest.raises(StoreError) as exc:
        memory_store.download_bytes("uploads/none.pdf")
    assert exc.value.code == NOT_FOUND


def test_memory_store_delete_drops_file(memory_store):
    memory_store.delete_document("doc-1")
    with pytest.raises(StoreError) as exc:
        memory_store.download_bytes("uploads/doc-1.pdf")
    assert exc.value.code == NOT_FOUND


def test_memory_and_json_stores_agree(tmp_path, make_result):
    result = make_result("secondary_ocr", "Name: John Smith", 0.7)
    for store in (InMemoryReportStore(), JsonReportStore(tmp_path / "agree")):
        store.create_document(Document(id="doc-1", file_path="doc-1.pdf"))
        store.add_results("doc-1", [result])
        store.set_status("doc-1", ExtractionStatus.processing)
        assert store.get_status("doc-1") is ExtractionStatus.processing
        assert store.list_results("doc-1")[0].extracted_text == "Name: John Smith"
        assert store.get_consolidation("doc-1") is None


def test_single_kind_replace_and_delete(memory_store):
    memory_store.replace_entities("doc-1", EntityKind.credit_inquiries, [{"inquirer_name": "Discover Bank"}])
    memory_store.replace_entities("doc-1", "collections", [{"collection_agency": "Midland Credit Management"}])
    assert memory_store.get_entities("doc-1", EntityKind.credit_inquiries) == [{"inquirer_name": "Discover Bank"}]

    memory_store.delete_entities("doc-1", EntityKind.credit_inquiries)
    assert memory_store.get_entities("doc-1", EntityKind.credit_inquiries) == []
    assert len(memory_store.get_entities("doc-1", EntityKind.collections)) == 1
