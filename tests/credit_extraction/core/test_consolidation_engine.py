import pytest

from credit_extraction.core.consolidation import ConsolidationEngine, normalize_value, rank_results
from credit_extraction.core.errors import ExtractionError, VALIDATION_FAILED
from credit_extraction.core.models import ConsolidationStrategy

JOHN = "Name: John Smith\nDate of Birth: 01/02/1980\nPhone: 555-123-4567"
JANE = "Name: Jane Smith\nDate of Birth: 03/04/1981\nPhone: 555-123-4567"
ACCOUNT_LINE = "Current Balance: $1,250.00 Capital One Platinum"


@pytest.fixture
def engine():
    return ConsolidationEngine(review_threshold=0.7, conflict_cap=0.6, majority_cap=0.95)


def test_normalize_value():
    assert normalize_value("  Capital   ONE ") == "capital one"
    assert normalize_value(1250) == normalize_value(1250.004) == 1250.0
    assert normalize_value(True) is True
    assert normalize_value(None) is None


def test_rank_prefers_confidence_then_recency(make_result):
    old = make_result("primary_ocr", JOHN, 0.8, minutes=0)
    new = make_result("secondary_ocr", JOHN, 0.8, minutes=5)
    best = make_result("heuristic_scan", JOHN, 0.9, minutes=1)
    assert [r.extraction_method for r in rank_results([old, new, best])] == [
        "heuristic_scan",
        "secondary_ocr",
        "primary_ocr",
    ]


def test_conflict_count_equals_differing_fields(engine, make_result):
    a = make_result("primary_ocr", JOHN, 0.9)
    b = make_result("secondary_ocr", JANE, 0.8)
    report = engine.compare([a, b])
    assert sorted(d.field for d in report.differences) == [
        "personal_info.date_of_birth",
        "personal_info.full_name",
    ]
    assert report.conflict_count == 2
    assert report.similarities == ["personal_info.phone_number"]
    full_name = next(d for d in report.differences if d.field == "personal_info.full_name")
    assert full_name.values == {"primary_ocr": "John Smith", "secondary_ocr": "Jane Smith"}
    assert full_name.confidences == {"primary_ocr": 0.9, "secondary_ocr": 0.8}


def test_highest_confidence_caps_confidence_on_conflict(engine, make_result):
    a = make_result("primary_ocr", JOHN, 0.9)
    b = make_result("secondary_ocr", JANE, 0.8)
    outcome = engine.consolidate([a, b], ConsolidationStrategy.highest_confidence)
    meta = outcome.metadata
    assert meta.primary_source == "primary_ocr"
    assert meta.conflict_count == 2
    assert meta.confidence_level == 0.6
    assert meta.requires_human_review is True
    assert outcome.entities.personal_info.full_name == "John Smith"
    assert meta.field_sources["personal_info.full_name"] == "primary_ocr"


def test_agreeing_results_need_no_review(engine, make_result):
    text = JOHN + "\n" + ACCOUNT_LINE
    a = make_result("primary_ocr", text, 0.9, minutes=0)
    b = make_result("secondary_ocr", text, 0.85, minutes=3)
    outcome = engine.consolidate([a, b], "highest_confidence")
    meta = outcome.metadata
    assert meta.conflict_count == 0
    assert meta.confidence_level == 0.9
    assert meta.requires_human_review is False
    assert meta.processed_at == b.created_at
    assert meta.consolidation_notes.split(" | ")[0] == "strategy=highest_confidence"
    assert outcome.entities.accounts[0].current_balance == 1250.0


def test_majority_vote_beats_single_high_confidence_source(engine, make_result):
    majority_text = "Name: John Smith\n" + ACCOUNT_LINE
    a = make_result("primary_ocr", majority_text, 0.8)
    b = make_result("secondary_ocr", majority_text, 0.7)
    c = make_result("heuristic_scan", "Name: Jon Smyth\n" + ACCOUNT_LINE + "\nChase Freedom Card $500.00", 0.9)

    outcome = engine.consolidate([c, a, b], ConsolidationStrategy.majority_vote)

    assert outcome.entities.personal_info.full_name == "John Smith"
    assert outcome.metadata.field_sources["personal_info.full_name"] == "primary_ocr"
    assert [acc.creditor_name for acc in outcome.entities.accounts] == ["Capital One Platinum"]
    assert outcome.metadata.conflict_count == 1
    assert outcome.metadata.confidence_level == 0.6
    assert outcome.metadata.consolidation_strategy is ConsolidationStrategy.majority_vote


def test_majority_confidence_is_mean_capped(engine, make_result):
    text = JOHN
    results = [
        make_result("primary_ocr", text, 1.0),
        make_result("secondary_ocr", text, 1.0),
        make_result("heuristic_scan", text, 0.97),
    ]
    outcome = engine.consolidate(results, ConsolidationStrategy.majority_vote)
    assert outcome.metadata.confidence_level == 0.95
    assert outcome.metadata.requires_human_review is False


def test_consolidation_is_order_independent(engine, make_result):
    a = make_result("primary_ocr", JOHN, 0.8, minutes=1)
    b = make_result("secondary_ocr", JANE, 0.8, minutes=2)
    c = make_result("heuristic_scan", JOHN + "\n" + ACCOUNT_LINE, 0.6, minutes=0)
    for strategy in ConsolidationStrategy:
        first = engine.consolidate([a, b, c], strategy)
        second = engine.consolidate([c, b, a], strategy)
        assert first.model_dump() == second.model_dump()


def test_manual_review_always_flags(engine, make_result):
    a = make_result("primary_ocr", JOHN, 0.95)
    outcome = engine.consolidate([a], ConsolidationStrategy.manual_review)
    assert outcome.metadata.requires_human_review is True
    assert "manual review requested" in outcome.metadata.consolidation_notes


def test_low_confidence_flags_review(engine, make_result):
    outcome = engine.consolidate([make_result("heuristic_scan", JOHN, 0.5)], "highest_confidence")
    assert outcome.metadata.requires_human_review is True
    assert "confidence 0.50 below 0.70" in outcome.metadata.consolidation_notes


def test_failed_rows_are_ignored(engine, make_result):
    ok = make_result("secondary_ocr", JOHN, 0.7)
    failed = make_result("primary_ocr", "", 0.0, error_message="HTTP 503")
    outcome = engine.consolidate([failed, ok])
    assert outcome.metadata.primary_source == "secondary_ocr"


def test_nothing_usable_is_rejected(engine, make_result):
    with pytest.raises(ExtractionError) as exc:
        engine.consolidate([make_result("primary_ocr", "", 0.0, error_message="boom")])
    assert exc.value.code == VALIDATION_FAILED


def test_results_from_two_documents_are_rejected(engine, make_result):
    with pytest.raises(ExtractionError):
        engine.compare(
            [make_result("primary_ocr", JOHN, 0.9), make_result("secondary_ocr", JOHN, 0.9, document_id="doc-2")]
        )
