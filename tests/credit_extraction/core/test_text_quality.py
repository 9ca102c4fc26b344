from credit_extraction.core.text import (
    assess_text_quality,
    quality_confidence,
    readable_ratio,
    sanitize_text,
    word_count,
)


def test_sanitize_strips_control_chars_and_keeps_line_breaks():
    raw = "Name:\x00  John\t\tSmith\r\n\r\n\n  Balance:  $10.00  \x07"
    assert sanitize_text(raw) == "Name: John Smith\nBalance: $10.00"


def test_sanitize_empty_input():
    assert sanitize_text(None) == ""
    assert sanitize_text("   \n\t ") == ""


def test_word_count_and_readable_ratio():
    assert word_count("one two  three") == 3
    assert readable_ratio("") == 0.0
    assert readable_ratio("abc") == 1.0
    assert readable_ratio("ééab") == 0.5


def test_short_text_scores_zero():
    assert assess_text_quality("credit report") == 0.0
    assert quality_confidence(None) == 0.0


def test_credit_text_outscores_symbol_noise(report_text):
    good = assess_text_quality(report_text + "SSN: 123-45-6789 opened 01/02/2019")
    noise = assess_text_quality("§¶†‡" * 40)
    assert 0.0 <= noise < good <= 100.0
    assert quality_confidence(report_text) == round(assess_text_quality(report_text) / 100.0, 4)
