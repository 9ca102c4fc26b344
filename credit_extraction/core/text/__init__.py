from .quality import assess_text_quality, quality_confidence
from .sanitize import readable_ratio, sanitize_text, word_count

__all__ = [
    "assess_text_quality",
    "quality_confidence",
    "readable_ratio",
    "sanitize_text",
    "word_count",
]
