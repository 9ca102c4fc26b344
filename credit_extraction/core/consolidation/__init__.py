from .alignment import FamilyAligner, align, name_score
from .engine import ConsolidationEngine, compare, consolidate, normalize_value, rank_results

__all__ = [
    "ConsolidationEngine",
    "FamilyAligner",
    "align",
    "compare",
    "consolidate",
    "name_score",
    "normalize_value",
    "rank_results",
]
