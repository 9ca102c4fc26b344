"""Pattern vocabularies and classification rules for extraction."""

from .rules_loader import NegativeClass, Rules, load_rules

__all__ = ["NegativeClass", "Rules", "load_rules"]
