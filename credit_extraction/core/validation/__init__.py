from .content_validator import ContentValidator, ValidationOutcome, validate

__all__ = ["ContentValidator", "ValidationOutcome", "validate"]
