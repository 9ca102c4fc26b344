from .entity_extractor import EntityExtractor, extract_entities, first_value, map_fields

__all__ = ["EntityExtractor", "extract_entities", "first_value", "map_fields"]
