"""Feature switches for the extraction run, read once at import."""

from dataclasses import dataclass

from credit_extraction.config import env_bool

RECORD_FAILED_ATTEMPTS = env_bool("RECORD_FAILED_ATTEMPTS", True)
CONSOLIDATE_MULTIPLE_RESULTS = env_bool("CONSOLIDATE_MULTIPLE_RESULTS", True)
HEURISTIC_TEXT_LAYER_FIRST = env_bool("HEURISTIC_TEXT_LAYER_FIRST", True)
STOP_AT_FIRST_ACCEPTED = env_bool("STOP_AT_FIRST_ACCEPTED", True)


@dataclass(frozen=True)
class Flags:
    record_failed_attempts: bool = RECORD_FAILED_ATTEMPTS
    consolidate_multiple_results: bool = CONSOLIDATE_MULTIPLE_RESULTS
    heuristic_text_layer_first: bool = HEURISTIC_TEXT_LAYER_FIRST
    stop_at_first_accepted: bool = STOP_AT_FIRST_ACCEPTED


FLAGS = Flags()
