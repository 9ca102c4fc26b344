"""Extraction configuration read once from the environment (and ``.env``).

Values that fail to parse fall back to their defaults with a single
``EXTRACTION_CONFIG_DEFAULT`` warning per key.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

from environs import Env, EnvError

env = Env()
env.read_env()

logger = logging.getLogger(__name__)


_WARNED_DEFAULT_KEYS: set[str] = set()


def _parsed(parse, name: str, default, reason: str):
    try:
        return parse(name, default)
    except EnvError:
        _warn_default(name, os.getenv(name), default, reason)
        return default


def env_bool(name: str, default: bool = False) -> bool:
    return _parsed(env.bool, name, default, "invalid_bool")


def env_str(name: str, default: str) -> str:
    return env.str(name, default)


def env_float(name: str, default: float) -> float:
    return _parsed(env.float, name, default, "invalid_float")


def env_int(name: str, default: int) -> int:
    return _parsed(env.int, name, default, "invalid_int")


def env_list(name: str, default: list[str]) -> list[str]:
    """Comma-separated list; blank items are dropped and an empty list means ``default``."""
    parts = [p.strip() for p in env.list(name, default) if p and p.strip()]
    return parts or list(default)


def _warn_default(key: str, raw: object, default: object, reason: str) -> None:
    """Emit a structured warning when falling back to a default value."""

    if key in _WARNED_DEFAULT_KEYS:
        return

    _WARNED_DEFAULT_KEYS.add(key)
    payload = {
        "key": key,
        "value": "" if raw is None else str(raw),
        "default": default,
        "reason": reason,
    }
    logger.warning("EXTRACTION_CONFIG_DEFAULT %s", json.dumps(payload, sort_keys=True))


def _coerce_positive_int(key: str, default: int, *, min_value: int) -> int:
    value = env_int(key, default)
    if value < min_value:
        _warn_default(key, os.getenv(key), default, f"min_{min_value}")
        return default
    return value


def _coerce_unit_float(key: str, default: float) -> float:
    """Float in ``[0, 1]``, e.g. a confidence threshold."""

    value = env_float(key, default)
    if not 0.0 <= value <= 1.0:
        _warn_default(key, os.getenv(key), default, "out_of_range")
        return default
    return value


def _secret(key: str) -> str | None:
    raw = os.getenv(key)
    value = raw.strip() if isinstance(raw, str) else None
    return value or None


# Backend ordering -----------------------------------------------------------

DEFAULT_BACKEND_ORDER = ["primary_ocr", "secondary_ocr", "heuristic_scan"]
EXTRACTION_BACKENDS = env_list("EXTRACTION_BACKENDS", DEFAULT_BACKEND_ORDER)

# Timeouts and polling -------------------------------------------------------

EXTRACTION_ATTEMPT_TIMEOUT_S = env_float("EXTRACTION_ATTEMPT_TIMEOUT_S", 30.0)
EXTRACTION_DOCUMENT_TIMEOUT_S = env_float("EXTRACTION_DOCUMENT_TIMEOUT_S", 120.0)
EXTRACTION_POLL_INTERVAL_S = env_float("EXTRACTION_POLL_INTERVAL_S", 2.0)
EXTRACTION_POLL_MAX_ATTEMPTS = _coerce_positive_int(
    "EXTRACTION_POLL_MAX_ATTEMPTS", 30, min_value=1
)
EXTRACTION_MAX_RETRIES = _coerce_positive_int("EXTRACTION_MAX_RETRIES", 3, min_value=0)
EXTRACTION_MAX_DOCUMENT_BYTES = _coerce_positive_int(
    "EXTRACTION_MAX_DOCUMENT_BYTES", 10 * 1024 * 1024, min_value=1024
)

# Vendor endpoints -----------------------------------------------------------

PRIMARY_OCR_BASE_URL = env_str("PRIMARY_OCR_BASE_URL", "https://ocr.example.invalid/v1").rstrip("/")
PRIMARY_OCR_TOKEN_URL = env_str(
    "PRIMARY_OCR_TOKEN_URL", "https://auth.example.invalid/oauth2/token"
)
PRIMARY_OCR_CLIENT_ID = _secret("PRIMARY_OCR_CLIENT_ID")
PRIMARY_OCR_CLIENT_SECRET = _secret("PRIMARY_OCR_CLIENT_SECRET")

SECONDARY_OCR_ENDPOINTS = env_list(
    "SECONDARY_OCR_ENDPOINTS",
    [
        "https://ocr2.example.invalid/api/v1/documents/extract",
        "https://ocr2.example.invalid/api/v1/extract",
    ],
)
SECONDARY_OCR_API_KEY = _secret("SECONDARY_OCR_API_KEY")

LOCAL_OCR_LANGS = env_list("LOCAL_OCR_LANGS", ["eng"])
LOCAL_OCR_TIMEOUT_MS = _coerce_positive_int("LOCAL_OCR_TIMEOUT_MS", 20000, min_value=100)

# Consolidation ---------------------------------------------------------------

CONSOLIDATION_REVIEW_THRESHOLD = _coerce_unit_float("CONSOLIDATION_REVIEW_THRESHOLD", 0.7)
CONSOLIDATION_CONFLICT_CAP = _coerce_unit_float("CONSOLIDATION_CONFLICT_CAP", 0.6)
CONSOLIDATION_MAJORITY_CAP = _coerce_unit_float("CONSOLIDATION_MAJORITY_CAP", 0.95)
CONSOLIDATION_DEFAULT_STRATEGY = env_str("CONSOLIDATION_DEFAULT_STRATEGY", "highest_confidence")
ACCOUNT_MATCH_MIN_SCORE = env_float("ACCOUNT_MATCH_MIN_SCORE", 90.0)

# Storage ---------------------------------------------------------------------

EXTRACTION_STORE_DIR = env_str("EXTRACTION_STORE_DIR", "data/reports")
EXTRACTION_STORE_ATOMIC_WRITES = env_bool("EXTRACTION_STORE_ATOMIC_WRITES", True)
EXTRACTION_STORE_VALIDATE_ON_LOAD = env_bool("EXTRACTION_STORE_VALIDATE_ON_LOAD", True)
DOCUMENT_UPLOAD_DIR = env_str("DOCUMENT_UPLOAD_DIR", "data/uploads")

# Workers ---------------------------------------------------------------------

CELERY_BROKER_URL = env_str("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_EXTRACTION_QUEUE = env_str("CELERY_EXTRACTION_QUEUE", "extraction")


@dataclass(frozen=True)
class BackendSettings:
    """Environment-backed settings handed to extraction backends."""

    attempt_timeout_s: float = EXTRACTION_ATTEMPT_TIMEOUT_S
    poll_interval_s: float = EXTRACTION_POLL_INTERVAL_S
    poll_max_attempts: int = EXTRACTION_POLL_MAX_ATTEMPTS
    max_retries: int = EXTRACTION_MAX_RETRIES
    max_document_bytes: int = EXTRACTION_MAX_DOCUMENT_BYTES
    primary_base_url: str = PRIMARY_OCR_BASE_URL
    primary_token_url: str = PRIMARY_OCR_TOKEN_URL
    primary_client_id: str | None = PRIMARY_OCR_CLIENT_ID
    primary_client_secret: str | None = field(default=PRIMARY_OCR_CLIENT_SECRET, repr=False)
    secondary_endpoints: Tuple[str, ...] = tuple(SECONDARY_OCR_ENDPOINTS)
    secondary_api_key: str | None = field(default=SECONDARY_OCR_API_KEY, repr=False)
    local_ocr_langs: Tuple[str, ...] = tuple(LOCAL_OCR_LANGS)
    local_ocr_timeout_ms: int = LOCAL_OCR_TIMEOUT_MS


__all__ = [
    "ACCOUNT_MATCH_MIN_SCORE",
    "BackendSettings",
    "CELERY_BROKER_URL",
    "CELERY_EXTRACTION_QUEUE",
    "CONSOLIDATION_CONFLICT_CAP",
    "CONSOLIDATION_DEFAULT_STRATEGY",
    "CONSOLIDATION_MAJORITY_CAP",
    "CONSOLIDATION_REVIEW_THRESHOLD",
    "DEFAULT_BACKEND_ORDER",
    "DOCUMENT_UPLOAD_DIR",
    "EXTRACTION_ATTEMPT_TIMEOUT_S",
    "EXTRACTION_BACKENDS",
    "EXTRACTION_DOCUMENT_TIMEOUT_S",
    "EXTRACTION_MAX_DOCUMENT_BYTES",
    "EXTRACTION_MAX_RETRIES",
    "EXTRACTION_POLL_INTERVAL_S",
    "EXTRACTION_POLL_MAX_ATTEMPTS",
    "EXTRACTION_STORE_ATOMIC_WRITES",
    "EXTRACTION_STORE_DIR",
    "EXTRACTION_STORE_VALIDATE_ON_LOAD",
    "LOCAL_OCR_LANGS",
    "LOCAL_OCR_TIMEOUT_MS",
    "env_bool",
    "env_float",
    "env_int",
    "env_list",
    "env_str",
]
