"""Credit report text extraction, entity parsing and consolidation."""

from __future__ import annotations

import logging
import os

__version__ = "0.1.0"

_level_name = os.getenv("EXTRACTION_LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO")

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, _level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

# httpx logs every request line, including vendor job URLs, at INFO.
logging.getLogger("httpx").setLevel(logging.WARNING)
