"""Occurrence reporting gateway."""

from __future__ import annotations

import logging
import os


if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

# httpx and urllib3 log every request line at INFO; E2_RESPONSE already covers it.
for _name in ("httpx", "httpcore", "urllib3"):
    logging.getLogger(_name).setLevel(
        getattr(logging, os.getenv("HTTP_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    )
