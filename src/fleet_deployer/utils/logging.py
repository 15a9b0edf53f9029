"""Logging helpers."""

from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

_LOGGING_CONFIGURED = False

REDACTED = "***"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        level = os.getenv("FLEET_DEPLOYER_LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        )
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


def redact(text: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace every secret value occurring in ``text`` with a placeholder."""
    # Longest first so a secret containing another secret is masked whole.
    for value in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(value, REDACTED)
    return text
