"""Shared utilities."""

from .logging import REDACTED, get_logger, redact

__all__ = ["REDACTED", "get_logger", "redact"]
