"""Local execution on the machine running the pipeline."""

from .session import LocalSession

__all__ = ["LocalSession"]
