"""Observability helpers for PaperTrail."""

from papertrail.observability.logs import configure_logging
from papertrail.observability.metrics import metrics

__all__ = ["configure_logging", "metrics"]
