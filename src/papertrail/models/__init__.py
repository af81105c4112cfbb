"""PaperTrail data models."""

from papertrail.models.enums import DeltaKind, Operation
from papertrail.models.delta import DeltaEntry, RevisionContext
from papertrail.models.revision import Revision, RevisionChange

__all__ = [
    "DeltaEntry",
    "DeltaKind",
    "Operation",
    "Revision",
    "RevisionChange",
    "RevisionContext",
]
