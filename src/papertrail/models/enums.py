"""PaperTrail enumerations."""

from enum import Enum


class Operation(str, Enum):
    """Kind of mutation recorded by a revision."""

    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"

    def always_audited(self) -> bool:
        """Create and destroy produce a revision even without a delta."""
        return self in (Operation.CREATE, Operation.DESTROY)


class DeltaKind(str, Enum):
    """Kind of a field-level difference."""

    # Present only in the current snapshot
    NEW = "N"
    # Present only in the previous snapshot
    DELETED = "D"
    # Present in both with different values
    EDITED = "E"
    # Change inside a sequence value, see DeltaEntry.item
    ARRAY = "A"
