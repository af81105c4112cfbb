"""Delta models - field-level differences and per-mutation context."""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic_core import to_jsonable_python

from papertrail.models.enums import DeltaKind, Operation


@dataclass(frozen=True)
class DeltaEntry:
    """One difference between two snapshots, identified by its path."""

    kind: DeltaKind
    path: tuple[Any, ...] = ()
    lhs: Any = None
    rhs: Any = None
    index: Optional[int] = None
    item: Optional["DeltaEntry"] = None

    @property
    def field_name(self) -> str:
        """Top-level field name the entry belongs to."""
        return str(self.path[0]) if self.path else ""

    @property
    def old_value(self) -> Any:
        """Previous value, unwrapping array items."""
        return self.item.lhs if self.item is not None else self.lhs

    @property
    def new_value(self) -> Any:
        """New value, unwrapping array items."""
        return self.item.rhs if self.item is not None else self.rhs

    def to_document(self) -> dict[str, Any]:
        """Render the entry as a JSON-safe document."""
        document: dict[str, Any] = {"kind": self.kind.value}
        if self.path:
            document["path"] = list(self.path)
        if self.kind in (DeltaKind.DELETED, DeltaKind.EDITED):
            document["lhs"] = to_jsonable_python(self.lhs, fallback=str)
        if self.kind in (DeltaKind.NEW, DeltaKind.EDITED):
            document["rhs"] = to_jsonable_python(self.rhs, fallback=str)
        if self.kind == DeltaKind.ARRAY:
            document["index"] = self.index
            document["item"] = self.item.to_document() if self.item else None
        return document


@dataclass
class RevisionContext:
    """Pending revision stashed on an instance between hook phases."""

    operation: Operation
    revision: int
    delta: list[DeltaEntry] = field(default_factory=list)
    # Last-known snapshot of a destroyed record; its row is gone after the flush
    document: Optional[dict[str, Any]] = None
