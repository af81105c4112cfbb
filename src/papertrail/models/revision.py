"""Revision models - read views of persisted audit rows."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from papertrail.models.enums import Operation


class Revision(BaseModel):
    """Immutable snapshot of one audit-worthy mutation."""

    id: int | UUID
    model: str
    document_id: int | UUID | str
    user_id: str | None = None
    revision: int
    operation: Operation
    document: dict[str, Any] | str
    meta_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class RevisionChange(BaseModel):
    """Per-field difference attached to an update revision."""

    id: int | UUID
    revision_id: int | UUID
    path: str
    document: dict[str, Any] | str
    diff: list[dict[str, Any]] | str
