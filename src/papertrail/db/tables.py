"""Revision and RevisionChange table definitions.

Names, id types, column naming and document encoding are configurable, so
the declarative classes are built per engine by ``define_revision_tables``.
"""

import logging
import re
from dataclasses import dataclass
from functools import partial
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.dialects.mysql import MEDIUMTEXT
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import mapped_column, relationship
from sqlalchemy.types import TypeEngine

from papertrail.config import MetaDataType, PaperTrailSettings
from papertrail.utils.time import utc_now

logger = logging.getLogger(__name__)

# Attributes owned by the revision row itself; metadata never overrides them
RESERVED_ATTRIBUTES = frozenset(
    {"id", "model", "document", "document_id", "operation", "created_at", "changes", "metadata", "registry"}
)


@dataclass(frozen=True)
class RevisionTables:
    """Declarative classes backing the audit trail."""

    revision: type
    revision_change: Optional[type] = None

    @property
    def revision_table(self) -> Table:
        return self.revision.__table__

    @property
    def revision_change_table(self) -> Optional[Table]:
        if self.revision_change is None:
            return None
        return self.revision_change.__table__


def _camelize(name: str) -> str:
    return re.sub(r"_([a-z0-9])", lambda match: match.group(1).upper(), name)


def column_name(config: PaperTrailSettings, attribute: str) -> str:
    """Database column name for an attribute under the naming setting."""
    return attribute if config.underscored else _camelize(attribute)


def _mapped_column(config: PaperTrailSettings, attribute: str, *args, **kwargs):
    # Table.c stays keyed by attribute name whatever the column is called
    return mapped_column(column_name(config, attribute), *args, key=attribute, **kwargs)


def _id_type(config: PaperTrailSettings) -> TypeEngine:
    if config.uuid:
        return Uuid(as_uuid=True)
    # SQLite only autoincrements INTEGER primary keys
    return BigInteger().with_variant(Integer(), "sqlite")


def _id_column(config: PaperTrailSettings):
    if config.uuid:
        return mapped_column(_id_type(config), primary_key=True, default=uuid4)
    return mapped_column(_id_type(config), primary_key=True, autoincrement=True)


def document_type(config: PaperTrailSettings) -> TypeEngine:
    """Native JSON document column, or text for backends without one."""
    if config.text_documents:
        return Text().with_variant(MEDIUMTEXT(), "mysql")
    return JSON().with_variant(JSONB(), "postgresql")


def _meta_data_type(kind: MetaDataType) -> TypeEngine:
    if kind is MetaDataType.INTEGER:
        return BigInteger()
    if kind is MetaDataType.UUID:
        return Uuid(as_uuid=True)
    if kind is MetaDataType.JSON:
        return JSON().with_variant(JSONB(), "postgresql")
    return String(255)


def meta_data_attributes(config: PaperTrailSettings) -> list[str]:
    """Declared metadata fields that get their own revision column."""
    reserved = RESERVED_ATTRIBUTES | {config.user_model_attribute, config.revision_attribute}
    names = []
    for name in config.meta_data_fields:
        if name in reserved or not name.isidentifier():
            logger.warning(f"Metadata field {name!r} collides with a revision attribute, not mapped")
            continue
        names.append(name)
    return names


def define_revision_tables(base: type, config: PaperTrailSettings) -> RevisionTables:
    """Create the Revision (and optional RevisionChange) classes on ``base``."""
    column = partial(_mapped_column, config)

    revision_attrs: dict[str, Any] = {
        "__tablename__": config.revision_table,
        "id": _id_column(config),
        "model": column("model", Text, nullable=False),
        "document": column("document", document_type(config), nullable=False),
        "operation": column("operation", String(7), nullable=False),
        "document_id": column(
            "document_id",
            Uuid(as_uuid=True) if config.uuid else BigInteger,
            nullable=False,
        ),
        config.user_model_attribute: column(
            config.user_model_attribute, String(255), nullable=True
        ),
        config.revision_attribute: column(
            config.revision_attribute, BigInteger, nullable=False
        ),
        "created_at": column(
            "created_at", DateTime(timezone=True), nullable=False, default=utc_now
        ),
        "__table_args__": (
            Index(f"idx_{config.revision_table}_document", "model", "document_id"),
        ),
    }
    for field_name in meta_data_attributes(config):
        declaration = config.meta_data_fields[field_name]
        revision_attrs[field_name] = column(
            field_name, _meta_data_type(declaration.type), nullable=True
        )

    if config.enable_revision_change_model:
        revision_attrs["changes"] = relationship(
            config.revision_change_model,
            back_populates="revision",
            cascade="all, delete-orphan",
            passive_deletes=True,
        )

    revision_cls = type(config.revision_model, (base,), revision_attrs)
    logger.debug(f"Defined revision model {config.revision_model} ({config.revision_table})")

    if not config.enable_revision_change_model:
        return RevisionTables(revision=revision_cls)

    change_attrs: dict[str, Any] = {
        "__tablename__": config.revision_change_table,
        "id": _id_column(config),
        "revision_id": column(
            "revision_id",
            _id_type(config),
            ForeignKey(f"{config.revision_table}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        "path": column("path", Text, nullable=False),
        "document": column("document", document_type(config), nullable=False),
        "diff": column("diff", document_type(config), nullable=False),
        "created_at": column(
            "created_at", DateTime(timezone=True), nullable=False, default=utc_now
        ),
        "revision": relationship(config.revision_model, back_populates="changes"),
    }
    change_cls = type(config.revision_change_model, (base,), change_attrs)
    return RevisionTables(revision=revision_cls, revision_change=change_cls)
