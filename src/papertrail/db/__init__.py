"""PaperTrail database layer."""

from papertrail.db.base import Base, build_engine, build_session_factory, get_session, init_db
from papertrail.db.migration import add_revision_column, ensure_revision_column
from papertrail.db.repositories import RevisionChangeRepository, RevisionRepository
from papertrail.db.tables import RevisionTables, define_revision_tables

__all__ = [
    "Base",
    "RevisionChangeRepository",
    "RevisionRepository",
    "RevisionTables",
    "add_revision_column",
    "build_engine",
    "build_session_factory",
    "define_revision_tables",
    "ensure_revision_column",
    "get_session",
    "init_db",
]
