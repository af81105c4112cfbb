"""PaperTrail core engine - model registration and bulk operations."""

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional

from sqlalchemy import BigInteger, Column, and_, inspect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import foreign, relationship

from papertrail.config import PaperTrailSettings, StrictnessPolicy, settings as default_settings
from papertrail.context import ActorContext, actor_context, create_namespace
from papertrail.db.base import Base
from papertrail.db.migration import ensure_revision_column
from papertrail.db.tables import RevisionTables, define_revision_tables
from papertrail.engine.errors import ConfigurationError, ModelNotRegistered
from papertrail.engine.hooks import HookBundle, build_hooks, clear_bulk_flags
from papertrail.engine.persister import AuditPersister
from papertrail.engine.propagator import ActorPropagator
from papertrail.engine.sequencer import RevisionSequencer
from papertrail.options import MutationOptions

logger = logging.getLogger(__name__)

REVISIONS_RELATIONSHIP = "revisions"


class PaperTrail:
    """Engine wiring change capture into tracked SQLAlchemy models."""

    def __init__(
        self,
        config: Optional[PaperTrailSettings] = None,
        policy: Optional[StrictnessPolicy] = None,
        base: Optional[type] = None,
    ):
        self.config = config or default_settings
        self.policy = policy or self.config.strictness
        self.base = base or Base
        self.tables: Optional[RevisionTables] = None
        self.sequencer = RevisionSequencer(self.config, self.policy)
        self.propagator = ActorPropagator(self.config, self.policy)
        self._persister: Optional[AuditPersister] = None
        self._bundles: dict[type, HookBundle] = {}

        if self.config.continuation_namespace:
            create_namespace(self.config.continuation_namespace)

    @property
    def persister(self) -> AuditPersister:
        if self._persister is None:
            raise ConfigurationError("Revision models are not defined; call define_models() first")
        return self._persister

    def define_models(self, base: Optional[type] = None) -> RevisionTables:
        """Define the Revision (and RevisionChange) models once."""
        if self.tables is not None:
            return self.tables
        if base is not None:
            self.base = base
        self.tables = define_revision_tables(self.base, self.config)
        self._persister = AuditPersister(self.config, self.tables, self.sequencer, self.propagator)
        return self.tables

    def register(self, model: type) -> HookBundle:
        """
        Put ``model`` under version control.

        Adds the revision column when the model lacks it, installs the
        lifecycle hooks and attaches a view-only ``revisions`` relationship.
        """
        if model in self._bundles:
            return self._bundles[model]

        tables = self.define_models()
        mapper = inspect(model)
        if len(mapper.primary_key) != 1:
            raise ConfigurationError(f"{model.__name__} must have a single-column primary key")

        logger.debug(f"Enabling paper trail on {model.__name__}")
        self._add_revision_column(model)

        bundle = build_hooks(model, self.sequencer, self.persister)
        bundle.install()
        self._bundles[model] = bundle
        self._add_revisions_relationship(model, tables)
        return bundle

    def unregister(self, model: type) -> None:
        bundle = self._bundles.pop(model, None)
        if bundle is not None:
            bundle.remove()

    def is_registered(self, model: type) -> bool:
        return model in self._bundles

    def hooks_for(self, model: type) -> HookBundle:
        bundle = self._bundles.get(model)
        if bundle is None:
            raise ModelNotRegistered(model.__name__)
        return bundle

    def _add_revision_column(self, model: type) -> None:
        mapper = inspect(model)
        attribute = self.config.revision_attribute
        if attribute in mapper.column_attrs:
            return
        if attribute in mapper.attrs:
            raise ConfigurationError(
                f"{model.__name__}.{attribute} exists but is not a column"
            )
        column = Column(attribute, BigInteger, default=0, nullable=True)
        mapper.local_table.append_column(column)
        mapper.add_property(attribute, column)

    def _add_revisions_relationship(self, model: type, tables: RevisionTables) -> None:
        mapper = inspect(model)
        if REVISIONS_RELATIONSHIP in mapper.attrs:
            logger.warning(
                f"{model.__name__}.{REVISIONS_RELATIONSHIP} already exists, association not added"
            )
            return
        columns = tables.revision_table.c
        mapper.add_property(
            REVISIONS_RELATIONSHIP,
            relationship(
                tables.revision,
                primaryjoin=and_(
                    foreign(columns.document_id) == mapper.primary_key[0],
                    columns.model == model.__name__,
                ),
                viewonly=True,
                order_by=columns[self.config.revision_attribute],
            ),
        )

    async def bulk_create(
        self,
        session: AsyncSession,
        instances: Iterable[Any],
        options: Optional[MutationOptions] = None,
    ) -> list[Any]:
        """
        Insert many records, each stamped as revision 1.

        Per-row create hooks are bypassed; one revision row is written per
        record in the session's transaction.
        """
        instances = list(instances)
        if not instances:
            return instances
        options = options or MutationOptions()

        groups: dict[type, list[Any]] = {}
        for instance in instances:
            groups.setdefault(type(instance), []).append(instance)
        bundles = [(self.hooks_for(model), group) for model, group in groups.items()]

        def _after_bulk_create(sync_session) -> int:
            connection = sync_session.connection()
            return sum(
                bundle.after_bulk_create(connection, group, options) for bundle, group in bundles
            )

        for bundle, group in bundles:
            bundle.before_bulk_create(group, options)
        try:
            session.add_all(instances)
            await session.flush()
            count = await session.run_sync(_after_bulk_create)
        finally:
            # A failed flush must not leave rows opted out of per-row hooks
            clear_bulk_flags(instances)
        logger.debug(f"Bulk created {len(instances)} record(s), {count} revision(s)")
        return instances

    async def migrate(self, engine: AsyncEngine) -> list[str]:
        """Add missing revision columns to registered tables."""
        if not self.config.enable_migration:
            return []
        migrated = []
        for model in self._bundles:
            table = inspect(model).local_table
            if await ensure_revision_column(engine, table, self.config.revision_attribute):
                migrated.append(table.name)
        return migrated

    @contextmanager
    def actor_context(
        self,
        actor_id: Any = None,
        meta_data: Optional[Mapping[str, Any]] = None,
    ) -> Iterator[ActorContext]:
        """Establish the actor for mutations made inside the block."""
        with actor_context(actor_id, meta_data, config=self.config) as context:
            yield context
