"""Audit persister - writes revision and revision change rows."""

import json
import logging
from typing import Any, Iterable

from pydantic_core import to_jsonable_python
from sqlalchemy import Connection

from papertrail.config import PaperTrailSettings
from papertrail.db.repositories import RevisionChangeRepository, RevisionRepository
from papertrail.db.tables import RevisionTables
from papertrail.engine.delta import char_diff, diff_to_string
from papertrail.engine.propagator import ActorPropagator
from papertrail.engine.sequencer import RevisionSequencer
from papertrail.engine.snapshot import normalize, read_record_state
from papertrail.models import DeltaEntry, Operation, Revision, RevisionContext
from papertrail.observability.metrics import metrics
from papertrail.options import MutationOptions

logger = logging.getLogger(__name__)


class AuditPersister:
    """After-phase logic: materialize the pending revision of a mutation."""

    def __init__(
        self,
        config: PaperTrailSettings,
        tables: RevisionTables,
        sequencer: RevisionSequencer,
        propagator: ActorPropagator,
    ):
        self.config = config
        self.tables = tables
        self.sequencer = sequencer
        self.propagator = propagator

    def encode(self, value: Any) -> Any:
        """Serialize a document for the configured storage."""
        document = to_jsonable_python(value, fallback=str)
        if self.config.text_documents:
            return json.dumps(document)
        return document

    def persist(
        self,
        connection: Connection,
        target: Any,
        context: RevisionContext,
        options: MutationOptions,
    ) -> Revision:
        """
        Write the revision for a committed-in-flush mutation.

        Snapshots are re-read here because instance state may have changed
        since the before-phase. The revision row is written on ``connection``
        so it commits or rolls back with the mutation.
        """
        state = read_record_state(target, self.config.revision_attribute, connection)
        _, current = self.sequencer.snapshots(state, context.operation, options.fields)
        if context.document is not None:
            current = context.document

        resolved = self.propagator.resolve(options)
        self.propagator.validate(context.operation, resolved)

        model_name = type(target).__name__
        try:
            with metrics.timer("papertrail.revisions.write_ms"):
                revision = RevisionRepository(connection, self.tables, self.config).create(
                    model=model_name,
                    document_id=state.identity,
                    actor_id=resolved.actor_id,
                    revision=getattr(target, self.config.revision_attribute),
                    operation=context.operation,
                    document=self.encode(current),
                    meta_data=resolved.meta_data,
                )
        except Exception as e:
            logger.error(f"Revision save error for {model_name} {state.identity}: {e}")
            raise

        metrics.inc_counter("papertrail.revisions.created")
        logger.debug(
            f"Saved revision {revision.revision} of {model_name} {state.identity} "
            f"({context.operation.value}, actor {resolved.actor_id})"
        )

        if self.tables.revision_change is not None and context.operation is Operation.UPDATE:
            self.persist_changes(connection, revision, context.delta)
        return revision

    def persist_changes(
        self,
        connection: Connection,
        revision: Revision,
        delta: Iterable[DeltaEntry],
    ) -> int:
        """
        Write one change row per delta entry.

        Each row is written inside its own SAVEPOINT; a failing row is
        rolled back and logged without affecting the revision.
        """
        repository = RevisionChangeRepository(connection, self.tables)
        written = 0
        for entry in delta:
            old = diff_to_string(entry.old_value)
            new = diff_to_string(entry.new_value)
            document: Any = entry.to_document()
            changes: Any = char_diff(old, new)
            if self.config.text_documents:
                document = json.dumps(document)
                changes = json.dumps(changes)

            try:
                with connection.begin_nested():  # SAVEPOINT
                    repository.create(
                        revision_id=revision.id,
                        path=entry.field_name,
                        document=document,
                        diff=changes,
                    )
            except Exception as e:
                metrics.inc_counter("papertrail.revision_changes.failed")
                logger.error(
                    f"RevisionChange save error for revision {revision.id} path {entry.field_name}: {e}",
                    exc_info=True,
                )
                continue
            written += 1
            metrics.inc_counter("papertrail.revision_changes.created")
        return written

    def persist_bulk(
        self,
        connection: Connection,
        targets: Iterable[Any],
        options: MutationOptions,
    ) -> int:
        """Write a first revision for each bulk-created record."""
        resolved = self.propagator.resolve(options)
        self.propagator.validate(Operation.CREATE, resolved)

        rows = []
        for target in targets:
            state = read_record_state(target, self.config.revision_attribute, connection)
            rows.append(
                {
                    "model": type(target).__name__,
                    "document_id": state.identity,
                    "actor_id": resolved.actor_id,
                    "revision": 1,
                    "operation": Operation.CREATE,
                    "document": self.encode(normalize(state.current, self.config.exclude)),
                    "meta_data": resolved.meta_data,
                }
            )
        count = RevisionRepository(connection, self.tables, self.config).create_many(rows)
        metrics.inc_counter("papertrail.revisions.created", count)
        logger.debug(f"Saved {count} bulk-create revision(s)")
        return count
