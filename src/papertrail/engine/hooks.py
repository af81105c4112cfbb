"""Lifecycle hooks binding the engine to SQLAlchemy mapper events."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy import Connection, event, inspect

from papertrail.engine.persister import AuditPersister
from papertrail.engine.sequencer import RevisionSequencer
from papertrail.engine.snapshot import read_record_state
from papertrail.models import Operation, Revision, RevisionContext
from papertrail.options import MutationOptions, clear_instance_options, options_for

logger = logging.getLogger(__name__)

CONTEXT_KEY = "papertrail.revision_context"
BULK_KEY = "papertrail.bulk"

# Mapper event -> hook attribute on the bundle
MAPPER_EVENTS = {
    "before_insert": "before_create",
    "before_update": "before_update",
    "before_delete": "before_destroy",
    "after_insert": "after_create",
    "after_update": "after_update",
    "after_delete": "after_destroy",
}


@dataclass
class HookBundle:
    """The lifecycle hooks installed for one tracked model."""

    model: type
    before_create: Callable[[Any], Optional[RevisionContext]]
    before_update: Callable[[Any], Optional[RevisionContext]]
    before_destroy: Callable[[Any], Optional[RevisionContext]]
    after_create: Callable[[Connection, Any], Optional[Revision]]
    after_update: Callable[[Connection, Any], Optional[Revision]]
    after_destroy: Callable[[Connection, Any], Optional[Revision]]
    before_bulk_create: Callable[[list[Any], MutationOptions], None]
    after_bulk_create: Callable[[Connection, list[Any], MutationOptions], int]
    _listeners: dict[str, Callable] = field(default_factory=dict, repr=False)

    @property
    def installed(self) -> bool:
        return bool(self._listeners)

    def install(self) -> None:
        """Listen to the per-row mapper events of the model."""
        if self.installed:
            return
        for event_name, hook_name in MAPPER_EVENTS.items():
            listener = _mapper_listener(getattr(self, hook_name), event_name.startswith("after"))
            event.listen(self.model, event_name, listener, propagate=True)
            self._listeners[event_name] = listener
        logger.debug(f"Installed paper trail hooks on {self.model.__name__}")

    def remove(self) -> None:
        for event_name, listener in self._listeners.items():
            event.remove(self.model, event_name, listener)
        self._listeners.clear()


def clear_bulk_flags(targets: list[Any]) -> None:
    """Return bulk-created instances to per-row hook handling."""
    for target in targets:
        inspect(target).info.pop(BULK_KEY, None)


def _mapper_listener(hook: Callable, with_connection: bool) -> Callable:
    if with_connection:
        def listener(mapper, connection, target):
            hook(connection, target)
    else:
        def listener(mapper, connection, target):
            hook(target)
    return listener


def build_hooks(
    model: type,
    sequencer: RevisionSequencer,
    persister: AuditPersister,
) -> HookBundle:
    """Build the hook closures for ``model``."""
    revision_attribute = sequencer.revision_attribute

    def create_before_hook(operation: Operation) -> Callable[[Any], Optional[RevisionContext]]:
        def before_hook(target: Any) -> Optional[RevisionContext]:
            info = inspect(target).info
            info.pop(CONTEXT_KEY, None)
            if info.get(BULK_KEY):
                return None
            options = options_for(target)
            if options.no_paper_trail:
                logger.debug("no_paper_trail option is set, not logging")
                return None

            state = read_record_state(target, revision_attribute)
            context = sequencer.prepare(target, state, operation, options.fields)
            if context is not None:
                info[CONTEXT_KEY] = context
            return context

        return before_hook

    def create_after_hook(operation: Operation) -> Callable[[Connection, Any], Optional[Revision]]:
        def after_hook(connection: Connection, target: Any) -> Optional[Revision]:
            info = inspect(target).info
            context = info.pop(CONTEXT_KEY, None)
            options = options_for(target)
            clear_instance_options(target)
            if options.no_paper_trail or context is None:
                return None
            return persister.persist(connection, target, context, options)

        return after_hook

    def before_bulk_create(targets: list[Any], options: MutationOptions) -> None:
        for target in targets:
            inspect(target).info[BULK_KEY] = True
        if options.no_paper_trail:
            logger.debug("no_paper_trail option is set, not logging")
            return
        sequencer.prepare_bulk(targets)

    def after_bulk_create(connection: Connection, targets: list[Any], options: MutationOptions) -> int:
        clear_bulk_flags(targets)
        if options.no_paper_trail:
            return 0
        return persister.persist_bulk(connection, targets, options)

    return HookBundle(
        model=model,
        before_create=create_before_hook(Operation.CREATE),
        before_update=create_before_hook(Operation.UPDATE),
        before_destroy=create_before_hook(Operation.DESTROY),
        after_create=create_after_hook(Operation.CREATE),
        after_update=create_after_hook(Operation.UPDATE),
        after_destroy=create_after_hook(Operation.DESTROY),
        before_bulk_create=before_bulk_create,
        after_bulk_create=after_bulk_create,
    )
