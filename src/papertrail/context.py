"""Ambient actor context.

Values are held in one ``ContextVar`` per named namespace, so they follow the
asyncio task (and anything it awaits or spawns) rather than the call stack.
Concurrent tasks never observe each other's values.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from threading import Lock
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from papertrail.config import PaperTrailSettings, settings as default_settings
from papertrail.engine.errors import ConfigurationError

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class ActorContext:
    """Actor identity and metadata visible to the current task."""

    actor_id: Any = None
    meta_data: Mapping[str, Any] = field(default_factory=dict)


class ContextNamespace:
    """Named bag of task-local values."""

    def __init__(self, name: str):
        self.name = name
        self._var: ContextVar[Mapping[str, Any]] = ContextVar(
            f"papertrail.{name}", default=_EMPTY
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self._var.get().get(key, default)

    def values(self) -> dict[str, Any]:
        return dict(self._var.get())

    def set(self, key: str, value: Any) -> Token:
        """Set a value for the rest of the current context."""
        updated = {**self._var.get(), key: value}
        return self._var.set(MappingProxyType(updated))

    def reset(self, token: Token) -> None:
        self._var.reset(token)

    @contextmanager
    def bind(self, **values: Any) -> Iterator["ContextNamespace"]:
        """Layer values over the current ones until the block exits."""
        token = self._var.set(MappingProxyType({**self._var.get(), **values}))
        try:
            yield self
        finally:
            self._var.reset(token)

    def __repr__(self) -> str:
        return f"<ContextNamespace {self.name}>"


_namespaces: dict[str, ContextNamespace] = {}
_namespaces_lock = Lock()


def get_namespace(name: str) -> Optional[ContextNamespace]:
    """Return an existing namespace, or None."""
    return _namespaces.get(name)


def create_namespace(name: str) -> ContextNamespace:
    """Return the namespace for ``name``, creating it once."""
    with _namespaces_lock:
        namespace = _namespaces.get(name)
        if namespace is None:
            namespace = _namespaces[name] = ContextNamespace(name)
        return namespace


def current_actor(config: Optional[PaperTrailSettings] = None) -> ActorContext:
    """Read the ambient actor context for the configured namespace."""
    config = config or default_settings
    if not config.continuation_namespace:
        return ActorContext()
    namespace = get_namespace(config.continuation_namespace)
    if namespace is None:
        return ActorContext()
    return ActorContext(
        actor_id=namespace.get(config.continuation_key),
        meta_data=namespace.get(config.meta_data_continuation_key) or {},
    )


@contextmanager
def actor_context(
    actor_id: Any = None,
    meta_data: Optional[Mapping[str, Any]] = None,
    config: Optional[PaperTrailSettings] = None,
) -> Iterator[ActorContext]:
    """
    Establish the actor (and metadata) for mutations made inside the block.

    Usable from sync and async code; the values are visible to every hook
    that runs in the same task, including flushes made by ``AsyncSession``.
    """
    config = config or default_settings
    if not config.continuation_namespace:
        raise ConfigurationError("continuation_namespace is not configured")

    values: dict[str, Any] = {}
    if actor_id is not None:
        values[config.continuation_key] = actor_id
    if meta_data is not None:
        values[config.meta_data_continuation_key] = dict(meta_data)

    namespace = create_namespace(config.continuation_namespace)
    with namespace.bind(**values):
        yield current_actor(config)
