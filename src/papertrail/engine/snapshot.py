"""Field snapshot normalization.

Snapshots are the comparable field maps taken from a tracked record's
previous and current state. Excluded fields and structured values are
stripped; nested associations are never diffed.
"""

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from sqlalchemy import Connection, inspect, select
from sqlalchemy.orm import InstanceState

# Nested/associated objects are excluded rather than diffed recursively.
DIFFS_NESTED_OBJECTS = False

SCALAR_TYPES = (str, bytes, bool, int, float, Decimal, UUID, Enum, date, time, timedelta)


def is_structured(value: Any) -> bool:
    """True for values that are neither scalars nor dates."""
    return value is not None and not isinstance(value, SCALAR_TYPES)


def normalize(
    state: Mapping[str, Any],
    exclude: Iterable[str],
    fields: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """Build a snapshot from a raw field map.

    When ``fields`` is given only those keys are drawn from ``state``;
    missing keys are kept as ``None`` so both sides of a diff line up.
    """
    excluded = set(exclude)
    if fields is not None:
        source = {name: state.get(name) for name in fields}
    else:
        source = state
    return {
        name: value
        for name, value in source.items()
        if name not in excluded and not is_structured(value)
    }


@dataclass
class RecordState:
    """Previous and current column values of a tracked record."""

    previous: dict[str, Any] = field(default_factory=dict)
    current: dict[str, Any] = field(default_factory=dict)
    modified: list[str] = field(default_factory=list)
    identity: Any = None
    prior_revision: Optional[int] = None


_MISSING = object()


def _previous_value(attr) -> Any:
    history = attr.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return _MISSING


def _stored_values(target: Any, keys: list[str], connection: Connection) -> dict[str, Any]:
    """Fetch the stored values of ``keys`` from the row backing ``target``."""
    instance_state: InstanceState = inspect(target)
    mapper = instance_state.mapper
    identity = instance_state.identity or mapper.primary_key_from_instance(target)
    if not identity or any(value is None for value in identity):
        return {}

    statement = (
        select(*(mapper.get_property(key).columns[0].label(key) for key in keys))
        .select_from(mapper.persist_selectable)
        .where(*(column == value for column, value in zip(mapper.primary_key, identity)))
    )
    row = connection.execute(statement).mappings().first()
    return dict(row) if row is not None else {}


def read_record_state(
    target: Any,
    revision_attribute: str,
    connection: Optional[Connection] = None,
) -> RecordState:
    """
    Read column values of a mapped instance from its attribute history.

    Values the instance does not hold (expired by a commit, never loaded, or
    assigned while expired) are read from its stored row on ``connection``,
    or on the session's connection for persistent instances. Pending
    instances without a connection only report what was assigned.
    """
    instance_state: InstanceState = inspect(target)
    persistent = instance_state.has_identity
    if connection is None and persistent and instance_state.session is not None:
        connection = instance_state.session.connection()

    previous: dict[str, Any] = {}
    unknown = []
    for column_attr in instance_state.mapper.column_attrs:
        key = column_attr.key
        value = _previous_value(instance_state.attrs[key])
        if value is not _MISSING:
            previous[key] = value
        if (persistent and value is _MISSING) or key not in instance_state.dict:
            unknown.append(key)

    stored: dict[str, Any] = {}
    if unknown and connection is not None:
        stored = _stored_values(target, unknown, connection)

    record = RecordState()
    for column_attr in instance_state.mapper.column_attrs:
        key = column_attr.key
        if key in previous:
            record.previous[key] = previous[key]
        elif persistent and key in stored:
            record.previous[key] = stored[key]
        if key in instance_state.dict:
            record.current[key] = instance_state.dict[key]
        elif key in stored:
            record.current[key] = stored[key]
        if instance_state.attrs[key].history.has_changes():
            record.modified.append(key)

    if persistent and revision_attribute in instance_state.mapper.column_attrs:
        record.prior_revision = record.previous.get(revision_attribute)

    primary_key = instance_state.mapper.primary_key_from_instance(target)
    record.identity = primary_key[0] if len(primary_key) == 1 else tuple(primary_key)
    return record
