"""Per-call mutation options.

Options travel with the session (``session.info``) or with a single
instance (``InstanceState.info``); instance options win.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import inspect
from sqlalchemy.orm import object_session

SESSION_OPTIONS_KEY = "papertrail.options"
INSTANCE_OPTIONS_KEY = "papertrail.options"


class MutationOptions(BaseModel):
    """Options bag accompanying one mutation."""

    model_config = ConfigDict(frozen=True)

    no_paper_trail: bool = Field(default=False, description="Skip audit capture entirely")
    user_id: Any = Field(default=None, description="Actor id when no ambient actor is set")
    meta_data: dict[str, Any] = Field(default_factory=dict, description="Per-call metadata")
    fields: Optional[list[str]] = Field(
        default=None, description="Fields to diff when compression is enabled"
    )


DEFAULT_OPTIONS = MutationOptions()


@contextmanager
def mutation_options(session, **values: Any) -> Iterator[MutationOptions]:
    """Apply options to every flush of ``session`` inside the block."""
    # AsyncSession proxies .info to its sync session
    info = session.info
    previous = info.get(SESSION_OPTIONS_KEY)
    options = MutationOptions(**values)
    info[SESSION_OPTIONS_KEY] = options
    try:
        yield options
    finally:
        if previous is None:
            info.pop(SESSION_OPTIONS_KEY, None)
        else:
            info[SESSION_OPTIONS_KEY] = previous


def set_mutation_options(target: Any, **values: Any) -> MutationOptions:
    """Attach options to one instance until its next flush completes."""
    options = MutationOptions(**values)
    inspect(target).info[INSTANCE_OPTIONS_KEY] = options
    return options


def options_for(target: Any) -> MutationOptions:
    """Resolve the options that apply to ``target`` in the current flush."""
    state_info = inspect(target).info
    if INSTANCE_OPTIONS_KEY in state_info:
        return state_info[INSTANCE_OPTIONS_KEY]
    session = object_session(target)
    if session is not None:
        options = session.info.get(SESSION_OPTIONS_KEY)
        if options is not None:
            return options
    return DEFAULT_OPTIONS


def clear_instance_options(target: Any) -> None:
    inspect(target).info.pop(INSTANCE_OPTIONS_KEY, None)
