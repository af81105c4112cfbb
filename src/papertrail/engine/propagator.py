"""Actor/context propagation into audit rows."""

import logging
from dataclasses import dataclass, field
from typing import Any

from papertrail.config import MetaDataSource, PaperTrailSettings, StrictnessPolicy
from papertrail.context import current_actor
from papertrail.engine.errors import ActorMissingError, RequiredMetaDataMissingError
from papertrail.models import Operation
from papertrail.observability.metrics import metrics
from papertrail.options import MutationOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedActor:
    """Actor id and metadata values resolved for one audit row."""

    actor_id: Any = None
    meta_data: dict[str, Any] = field(default_factory=dict)


class ActorPropagator:
    """Resolves the ambient actor context against per-call overrides."""

    def __init__(self, config: PaperTrailSettings, policy: StrictnessPolicy):
        self.config = config
        self.policy = policy

    def resolve(self, options: MutationOptions) -> ResolvedActor:
        """
        Resolve the actor for the current task.

        Precedence: the ambient context value, then the per-call option.
        Metadata fields follow their declared source.
        """
        ambient = current_actor(self.config)
        actor_id = ambient.actor_id if ambient.actor_id is not None else options.user_id

        meta_data: dict[str, Any] = {}
        for name, declaration in self.config.meta_data_fields.items():
            ambient_value = ambient.meta_data.get(name)
            call_value = options.meta_data.get(name)
            if declaration.source is MetaDataSource.AMBIENT:
                value = ambient_value
            elif declaration.source is MetaDataSource.CALL:
                value = call_value
            else:
                value = ambient_value if ambient_value is not None else call_value
            if value is not None:
                meta_data[name] = value

        return ResolvedActor(actor_id=actor_id, meta_data=meta_data)

    def validate(self, operation: Operation, resolved: ResolvedActor) -> None:
        """Check required metadata and actor presence for an audit row."""
        missing = [
            name
            for name in self.config.required_meta_data_fields
            if resolved.meta_data.get(name) is None
        ]
        if missing:
            self._violation(
                RequiredMetaDataMissingError(missing),
                f"Required metadata fields missing: {missing}",
            )

        if operation in (Operation.UPDATE, Operation.DESTROY) and resolved.actor_id is None:
            self._violation(
                ActorMissingError(self.config.continuation_key, operation.value),
                f"No actor for {operation.value} (key {self.config.continuation_key})",
            )

    def _violation(self, error: Exception, message: str) -> None:
        metrics.inc_counter("papertrail.integrity.violations")
        if self.policy is StrictnessPolicy.FAIL_HARD:
            raise error
        logger.warning(message)
