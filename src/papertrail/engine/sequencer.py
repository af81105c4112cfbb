"""Revision sequencer - decides when a mutation is audited and numbers it."""

import logging
from typing import Any, Iterable, Optional

from papertrail.config import PaperTrailSettings, StrictnessPolicy
from papertrail.engine.delta import diff
from papertrail.engine.errors import RevisionMissingError
from papertrail.engine.snapshot import RecordState, normalize
from papertrail.models import Operation, RevisionContext
from papertrail.observability.metrics import metrics

logger = logging.getLogger(__name__)


class RevisionSequencer:
    """Before-phase logic: snapshot, diff and stamp the next revision."""

    def __init__(self, config: PaperTrailSettings, policy: StrictnessPolicy):
        self.config = config
        self.policy = policy

    @property
    def revision_attribute(self) -> str:
        return self.config.revision_attribute

    def snapshots(
        self,
        state: RecordState,
        operation: Operation,
        fields: Optional[Iterable[str]] = None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Normalized previous and current snapshots of a record."""
        if operation is Operation.DESTROY or not self.config.enable_compression:
            fields = None
        elif fields is None:
            fields = state.modified
        else:
            fields = list(fields)
        return (
            normalize(state.previous, self.config.exclude, fields),
            normalize(state.current, self.config.exclude, fields),
        )

    def prepare(
        self,
        target: Any,
        state: RecordState,
        operation: Operation,
        fields: Optional[Iterable[str]] = None,
    ) -> Optional[RevisionContext]:
        """
        Compute the pending revision for a mutation, or None when the
        mutation is not audit-worthy.

        The revision attribute is always reset to the stored value first so
        that only this engine ever advances it.
        """
        model_name = type(target).__name__
        prior = state.prior_revision

        if (
            self.policy is StrictnessPolicy.FAIL_HARD
            and operation is Operation.UPDATE
            and prior is None
        ):
            metrics.inc_counter("papertrail.integrity.violations")
            raise RevisionMissingError(model_name, state.identity)

        setattr(target, self.revision_attribute, prior)

        previous, current = self.snapshots(state, operation, fields)
        if operation is Operation.CREATE:
            delta = diff({}, current, self.config.enable_strict_diff)
            revision = 1
        else:
            delta = diff(previous, current, self.config.enable_strict_diff)
            if not delta and not operation.always_audited():
                logger.debug(f"No changes on {model_name} {state.identity}, skipping revision")
                metrics.inc_counter("papertrail.revisions.skipped")
                return None
            revision = (prior or 0) + 1

        metrics.observe("papertrail.delta.size", len(delta))
        setattr(target, self.revision_attribute, revision)
        logger.debug(
            f"{operation.value} {model_name} {state.identity}: "
            f"revision {revision}, {len(delta)} change(s)"
        )
        return RevisionContext(
            operation=operation,
            revision=revision,
            delta=delta,
            document=current if operation is Operation.DESTROY else None,
        )

    def prepare_bulk(self, targets: Iterable[Any]) -> None:
        """Bulk-created rows are always their own first revision."""
        for target in targets:
            setattr(target, self.revision_attribute, 1)
