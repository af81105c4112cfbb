"""PaperTrail - auditable revision history for SQLAlchemy models."""

# Engine first: papertrail.context depends on papertrail.engine.errors
from papertrail.engine import (
    ActorMissingError,
    ConfigurationError,
    IntegrityViolation,
    ModelNotRegistered,
    PaperTrail,
    PaperTrailError,
    RequiredMetaDataMissingError,
    RevisionMissingError,
    diff,
    normalize,
)
from papertrail.config import (
    MetaDataField,
    MetaDataSource,
    PaperTrailSettings,
    StrictnessPolicy,
    settings,
)
from papertrail.context import ActorContext, actor_context, current_actor
from papertrail.models import DeltaEntry, Operation, Revision, RevisionChange
from papertrail.options import MutationOptions, mutation_options, set_mutation_options

__version__ = "0.1.0"

__all__ = [
    "ActorContext",
    "ActorMissingError",
    "ConfigurationError",
    "DeltaEntry",
    "IntegrityViolation",
    "MetaDataField",
    "MetaDataSource",
    "ModelNotRegistered",
    "MutationOptions",
    "Operation",
    "PaperTrail",
    "PaperTrailError",
    "PaperTrailSettings",
    "RequiredMetaDataMissingError",
    "Revision",
    "RevisionChange",
    "RevisionMissingError",
    "StrictnessPolicy",
    "actor_context",
    "current_actor",
    "diff",
    "mutation_options",
    "normalize",
    "set_mutation_options",
    "settings",
]
