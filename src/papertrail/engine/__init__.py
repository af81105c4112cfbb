"""PaperTrail engine - change capture, sequencing and persistence."""

from papertrail.engine.core import PaperTrail
from papertrail.engine.delta import apply_char_diff, char_diff, diff, diff_to_string
from papertrail.engine.errors import (
    ActorMissingError,
    ConfigurationError,
    IntegrityViolation,
    ModelNotRegistered,
    PaperTrailError,
    RequiredMetaDataMissingError,
    RevisionMissingError,
)
from papertrail.engine.hooks import HookBundle
from papertrail.engine.snapshot import DIFFS_NESTED_OBJECTS, RecordState, normalize

__all__ = [
    "ActorMissingError",
    "ConfigurationError",
    "DIFFS_NESTED_OBJECTS",
    "HookBundle",
    "IntegrityViolation",
    "ModelNotRegistered",
    "PaperTrail",
    "PaperTrailError",
    "RecordState",
    "RequiredMetaDataMissingError",
    "RevisionMissingError",
    "apply_char_diff",
    "char_diff",
    "diff",
    "diff_to_string",
    "normalize",
]
