"""PaperTrail engine errors."""

from typing import Any


class PaperTrailError(Exception):
    """Base error for PaperTrail operations."""

    def __init__(self, message: str, code: str = "PAPERTRAIL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(PaperTrailError):
    """Invalid engine or model configuration."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")


class ModelNotRegistered(PaperTrailError):
    """Model was never put under version control."""

    def __init__(self, model_name: str):
        super().__init__(f"Model is not registered with paper trail: {model_name}", "MODEL_NOT_REGISTERED")
        self.model_name = model_name


class IntegrityViolation(PaperTrailError):
    """Audit integrity gap; raised only under the fail-hard policy."""


class RevisionMissingError(IntegrityViolation):
    """Update on a record that carries no revision number."""

    def __init__(self, model_name: str, document_id: Any):
        super().__init__(
            f"Revision was undefined for {model_name} {document_id}",
            "REVISION_MISSING",
        )
        self.model_name = model_name
        self.document_id = document_id


class ActorMissingError(IntegrityViolation):
    """No actor identifier could be resolved for the mutation."""

    def __init__(self, continuation_key: str, operation: str):
        super().__init__(
            f"The context key {continuation_key} was not defined for {operation}",
            "ACTOR_MISSING",
        )
        self.continuation_key = continuation_key
        self.operation = operation


class RequiredMetaDataMissingError(IntegrityViolation):
    """One or more required metadata fields were not provided."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Not all required fields are provided to paper trail: {', '.join(missing)}",
            "REQUIRED_METADATA_MISSING",
        )
        self.missing = missing
