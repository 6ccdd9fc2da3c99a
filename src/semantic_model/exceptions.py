"""Exception hierarchy for semantic model persistence and vector generation.

Every error raised across a storage or index boundary is translated into one of
these types so callers can decide between aborting an operation (configuration
and corrupt data) and skipping a single entity (embedding and write failures).
"""

from typing import Any


class SemanticStoreError(Exception):
    """Base exception for all semantic store errors.

    Attributes:
        message: Human-readable error description
        details: Optional diagnostic context (paths, ids, backend names)
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(SemanticStoreError):
    """Requested model or entity does not exist in the backend."""


class CorruptDataError(SemanticStoreError):
    """Persisted content could not be parsed or validated."""


class ConfigurationError(SemanticStoreError):
    """Settings are missing, invalid, or form an incompatible combination."""


class EmbeddingFailure(SemanticStoreError):
    """The embedding generator returned nothing usable for an entity."""


class PersistenceWriteFailure(SemanticStoreError):
    """Writing an entity envelope or document to the backend failed."""


class IndexWriteFailure(SemanticStoreError):
    """Upserting a record into the vector index failed after persistence.

    The entity is durably persisted but not searchable until the index is
    reconciled.
    """
