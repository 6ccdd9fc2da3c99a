"""Storage-shape mappers for persisted entities.

Flat-file and blob backends keep the vector inline in an envelope next to the
entity data. The document-database backend keeps only embedding metadata on the
entity document, because its own vector index owns the floats. Both mappers are
pure: no I/O and deterministic output for a given input.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from semantic_model.models import SemanticModelEntity

ENVELOPE_SCHEMA_VERSION = "1"
_ENVELOPE_KEYS = {"data", "embedding", "schemaVersion"}


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EmbeddingMetadata(_CamelModel):
    """Provenance of a generated vector.

    Attributes:
        model_id: Embedding model that produced the vector
        dimensions: Vector length
        content_hash: SHA-256 of the canonical text that was embedded
        generated_at: UTC timestamp of generation
        service_id: Embedding service identifier from settings
        version: Metadata format version
    """

    model_id: str
    dimensions: int = Field(ge=0)
    content_hash: str
    generated_at: datetime
    service_id: str
    version: str = "1"


class EmbeddingPayload(_CamelModel):
    """Vector plus metadata; vector is empty when the backend stores none."""

    vector: list[float] = Field(default_factory=list)
    metadata: EmbeddingMetadata


class PersistedEntityEnvelope(_CamelModel):
    """Envelope written for flat-file and blob entities that carry a vector."""

    data: dict[str, Any]
    embedding: EmbeddingPayload | None = None
    schema_version: str = ENVELOPE_SCHEMA_VERSION


class DocumentEntity(_CamelModel):
    """Entity document stored in the document database."""

    id: str
    model_name: str
    entity_type: str
    entity_name: str
    data: dict[str, Any]
    embedding: EmbeddingMetadata | None = None
    created_at: datetime


class LocalBlobEntityMapper:
    """Mapper for the flat-file and blob backends."""

    def to_persisted_entity(
        self, entity: SemanticModelEntity, embedding: EmbeddingPayload | None = None
    ) -> dict[str, Any]:
        """Wrap an entity in an envelope when a payload exists, else return the bare entity."""
        data = entity.to_json_dict()
        if embedding is None:
            return data
        return PersistedEntityEnvelope(data=data, embedding=embedding).to_json_dict()


class CosmosEntityMapper:
    """Mapper for the document-database backend."""

    @staticmethod
    def document_id(model_name: str, entity_type: str, entity_name: str) -> str:
        return f"{model_name}_{entity_type}_{entity_name}"

    def to_document_entity(
        self,
        model_name: str,
        entity_type: str,
        entity_name: str,
        entity: SemanticModelEntity,
        metadata: EmbeddingMetadata | None,
        created_at: datetime,
    ) -> dict[str, Any]:
        """Build the entity document; only metadata is embedded, never vector floats."""
        document = DocumentEntity(
            id=self.document_id(model_name, entity_type, entity_name),
            model_name=model_name,
            entity_type=entity_type,
            entity_name=entity_name,
            data=entity.to_json_dict(),
            embedding=metadata,
            created_at=created_at,
        )
        return document.to_json_dict()


def is_envelope(document: Any) -> bool:
    return (
        isinstance(document, dict)
        and isinstance(document.get("data"), dict)
        and set(document) <= _ENVELOPE_KEYS
    )


def persisted_data(document: Any) -> Any:
    """Return the entity data of a stored body without touching its embedding."""
    return document["data"] if is_envelope(document) else document


def unwrap_persisted(document: dict[str, Any]) -> tuple[dict[str, Any], EmbeddingPayload | None]:
    """Split a stored entity body into (entity data, embedding).

    Accepts the legacy bare entity shape as well as the envelope.

    Raises:
        pydantic.ValidationError: If the embedding block is malformed
    """
    if not is_envelope(document):
        return document, None
    block = document.get("embedding")
    if not block:
        return document["data"], None
    return document["data"], EmbeddingPayload.model_validate(block)


def unwrap_document(document: dict[str, Any]) -> tuple[dict[str, Any], EmbeddingPayload | None]:
    """Split a document-database entity into (entity data, metadata-only embedding)."""
    data = document.get("data")
    if not isinstance(data, dict):
        raise ValueError(f"Document {document.get('id')!r} has no entity data")
    metadata = document.get("embedding")
    if not metadata:
        return data, None
    return data, EmbeddingPayload(metadata=EmbeddingMetadata.model_validate(metadata))
