"""Pydantic models for vector index records and search results."""

import math
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityVectorRecord(BaseModel):
    """The unit written to the vector index for one entity.

    Attributes:
        id: Deterministic composite key from (model, kind, schema, name)
        schema_name: Entity schema
        name: Entity name
        entity_type: Entity kind value (table, view, storedprocedure)
        content: Canonical text that was embedded
        vector: Embedding vector (empty when a provider does not return values)
        content_hash: SHA-256 of content
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    schema_name: str = Field(alias="schema")
    name: str
    entity_type: str
    content: str = ""
    vector: list[float] = Field(default_factory=list)
    content_hash: str = ""

    @field_validator("vector")
    @classmethod
    def validate_vector_values(cls, v: list[float]) -> list[float]:
        """Ensure vector contains valid finite floats."""
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v

    def metadata(self) -> dict[str, str]:
        """Scalar fields stored alongside the vector by external providers."""
        return {
            "schema": self.schema_name,
            "name": self.name,
            "entity_type": self.entity_type,
            "content": self.content,
            "content_hash": self.content_hash,
        }


class SearchResult(BaseModel):
    """A single search hit.

    Attributes:
        record: Matched record
        score: Similarity score, higher is closer
        rank: 1-indexed position in the result list
    """

    record: EntityVectorRecord
    score: float
    rank: int = Field(ge=1)


class IndexStats(BaseModel):
    provider: str
    collection: str
    total_records: int = Field(ge=0)
    checked_at: datetime
