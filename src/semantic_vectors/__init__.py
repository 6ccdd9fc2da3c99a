"""Vector generation, indexing and search for semantic model entities.

This package derives an embedding index from entities persisted by
`semantic_model` and keeps the two consistent.

Architecture:
    - keys: Composite entity keys and SHA-256 content hashes
    - canonical: Deterministic entity text used for embedding and hashing
    - policy: Vector provider resolution and compatibility rules
    - infrastructure: Per-operation index descriptor
    - index: In-memory, Cosmos DB and Pinecone providers
    - embedding: Embedding generator protocol and OpenAI implementation
    - planning: Per-entity decisions and entity selection
    - generation: Generate and reconcile workflows
    - search: Similarity search
    - services: Composition root

Usage:
    >>> from semantic_model.config import load_config
    >>> from semantic_vectors.services import create_services
    >>> services = create_services(load_config())
    >>> count = await services.generation.generate(model, "semantic-models/sales")
"""

__version__ = "0.1.0"

from semantic_vectors.keys import EntityKeyBuilder
from semantic_vectors.models import EntityVectorRecord, IndexStats, SearchResult

__all__ = [
    "EntityKeyBuilder",
    "EntityVectorRecord",
    "IndexStats",
    "SearchResult",
]
