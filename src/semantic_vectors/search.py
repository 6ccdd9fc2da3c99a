"""Similarity search over the configured vector index."""

from loguru import logger

from semantic_model.config import RepositoryStrategy, VectorIndexSettings
from semantic_model.exceptions import EmbeddingFailure
from semantic_vectors.embedding import EmbeddingGenerator
from semantic_vectors.generation import IndexFactory
from semantic_vectors.infrastructure import VectorInfrastructureFactory
from semantic_vectors.models import SearchResult


class VectorSearchService:
    def __init__(
        self,
        vector_settings: VectorIndexSettings,
        repository_strategy: RepositoryStrategy,
        embedding_generator: EmbeddingGenerator,
        index_factory: IndexFactory,
        infrastructure_factory: VectorInfrastructureFactory | None = None,
    ):
        self.vector_settings = vector_settings
        self.repository_strategy = repository_strategy
        self.embedding_generator = embedding_generator
        self.index_factory = index_factory
        self.infrastructure_factory = infrastructure_factory or VectorInfrastructureFactory()

    async def search(self, query_vector: list[float], top_k: int = 10) -> list[SearchResult]:
        """Nearest records to ``query_vector``, most similar first.

        Raises:
            ConfigurationError: If the vector settings are invalid
            ValueError: If top_k is not positive
        """
        infrastructure = self.infrastructure_factory.create(self.vector_settings, self.repository_strategy)
        results = await self.index_factory(infrastructure).search(query_vector, top_k)
        logger.debug(f"Vector search returned {len(results)} results from {infrastructure.collection_name!r}")
        return results

    async def search_text(self, query: str, top_k: int = 10) -> list[SearchResult]:
        """Embed ``query`` and search with the resulting vector.

        Raises:
            EmbeddingFailure: If the query could not be embedded
        """
        if not query or not query.strip():
            raise ValueError("query must not be blank")
        vector = await self.embedding_generator.generate(query)
        if not vector:
            raise EmbeddingFailure("Could not embed search query", {"query_length": len(query)})
        return await self.search(vector, top_k)
