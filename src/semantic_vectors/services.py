"""Composition root wiring persistence, policy, indexes and embeddings."""

import threading
from dataclasses import dataclass

from semantic_model.config import CosmosDbSettings, RepositoryStrategy, SemanticStoreConfig
from semantic_model.factory import PersistenceStrategyFactory, StrategyBuilder
from semantic_model.performance import PerformanceMonitor
from semantic_model.repository import SemanticModelRepository
from semantic_vectors.embedding import EmbeddingGenerator, create_embedding_generator
from semantic_vectors.generation import VectorGenerationService
from semantic_vectors.index import InMemoryVectorStore, VectorIndex, create_vector_index
from semantic_vectors.infrastructure import VectorInfrastructure, VectorInfrastructureFactory
from semantic_vectors.search import VectorSearchService


class VectorIndexResolver:
    """Builds one index per (provider, collection) and reuses it."""

    def __init__(self, memory_store: InMemoryVectorStore, cosmos_db: CosmosDbSettings | None = None):
        self.memory_store = memory_store
        self.cosmos_db = cosmos_db
        self._indexes: dict[tuple[str, str], VectorIndex] = {}
        self._lock = threading.Lock()

    def __call__(self, infrastructure: VectorInfrastructure) -> VectorIndex:
        key = (infrastructure.provider.value, infrastructure.collection_name)
        with self._lock:
            index = self._indexes.get(key)
            if index is None:
                index = create_vector_index(
                    infrastructure, memory_store=self.memory_store, cosmos_db=self.cosmos_db
                )
                self._indexes[key] = index
            return index


@dataclass
class SemanticStoreServices:
    repository: SemanticModelRepository
    generation: VectorGenerationService
    search: VectorSearchService
    memory_store: InMemoryVectorStore
    monitor: PerformanceMonitor


def create_services(
    config: SemanticStoreConfig,
    embedding_generator: EmbeddingGenerator | None = None,
    memory_store: InMemoryVectorStore | None = None,
    strategy_builders: dict[RepositoryStrategy, StrategyBuilder] | None = None,
    monitor: PerformanceMonitor | None = None,
) -> SemanticStoreServices:
    """Wire every service from one configuration.

    The in-memory vector store lives as long as the returned services; pass one
    in to share it across several roots.
    """
    monitor = monitor or PerformanceMonitor()
    memory_store = memory_store or InMemoryVectorStore()
    embedding_generator = embedding_generator or create_embedding_generator(config.embedding)

    strategy_factory = PersistenceStrategyFactory(config.repository, builders=strategy_builders)
    infrastructure_factory = VectorInfrastructureFactory()
    index_resolver = VectorIndexResolver(memory_store, config.repository.cosmos_db)

    return SemanticStoreServices(
        repository=SemanticModelRepository(strategy_factory, monitor=monitor),
        generation=VectorGenerationService(
            strategy_factory,
            config.vector_index,
            embedding_generator,
            index_resolver,
            infrastructure_factory=infrastructure_factory,
            monitor=monitor,
        ),
        search=VectorSearchService(
            config.vector_index,
            config.repository.strategy,
            embedding_generator,
            index_resolver,
            infrastructure_factory=infrastructure_factory,
        ),
        memory_store=memory_store,
        monitor=monitor,
    )


def create_generation_service(
    config: SemanticStoreConfig,
    embedding_generator: EmbeddingGenerator | None = None,
    memory_store: InMemoryVectorStore | None = None,
    strategy_builders: dict[RepositoryStrategy, StrategyBuilder] | None = None,
) -> VectorGenerationService:
    return create_services(
        config,
        embedding_generator=embedding_generator,
        memory_store=memory_store,
        strategy_builders=strategy_builders,
    ).generation
