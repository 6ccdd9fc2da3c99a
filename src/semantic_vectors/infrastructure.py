"""Per-operation vector infrastructure descriptor."""

from dataclasses import dataclass

from semantic_model.config import RepositoryStrategy, VectorIndexSettings, VectorProvider
from semantic_model.exceptions import ConfigurationError
from semantic_vectors.policy import VectorIndexPolicy


@dataclass(frozen=True)
class VectorInfrastructure:
    """What generation and search need to reach the vector index.

    Recomputed from settings for each operation and never persisted.
    """

    provider: VectorProvider
    collection_name: str
    embedding_service_id: str
    repository_strategy: RepositoryStrategy
    settings: VectorIndexSettings


class VectorInfrastructureFactory:
    def __init__(self, policy: VectorIndexPolicy | None = None):
        self.policy = policy or VectorIndexPolicy()

    def create(
        self, settings: VectorIndexSettings, repository_strategy: RepositoryStrategy
    ) -> VectorInfrastructure:
        """Validate the settings and build the descriptor.

        Raises:
            ConfigurationError: If the policy rejects the combination or names are blank
        """
        self.policy.validate(settings, repository_strategy)
        if not settings.collection_name.strip():
            raise ConfigurationError("vector_index.collection_name must not be blank")
        if not settings.embedding_service_id.strip():
            raise ConfigurationError("vector_index.embedding_service_id must not be blank")
        return VectorInfrastructure(
            provider=self.policy.resolve_provider(settings, repository_strategy),
            collection_name=settings.collection_name.strip(),
            embedding_service_id=settings.embedding_service_id.strip(),
            repository_strategy=repository_strategy,
            settings=settings,
        )
