"""Vector provider resolution and compatibility rules."""

from loguru import logger

from semantic_model.config import RepositoryStrategy, VectorIndexSettings, VectorProvider
from semantic_model.exceptions import ConfigurationError

# Provider chosen for each repository strategy when settings say Auto.
AUTO_PROVIDERS: dict[RepositoryStrategy, VectorProvider] = {
    RepositoryStrategy.LOCAL_DISK: VectorProvider.IN_MEMORY,
    RepositoryStrategy.AZURE_BLOB: VectorProvider.IN_MEMORY,
    RepositoryStrategy.COSMOS_DB: VectorProvider.COSMOS_NOSQL,
}


class VectorIndexPolicy:
    """Decides which vector provider pairs with a repository strategy.

    A document-database repository must use the document-database-native
    provider.
    """

    def resolve_provider(
        self, settings: VectorIndexSettings, repository_strategy: RepositoryStrategy
    ) -> VectorProvider:
        """Return the effective provider; explicit settings pass through unchanged."""
        if settings.provider is not VectorProvider.AUTO:
            return settings.provider
        provider = AUTO_PROVIDERS[repository_strategy]
        logger.debug(f"Auto vector provider for {repository_strategy.value}: {provider.value}")
        return provider

    def validate(
        self, settings: VectorIndexSettings, repository_strategy: RepositoryStrategy
    ) -> None:
        """Reject incompatible or invalid settings.

        Raises:
            ConfigurationError: On a provider/repository mismatch, a non-positive
                expected dimension, or a repository missing from the allow-list
        """
        provider = self.resolve_provider(settings, repository_strategy)
        details = {"provider": provider.value, "repository_strategy": repository_strategy.value}

        if (
            repository_strategy is RepositoryStrategy.COSMOS_DB
            and provider is not VectorProvider.COSMOS_NOSQL
        ):
            raise ConfigurationError(
                f"Repository strategy {repository_strategy.value} requires vector provider "
                f"{VectorProvider.COSMOS_NOSQL.value}, got {provider.value}",
                details,
            )

        if settings.expected_dimensions is not None and settings.expected_dimensions <= 0:
            raise ConfigurationError(
                f"expected_dimensions must be positive, got {settings.expected_dimensions}",
                details,
            )

        allowed = settings.allowed_for_repository
        if allowed and repository_strategy not in allowed:
            raise ConfigurationError(
                f"Vector provider {provider.value} is not allowed for repository strategy "
                f"{repository_strategy.value} (allowed: {', '.join(s.value for s in allowed)})",
                details,
            )
