"""Resolve and cache persistence strategies by repository strategy name."""

import threading
from collections.abc import Callable

from loguru import logger

from semantic_model.blob import AzureBlobPersistenceStrategy
from semantic_model.config import RepositorySettings, RepositoryStrategy
from semantic_model.cosmos import CosmosPersistenceStrategy
from semantic_model.exceptions import ConfigurationError
from semantic_model.persistence import LocalDiskPersistenceStrategy, SemanticModelPersistenceStrategy

StrategyBuilder = Callable[[RepositorySettings], SemanticModelPersistenceStrategy]

DEFAULT_BUILDERS: dict[RepositoryStrategy, StrategyBuilder] = {
    RepositoryStrategy.LOCAL_DISK: lambda s: LocalDiskPersistenceStrategy.from_settings(s.local_disk),
    RepositoryStrategy.AZURE_BLOB: lambda s: AzureBlobPersistenceStrategy.from_settings(s.azure_blob),
    RepositoryStrategy.COSMOS_DB: lambda s: CosmosPersistenceStrategy.from_settings(s.cosmos_db),
}


class PersistenceStrategyFactory:
    """Builds at most one strategy instance per backend and reuses it.

    The cache is guarded by a lock so concurrent callers resolving the same
    backend get the same instance.
    """

    def __init__(
        self,
        settings: RepositorySettings,
        builders: dict[RepositoryStrategy, StrategyBuilder] | None = None,
    ):
        self.settings = settings
        self._builders = dict(DEFAULT_BUILDERS)
        if builders:
            self._builders.update(builders)
        self._cache: dict[RepositoryStrategy, SemanticModelPersistenceStrategy] = {}
        self._lock = threading.Lock()

    @property
    def default_strategy(self) -> RepositoryStrategy:
        return self.settings.strategy

    def get_strategy(
        self, name: RepositoryStrategy | str | None = None
    ) -> SemanticModelPersistenceStrategy:
        """Return the cached strategy for ``name`` (the configured one when omitted).

        Raises:
            ConfigurationError: If the name is unknown or the backend settings are incomplete
        """
        try:
            key = RepositoryStrategy.parse(name) if name is not None else self.settings.strategy
        except ValueError as exc:
            raise ConfigurationError(str(exc), {"strategy": name}) from exc

        with self._lock:
            strategy = self._cache.get(key)
            if strategy is None:
                builder = self._builders.get(key)
                if builder is None:
                    raise ConfigurationError(f"No persistence strategy registered for {key.value}")
                strategy = builder(self.settings)
                self._cache[key] = strategy
                logger.info(f"Created {type(strategy).__name__} for repository strategy {key.value}")
            return strategy
