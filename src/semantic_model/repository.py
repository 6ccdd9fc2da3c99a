"""Repository facade over the active persistence strategy."""

from loguru import logger

from semantic_model.config import RepositoryStrategy
from semantic_model.factory import PersistenceStrategyFactory
from semantic_model.models import SemanticModel
from semantic_model.performance import PerformanceMonitor
from semantic_model.persistence import Location, SemanticModelPersistenceStrategy


class SemanticModelRepository:
    """Loads and saves semantic models, timing every call.

    Args:
        factory: Strategy factory resolving the configured backend
        monitor: Performance monitor (a private one is created when omitted)
        strategy_name: Override of the configured repository strategy
    """

    def __init__(
        self,
        factory: PersistenceStrategyFactory,
        monitor: PerformanceMonitor | None = None,
        strategy_name: RepositoryStrategy | str | None = None,
    ):
        self.factory = factory
        self.monitor = monitor or PerformanceMonitor()
        self.strategy_name = strategy_name

    @property
    def strategy(self) -> SemanticModelPersistenceStrategy:
        return self.factory.get_strategy(self.strategy_name)

    async def save_model(self, model: SemanticModel, location: Location) -> None:
        with self.monitor.track("SaveModel", model=model.name, location=str(location)):
            await self.strategy.save_model(model, location)

    async def load_model(self, location: Location) -> SemanticModel:
        with self.monitor.track("LoadModel", location=str(location)) as metadata:
            model = await self.strategy.load_model(location)
            metadata["entities"] = sum(1 for _ in model.entities())
        logger.info(f"Loaded model {model.name!r} with {metadata['entities']} entities")
        return model

    async def exists(self, location: Location) -> bool:
        with self.monitor.track("Exists", location=str(location)):
            return await self.strategy.exists(location)

    async def list_models(self, root: Location) -> list[str]:
        with self.monitor.track("ListModels", root=str(root)):
            return await self.strategy.list_models(root)

    async def delete_model(self, location: Location) -> None:
        with self.monitor.track("DeleteModel", location=str(location)):
            await self.strategy.delete_model(location)

    async def load_entity_content(self, location: Location, relative_path: str) -> str | None:
        with self.monitor.track("LoadEntityContent", path=relative_path):
            return await self.strategy.load_entity_content(location, relative_path)
