"""Vector generation and index reconciliation workflows.

For each entity in scope: build canonical text, hash it, compare with the hash
stored next to the entity, then skip, report (dry run) or generate. A generated
vector is persisted through the active persistence strategy first and only
then upserted into the vector index.
"""

import asyncio
import math
from collections.abc import Callable
from datetime import datetime, timezone

from loguru import logger
from pydantic import BaseModel, Field

from semantic_model.config import RepositoryStrategy, VectorIndexSettings
from semantic_model.exceptions import (
    CorruptDataError,
    EmbeddingFailure,
    IndexWriteFailure,
    PersistenceWriteFailure,
)
from semantic_model.factory import PersistenceStrategyFactory
from semantic_model.mappers import EmbeddingMetadata, EmbeddingPayload
from semantic_model.models import SemanticModel, SemanticModelEntity
from semantic_model.performance import PerformanceMonitor
from semantic_model.persistence import Location, SemanticModelPersistenceStrategy
from semantic_vectors.canonical import build_canonical_text
from semantic_vectors.embedding import EmbeddingGenerator
from semantic_vectors.index import VectorIndex
from semantic_vectors.infrastructure import VectorInfrastructure, VectorInfrastructureFactory
from semantic_vectors.keys import EntityKeyBuilder
from semantic_vectors.models import EntityVectorRecord
from semantic_vectors.planning import VectorGenerationOptions, plan_entity, select_entities

IndexFactory = Callable[[VectorInfrastructure], VectorIndex]


class GenerationReport(BaseModel):
    """Outcome of a generation or reconcile run.

    Attributes:
        processed: Entities generated (or that would be, in a dry run) or re-indexed
        skipped: Entities left untouched (unchanged content, or no vector to re-index)
        failed: Entities whose embedding or persistence failed
        index_failures: Keys persisted but not indexed; recoverable by reconcile
        cancelled: The run stopped early on a cancellation signal
        dry_run: Nothing was generated or written
    """

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    index_failures: list[str] = Field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False


class VectorGenerationService:
    """Generates entity vectors and keeps the vector index in step with storage."""

    def __init__(
        self,
        strategy_factory: PersistenceStrategyFactory,
        vector_settings: VectorIndexSettings,
        embedding_generator: EmbeddingGenerator,
        index_factory: IndexFactory,
        infrastructure_factory: VectorInfrastructureFactory | None = None,
        key_builder: EntityKeyBuilder | None = None,
        monitor: PerformanceMonitor | None = None,
    ):
        """Initialize generation service.

        Args:
            strategy_factory: Resolves the active persistence strategy
            vector_settings: Vector index settings (provider, collection, dimensions)
            embedding_generator: Text-to-vector capability
            index_factory: Builds (or returns a cached) index for an infrastructure descriptor
            infrastructure_factory: Validates settings and builds descriptors
            key_builder: Composite key and content hash builder
            monitor: Performance monitor for per-entity timings
        """
        self.strategy_factory = strategy_factory
        self.vector_settings = vector_settings
        self.embedding_generator = embedding_generator
        self.index_factory = index_factory
        self.infrastructure_factory = infrastructure_factory or VectorInfrastructureFactory()
        self.key_builder = key_builder or EntityKeyBuilder()
        self.monitor = monitor or PerformanceMonitor()

    @property
    def repository_strategy(self) -> RepositoryStrategy:
        return self.strategy_factory.default_strategy

    def _resolve(self) -> tuple[VectorInfrastructure, SemanticModelPersistenceStrategy]:
        infrastructure = self.infrastructure_factory.create(self.vector_settings, self.repository_strategy)
        strategy = self.strategy_factory.get_strategy(self.repository_strategy)
        return infrastructure, strategy

    async def generate(
        self,
        model: SemanticModel,
        location: Location,
        options: VectorGenerationOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """Generate vectors and return the number of entities processed."""
        report = await self.generate_with_report(model, location, options, cancel_event)
        return report.processed

    async def generate_with_report(
        self,
        model: SemanticModel,
        location: Location,
        options: VectorGenerationOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationReport:
        """Run the generation workflow over the entities selected by ``options``.

        Per-entity failures are logged and counted; they never abort the batch.

        Raises:
            ConfigurationError: If the vector settings are invalid for the repository
                strategy (raised before any entity is touched)
        """
        options = options or VectorGenerationOptions()
        infrastructure, strategy = self._resolve()
        index = None
        if infrastructure.settings.push_on_generate and not options.dry_run:
            index = self.index_factory(infrastructure)

        entities = select_entities(model, options)
        report = GenerationReport(dry_run=options.dry_run)
        logger.info(
            f"Generating vectors for {len(entities)} entities of model {model.name!r} "
            f"(provider={infrastructure.provider.value}, overwrite={options.overwrite}, "
            f"dry_run={options.dry_run})"
        )

        semaphore = asyncio.Semaphore(options.max_concurrency)

        async def worker(entity: SemanticModelEntity) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    return
                try:
                    with self.monitor.track("GenerateEntityVector", entity=f"{entity.schema_name}.{entity.name}"):
                        await self._process_entity(
                            model, entity, location, options, infrastructure, strategy, index, report
                        )
                except Exception:
                    logger.exception(
                        f"Unexpected error generating vector for {entity.schema_name}.{entity.name}; skipping"
                    )
                    report.failed += 1

        with self.monitor.track("GenerateVectors", model=model.name):
            outcomes = await asyncio.gather(*(worker(entity) for entity in entities), return_exceptions=True)

        for entity, outcome in zip(entities, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Worker for {entity.schema_name}.{entity.name} aborted: {outcome!r}")
                report.failed += 1

        logger.info(
            f"Vector generation for {model.name!r} finished: processed={report.processed}, "
            f"skipped={report.skipped}, failed={report.failed}, "
            f"index_failures={len(report.index_failures)}, cancelled={report.cancelled}"
        )
        return report

    async def _existing_hash(
        self,
        strategy: SemanticModelPersistenceStrategy,
        entity: SemanticModelEntity,
        content_hash: str,
        location: Location,
    ) -> str | None:
        try:
            return await strategy.check_vector_exists(
                entity.entity_kind, entity.schema_name, entity.name, content_hash, location
            )
        except CorruptDataError as exc:
            logger.warning(
                f"Unreadable persisted entity {entity.schema_name}.{entity.name}; regenerating: {exc.message}"
            )
            return None

    async def _embed(self, label: str, content: str) -> list[float]:
        try:
            vector = await self.embedding_generator.generate(content)
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding generation raised for {label}: {exc}") from exc
        if not vector:
            raise EmbeddingFailure(f"Embedding generation returned an empty vector for {label}")
        if not all(math.isfinite(value) for value in vector):
            raise EmbeddingFailure(f"Embedding for {label} contains non-finite values")
        expected = self.vector_settings.expected_dimensions
        if expected is not None and len(vector) != expected:
            raise EmbeddingFailure(
                f"Embedding for {label} has {len(vector)} dimensions, expected {expected}"
            )
        return list(vector)

    async def _process_entity(
        self,
        model: SemanticModel,
        entity: SemanticModelEntity,
        location: Location,
        options: VectorGenerationOptions,
        infrastructure: VectorInfrastructure,
        strategy: SemanticModelPersistenceStrategy,
        index: VectorIndex | None,
        report: GenerationReport,
    ) -> None:
        label = f"{entity.entity_kind.value} {entity.schema_name}.{entity.name}"
        content = build_canonical_text(entity)
        content_hash = self.key_builder.build_content_hash(content)
        try:
            key = self.key_builder.build_key(
                model.name, entity.entity_kind.value, entity.schema_name, entity.name
            )
        except ValueError as exc:
            logger.warning(f"Cannot build a vector key for {label}: {exc}; skipping")
            report.failed += 1
            return

        existing_hash = await self._existing_hash(strategy, entity, content_hash, location)
        plan = plan_entity(
            existing_hash, content_hash, overwrite=options.overwrite, dry_run=options.dry_run
        )

        if plan["action"] == "skip":
            logger.info(f"Skipping unchanged {label}")
            report.skipped += 1
            return
        if plan["action"] == "dry_run":
            logger.info(f"[DryRun] Would generate embedding for {label} ({plan['reason']})")
            report.processed += 1
            return

        try:
            vector = await self._embed(label, content)
        except EmbeddingFailure as exc:
            logger.warning(f"{exc.message}; skipping")
            report.failed += 1
            return

        payload = EmbeddingPayload(
            vector=vector,
            metadata=EmbeddingMetadata(
                model_id=getattr(self.embedding_generator, "model_id", infrastructure.embedding_service_id),
                dimensions=len(vector),
                content_hash=content_hash,
                generated_at=datetime.now(timezone.utc),
                service_id=infrastructure.embedding_service_id,
            ),
        )
        try:
            await strategy.save_entity(location, entity, payload)
        except PersistenceWriteFailure as exc:
            logger.error(f"Failed to persist vector for {label}; not indexing: {exc.message}")
            report.failed += 1
            return

        if index is not None:
            record = EntityVectorRecord(
                id=key,
                schema=entity.schema_name,
                name=entity.name,
                entity_type=entity.entity_kind.value,
                content=content,
                vector=vector,
                content_hash=content_hash,
            )
            try:
                await index.upsert(record)
            except IndexWriteFailure as exc:
                logger.warning(f"{label} persisted but not indexed; run reconcile: {exc.message}")
                report.index_failures.append(key)

        logger.info(f"Generated vector for {label} ({plan['reason']})")
        report.processed += 1

    async def reconcile(
        self,
        location: Location,
        dry_run: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationReport:
        """Re-upsert persisted vectors into the index without calling the embedding generator.

        Persisted state is only read. Entities whose stored form carries no vector
        (document-database entities keep metadata only) are skipped.
        Entities whose current canonical text no longer matches the stored hash
        are skipped as stale.

        Raises:
            ConfigurationError: If the vector settings are invalid for the repository strategy
            NotFoundError: If no model exists at the location
        """
        infrastructure, strategy = self._resolve()
        index = None if dry_run else self.index_factory(infrastructure)
        report = GenerationReport(dry_run=dry_run)

        with self.monitor.track("ReconcileIndex", location=str(location)):
            model = await strategy.load_model(location)
            persisted_entities = await strategy.list_persisted_entities(location)
            logger.info(
                f"Reconciling {len(persisted_entities)} persisted entities of {model.name!r} "
                f"into {infrastructure.provider.value} collection {infrastructure.collection_name!r}"
            )

            for persisted in persisted_entities:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    break
                entity = persisted.entity
                label = f"{persisted.kind.value} {entity.schema_name}.{entity.name}"
                if persisted.embedding is None or not persisted.embedding.vector:
                    logger.info(f"No persisted vector for {label}; skipping")
                    report.skipped += 1
                    continue
                content = build_canonical_text(entity)
                stored_hash = persisted.embedding.metadata.content_hash
                if self.key_builder.build_content_hash(content) != stored_hash:
                    logger.warning(f"Persisted vector for {label} is stale; skipping")
                    report.skipped += 1
                    continue
                if dry_run:
                    logger.info(f"[DryRun] Would re-index {label}")
                    report.processed += 1
                    continue

                try:
                    key = self.key_builder.build_key(
                        model.name, persisted.kind.value, entity.schema_name, entity.name
                    )
                    record = EntityVectorRecord(
                        id=key,
                        schema=entity.schema_name,
                        name=entity.name,
                        entity_type=persisted.kind.value,
                        content=content,
                        vector=persisted.embedding.vector,
                        content_hash=stored_hash,
                    )
                except ValueError as exc:
                    logger.warning(f"Cannot re-index {label}: {exc}")
                    report.failed += 1
                    continue
                try:
                    await index.upsert(record)  # type: ignore[union-attr]
                except IndexWriteFailure as exc:
                    logger.warning(f"Failed to re-index {label}: {exc.message}")
                    report.index_failures.append(key)
                    report.failed += 1
                    continue
                report.processed += 1

        logger.info(
            f"Reconcile of {model.name!r} finished: processed={report.processed}, "
            f"skipped={report.skipped}, failed={report.failed}"
        )
        return report
