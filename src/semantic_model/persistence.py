"""Persistence strategies for semantic models.

Each backend implements :class:`SemanticModelPersistenceStrategy` on its own.
Storage shape differences (inline vector envelope vs. metadata-only document)
live in the mappers, not here.

Every strategy honors the same layout: a model root holding
``semanticmodel.json`` plus ``tables/``, ``views/`` and ``storedprocedures/``
folders with one ``{schema}.{name}.json`` body per entity.
"""

import json
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from filelock import FileLock, Timeout
from loguru import logger
from pydantic import ValidationError

from semantic_model.config import LocalDiskSettings
from semantic_model.exceptions import CorruptDataError, NotFoundError, PersistenceWriteFailure
from semantic_model.mappers import (
    EmbeddingPayload,
    LocalBlobEntityMapper,
    persisted_data,
    unwrap_persisted,
)
from semantic_model.models import (
    EntityKind,
    SemanticModel,
    SemanticModelEntity,
    entity_from_dict,
    references_by_kind,
)

MODEL_INDEX_FILE = "semanticmodel.json"

Location = str | os.PathLike[str]


@dataclass(frozen=True)
class PersistedEntity:
    """An entity as read back from storage, with its embedding if any."""

    kind: EntityKind
    entity: SemanticModelEntity
    embedding: EmbeddingPayload | None = None

    @property
    def content_hash(self) -> str | None:
        return self.embedding.metadata.content_hash if self.embedding else None


def model_name_of(location: Location) -> str:
    """Model name is the last segment of the location."""
    name = PurePosixPath(str(location).replace("\\", "/")).name
    if not name:
        raise ValueError(f"Location {str(location)!r} does not name a model")
    return name


def entity_file_name(schema_name: str, name: str) -> str:
    return f"{schema_name}.{name}.json"


def split_entity_path(relative_path: str) -> tuple[EntityKind, str]:
    """Split ``tables/dbo.Customer.json`` into (kind, "dbo.Customer").

    Raises:
        ValueError: If the path is absolute, escapes the model root, or is not an entity path
    """
    path = PurePosixPath(relative_path.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise ValueError(f"Entity path {relative_path!r} must stay inside the model")
    if len(path.parts) != 2 or path.suffix != ".json":
        raise ValueError(f"Entity path {relative_path!r} must look like '<kind>/<schema>.<name>.json'")
    return EntityKind.parse(path.parts[0]), path.stem


def parse_json(raw: str | bytes, source: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CorruptDataError(f"Malformed JSON in {source}", {"source": source}) from exc


def parse_persisted_entity(kind: EntityKind, body: Any, source: str) -> PersistedEntity:
    """Build a :class:`PersistedEntity` from a bare or enveloped body.

    Raises:
        CorruptDataError: If the body does not describe a valid entity
    """
    if not isinstance(body, dict):
        raise CorruptDataError(f"Entity body in {source} is not an object", {"source": source})
    try:
        data, embedding = unwrap_persisted(body)
        entity = entity_from_dict(kind, data)
    except (ValidationError, ValueError) as exc:
        raise CorruptDataError(f"Invalid entity in {source}: {exc}", {"source": source}) from exc
    return PersistedEntity(kind=kind, entity=entity, embedding=embedding)


def assemble_model(index: Any, entities: dict[tuple[EntityKind, str], SemanticModelEntity], source: str) -> SemanticModel:
    """Rebuild a model from its index document and the entities it references.

    Raises:
        CorruptDataError: If the index is invalid or references a missing entity
    """
    if not isinstance(index, dict):
        raise CorruptDataError(f"Model index in {source} is not an object", {"source": source})
    try:
        references = references_by_kind(index)
        collections: dict[EntityKind, list[SemanticModelEntity]] = {}
        for kind, refs in references.items():
            collections[kind] = []
            for ref in refs:
                key = (kind, f"{ref.schema_name}.{ref.name}")
                if key not in entities:
                    raise CorruptDataError(
                        f"Model index in {source} references missing {kind.value} "
                        f"{ref.schema_name}.{ref.name}",
                        {"source": source},
                    )
                collections[kind].append(entities[key])
        return SemanticModel(
            name=index.get("name") or "",
            source=index.get("source") or "",
            description=index.get("description"),
            tables=collections[EntityKind.TABLE],
            views=collections[EntityKind.VIEW],
            stored_procedures=collections[EntityKind.STORED_PROCEDURE],
        )
    except ValidationError as exc:
        raise CorruptDataError(f"Invalid model in {source}: {exc}", {"source": source}) from exc


class SemanticModelPersistenceStrategy(ABC):
    """Contract every persistence backend implements.

    All operations are coroutines; locations name a model root whose last
    segment is the model name.
    """

    @abstractmethod
    async def save_model(self, model: SemanticModel, location: Location) -> None:
        """Write the full model, replacing any previous content (overwrite semantics).

        Embedding blocks of entities that survive the rewrite are preserved;
        entities no longer in the model are removed.
        """

    @abstractmethod
    async def load_model(self, location: Location) -> SemanticModel:
        """Load a model.

        Raises:
            NotFoundError: If no model exists at the location
            CorruptDataError: If stored content is malformed
        """

    @abstractmethod
    async def exists(self, location: Location) -> bool: ...

    @abstractmethod
    async def list_models(self, root: Location) -> list[str]: ...

    @abstractmethod
    async def delete_model(self, location: Location) -> None:
        """Delete a model; deleting an absent model is not an error."""

    @abstractmethod
    async def load_entity_content(self, location: Location, relative_path: str) -> str | None:
        """Return the unwrapped entity JSON, or None when the entity is absent."""

    @abstractmethod
    async def save_entity(
        self,
        location: Location,
        entity: SemanticModelEntity,
        embedding: EmbeddingPayload | None = None,
    ) -> None:
        """Persist one entity with its embedding in the backend's shape.

        Raises:
            PersistenceWriteFailure: If the write fails
        """

    @abstractmethod
    async def load_persisted_entity(
        self, location: Location, kind: EntityKind, schema_name: str, name: str
    ) -> PersistedEntity | None: ...

    @abstractmethod
    async def list_persisted_entities(self, location: Location) -> list[PersistedEntity]: ...

    async def check_vector_exists(
        self,
        entity_type: EntityKind | str,
        schema_name: str,
        name: str,
        content_hash: str,
        location: Location,
    ) -> str | None:
        """Return the stored content hash of an entity's vector, or None.

        The default reads the full persisted body; backends with a cheaper
        projection override this.
        """
        persisted = await self.load_persisted_entity(
            location, EntityKind.parse(entity_type), schema_name, name
        )
        return persisted.content_hash if persisted else None


class LocalDiskPersistenceStrategy(SemanticModelPersistenceStrategy):
    """Flat-file backend: one directory per model.

    Model writes go to a temporary sibling directory which is swapped in under a
    per-model :class:`filelock.FileLock`, so readers never observe a partially
    written model. Single-entity writes replace the file atomically.
    """

    def __init__(
        self,
        lock_timeout_seconds: float = 30.0,
        mapper: LocalBlobEntityMapper | None = None,
    ):
        self.lock_timeout_seconds = lock_timeout_seconds
        self.mapper = mapper or LocalBlobEntityMapper()

    @classmethod
    def from_settings(cls, settings: LocalDiskSettings) -> "LocalDiskPersistenceStrategy":
        return cls(lock_timeout_seconds=settings.lock_timeout_seconds)

    def _lock(self, model_dir: Path) -> FileLock:
        model_dir.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(model_dir.parent / f".{model_dir.name}.lock", timeout=self.lock_timeout_seconds)

    @staticmethod
    def _write_json(path: Path, document: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

    def _read_persisted(self, path: Path, kind: EntityKind) -> PersistedEntity | None:
        if not path.is_file():
            return None
        return parse_persisted_entity(kind, parse_json(path.read_bytes(), str(path)), str(path))

    async def save_model(self, model: SemanticModel, location: Location) -> None:
        model_dir = Path(location)
        staging = model_dir.with_name(f".{model_dir.name}.staging-{uuid.uuid4().hex}")
        retired = model_dir.with_name(f".{model_dir.name}.retired-{uuid.uuid4().hex}")

        try:
            with self._lock(model_dir):
                for entity in model.entities():
                    embedding = self._existing_embedding(model_dir / entity.relative_path, entity)
                    self._write_json(
                        staging / entity.relative_path,
                        self.mapper.to_persisted_entity(entity, embedding),
                    )
                self._write_json(staging / MODEL_INDEX_FILE, model.index_document())

                if model_dir.exists():
                    model_dir.rename(retired)
                try:
                    staging.rename(model_dir)
                except OSError:
                    if retired.exists():
                        retired.rename(model_dir)
                    raise
                shutil.rmtree(retired, ignore_errors=True)
        except (OSError, Timeout) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise PersistenceWriteFailure(
                f"Failed to save model {model.name!r} to {model_dir}: {exc}",
                {"location": str(model_dir)},
            ) from exc

        logger.info(f"Saved semantic model {model.name!r} to {model_dir}")

    def _existing_embedding(self, path: Path, entity: SemanticModelEntity) -> EmbeddingPayload | None:
        try:
            persisted = self._read_persisted(path, entity.entity_kind)
        except CorruptDataError as exc:
            logger.warning(f"Dropping unreadable embedding for {path}: {exc.message}")
            return None
        return persisted.embedding if persisted else None

    async def load_model(self, location: Location) -> SemanticModel:
        model_dir = Path(location)
        index_path = model_dir / MODEL_INDEX_FILE
        if not index_path.is_file():
            raise NotFoundError(f"No semantic model at {model_dir}", {"location": str(model_dir)})

        index = parse_json(index_path.read_bytes(), str(index_path))
        entities: dict[tuple[EntityKind, str], SemanticModelEntity] = {}
        if isinstance(index, dict):
            for kind, refs in _safe_references(index, str(index_path)).items():
                for ref in refs:
                    path = model_dir / kind.folder / entity_file_name(ref.schema_name, ref.name)
                    persisted = self._read_persisted(path, kind)
                    if persisted is not None:
                        entities[(kind, f"{ref.schema_name}.{ref.name}")] = persisted.entity

        model = assemble_model(index, entities, str(index_path))
        logger.debug(f"Loaded semantic model {model.name!r} from {model_dir}")
        return model

    async def exists(self, location: Location) -> bool:
        return (Path(location) / MODEL_INDEX_FILE).is_file()

    async def list_models(self, root: Location) -> list[str]:
        root_dir = Path(root)
        if not root_dir.is_dir():
            return []
        return sorted(
            child.name
            for child in root_dir.iterdir()
            if child.is_dir() and not child.name.startswith(".") and (child / MODEL_INDEX_FILE).is_file()
        )

    async def delete_model(self, location: Location) -> None:
        model_dir = Path(location)
        if not model_dir.exists():
            logger.debug(f"Nothing to delete at {model_dir}")
            return
        with self._lock(model_dir):
            shutil.rmtree(model_dir, ignore_errors=True)
        logger.info(f"Deleted semantic model at {model_dir}")

    async def load_entity_content(self, location: Location, relative_path: str) -> str | None:
        split_entity_path(relative_path)
        model_dir = Path(location).resolve()
        path = (model_dir / relative_path).resolve()
        if not path.is_relative_to(model_dir):
            raise ValueError(f"Entity path {relative_path!r} must stay inside the model")
        if not path.is_file():
            return None
        body = parse_json(path.read_bytes(), str(path))
        data = persisted_data(body)
        return json.dumps(data, indent=2, ensure_ascii=False)

    async def save_entity(
        self,
        location: Location,
        entity: SemanticModelEntity,
        embedding: EmbeddingPayload | None = None,
    ) -> None:
        model_dir = Path(location)
        path = model_dir / entity.relative_path
        try:
            with self._lock(model_dir):
                self._write_json(path, self.mapper.to_persisted_entity(entity, embedding))
        except (OSError, Timeout) as exc:
            raise PersistenceWriteFailure(
                f"Failed to write {entity.relative_path} under {model_dir}: {exc}",
                {"path": str(path)},
            ) from exc
        logger.debug(f"Wrote {path}")

    async def load_persisted_entity(
        self, location: Location, kind: EntityKind, schema_name: str, name: str
    ) -> PersistedEntity | None:
        kind = EntityKind.parse(kind)
        return self._read_persisted(Path(location) / kind.folder / entity_file_name(schema_name, name), kind)

    async def list_persisted_entities(self, location: Location) -> list[PersistedEntity]:
        model_dir = Path(location)
        persisted: list[PersistedEntity] = []
        for kind in EntityKind:
            folder = model_dir / kind.folder
            if not folder.is_dir():
                continue
            for path in sorted(folder.glob("*.json")):
                item = self._read_persisted(path, kind)
                if item is not None:
                    persisted.append(item)
        return persisted


def _safe_references(index: dict[str, Any], source: str) -> dict[EntityKind, list[Any]]:
    try:
        return references_by_kind(index)
    except ValidationError as exc:
        raise CorruptDataError(f"Invalid model index in {source}: {exc}", {"source": source}) from exc
