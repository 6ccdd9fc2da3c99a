"""Object-blob persistence backend (Azure Blob Storage)."""

import json
from typing import Any

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from loguru import logger

from semantic_model.config import AzureBlobSettings
from semantic_model.exceptions import (
    ConfigurationError,
    CorruptDataError,
    NotFoundError,
    PersistenceWriteFailure,
)
from semantic_model.mappers import EmbeddingPayload, LocalBlobEntityMapper, persisted_data
from semantic_model.models import EntityKind, SemanticModel, SemanticModelEntity
from semantic_model.persistence import (
    MODEL_INDEX_FILE,
    Location,
    PersistedEntity,
    SemanticModelPersistenceStrategy,
    assemble_model,
    entity_file_name,
    model_name_of,
    parse_json,
    parse_persisted_entity,
    split_entity_path,
)


class AzureBlobPersistenceStrategy(SemanticModelPersistenceStrategy):
    """Stores each model under ``{prefix}/{model}/`` in a single container.

    Entity blobs are uploaded before the model index blob, and blobs of
    entities that left the model are deleted afterwards.
    """

    def __init__(
        self,
        container_client: Any,
        blob_prefix: str = "",
        max_concurrency: int = 4,
        timeout_seconds: int = 300,
        mapper: LocalBlobEntityMapper | None = None,
    ):
        self.container = container_client
        self.blob_prefix = blob_prefix.strip("/")
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.mapper = mapper or LocalBlobEntityMapper()
        self._container_ready = False

    @classmethod
    def from_settings(cls, settings: AzureBlobSettings) -> "AzureBlobPersistenceStrategy":
        """Build the strategy from settings.

        Raises:
            ConfigurationError: If neither a connection string nor an endpoint is configured
        """
        from azure.storage.blob import BlobServiceClient

        if settings.connection_string:
            service = BlobServiceClient.from_connection_string(settings.connection_string)
        elif settings.account_endpoint:
            service = BlobServiceClient(
                account_url=settings.account_endpoint, credential=settings.credential
            )
        else:
            raise ConfigurationError(
                "Azure Blob persistence requires repository.azure_blob.connection_string "
                "or repository.azure_blob.account_endpoint"
            )
        return cls(
            service.get_container_client(settings.container_name),
            blob_prefix=settings.blob_prefix,
            max_concurrency=settings.max_concurrency,
            timeout_seconds=settings.operation_timeout_seconds,
        )

    def _model_prefix(self, model_name: str) -> str:
        return f"{self.blob_prefix}/{model_name}/" if self.blob_prefix else f"{model_name}/"

    def _ensure_container(self) -> None:
        if self._container_ready:
            return
        try:
            self.container.create_container()
            logger.info("Created blob container for semantic models")
        except ResourceExistsError:
            logger.debug("Blob container already exists")
        self._container_ready = True

    def _download(self, blob_name: str) -> bytes | None:
        try:
            return self.container.download_blob(blob_name, timeout=self.timeout_seconds).readall()
        except ResourceNotFoundError:
            return None

    def _upload(self, blob_name: str, document: Any) -> None:
        self.container.upload_blob(
            blob_name,
            json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8"),
            overwrite=True,
            max_concurrency=self.max_concurrency,
            timeout=self.timeout_seconds,
        )
        logger.debug(f"Uploaded blob {blob_name}")

    def _read_persisted(self, blob_name: str, kind: EntityKind) -> PersistedEntity | None:
        raw = self._download(blob_name)
        if raw is None:
            return None
        return parse_persisted_entity(kind, parse_json(raw, blob_name), blob_name)

    async def save_model(self, model: SemanticModel, location: Location) -> None:
        model_name = model_name_of(location)
        prefix = self._model_prefix(model_name)
        written: set[str] = set()
        try:
            self._ensure_container()
            for entity in model.entities():
                blob_name = prefix + entity.relative_path
                existing = self._read_persisted_quietly(blob_name, entity.entity_kind)
                embedding = existing.embedding if existing else None
                self._upload(blob_name, self.mapper.to_persisted_entity(entity, embedding))
                written.add(blob_name)

            index_name = prefix + MODEL_INDEX_FILE
            self._upload(index_name, model.index_document())
            written.add(index_name)

            for blob in self.container.list_blobs(name_starts_with=prefix):
                if blob.name not in written:
                    self.container.delete_blob(blob.name)
                    logger.debug(f"Deleted stale blob {blob.name}")
        except AzureError as exc:
            raise PersistenceWriteFailure(
                f"Failed to save model {model_name!r} to blob storage: {exc}",
                {"model": model_name},
            ) from exc

        logger.info(f"Saved semantic model {model_name!r} to blob prefix {prefix}")

    def _read_persisted_quietly(self, blob_name: str, kind: EntityKind) -> PersistedEntity | None:
        try:
            return self._read_persisted(blob_name, kind)
        except CorruptDataError as exc:
            logger.warning(f"Dropping unreadable embedding for blob {blob_name}: {exc.message}")
            return None

    async def load_model(self, location: Location) -> SemanticModel:
        model_name = model_name_of(location)
        prefix = self._model_prefix(model_name)
        index_name = prefix + MODEL_INDEX_FILE
        raw = self._download(index_name)
        if raw is None:
            raise NotFoundError(f"No semantic model {model_name!r} in blob storage", {"blob": index_name})

        index = parse_json(raw, index_name)
        entities: dict[tuple[EntityKind, str], SemanticModelEntity] = {}
        for item in await self.list_persisted_entities(location):
            entities[(item.kind, f"{item.entity.schema_name}.{item.entity.name}")] = item.entity
        return assemble_model(index, entities, index_name)

    async def exists(self, location: Location) -> bool:
        index_name = self._model_prefix(model_name_of(location)) + MODEL_INDEX_FILE
        return self.container.get_blob_client(index_name).exists()

    async def list_models(self, root: Location) -> list[str]:
        base = f"{self.blob_prefix}/" if self.blob_prefix else ""
        names: set[str] = set()
        try:
            for blob in self.container.list_blobs(name_starts_with=base):
                remainder = blob.name[len(base):]
                parts = remainder.split("/")
                if len(parts) == 2 and parts[1] == MODEL_INDEX_FILE:
                    names.add(parts[0])
        except ResourceNotFoundError:
            return []
        return sorted(names)

    async def delete_model(self, location: Location) -> None:
        prefix = self._model_prefix(model_name_of(location))
        try:
            blobs = [blob.name for blob in self.container.list_blobs(name_starts_with=prefix)]
        except ResourceNotFoundError:
            return
        for name in blobs:
            try:
                self.container.delete_blob(name)
            except ResourceNotFoundError:
                logger.debug(f"Blob {name} already absent")
        logger.info(f"Deleted {len(blobs)} blobs under {prefix}")

    async def load_entity_content(self, location: Location, relative_path: str) -> str | None:
        split_entity_path(relative_path)
        blob_name = self._model_prefix(model_name_of(location)) + relative_path.replace("\\", "/")
        raw = self._download(blob_name)
        if raw is None:
            return None
        body = parse_json(raw, blob_name)
        data = persisted_data(body)
        return json.dumps(data, indent=2, ensure_ascii=False)

    async def save_entity(
        self,
        location: Location,
        entity: SemanticModelEntity,
        embedding: EmbeddingPayload | None = None,
    ) -> None:
        blob_name = self._model_prefix(model_name_of(location)) + entity.relative_path
        try:
            self._ensure_container()
            self._upload(blob_name, self.mapper.to_persisted_entity(entity, embedding))
        except AzureError as exc:
            raise PersistenceWriteFailure(
                f"Failed to write blob {blob_name}: {exc}",
                {"blob": blob_name},
            ) from exc

    async def load_persisted_entity(
        self, location: Location, kind: EntityKind, schema_name: str, name: str
    ) -> PersistedEntity | None:
        kind = EntityKind.parse(kind)
        blob_name = (
            self._model_prefix(model_name_of(location))
            + f"{kind.folder}/{entity_file_name(schema_name, name)}"
        )
        return self._read_persisted(blob_name, kind)

    async def list_persisted_entities(self, location: Location) -> list[PersistedEntity]:
        prefix = self._model_prefix(model_name_of(location))
        persisted: list[PersistedEntity] = []
        for kind in EntityKind:
            folder = f"{prefix}{kind.folder}/"
            names = sorted(blob.name for blob in self.container.list_blobs(name_starts_with=folder))
            for name in names:
                if not name.endswith(".json"):
                    continue
                item = self._read_persisted(name, kind)
                if item is not None:
                    persisted.append(item)
        return persisted
