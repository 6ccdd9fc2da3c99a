"""Document-database persistence backend (Azure Cosmos DB for NoSQL).

Two containers share the ``/modelName`` partition key: one document per model
holding its header and entity references, and one document per entity. Entity
documents carry embedding metadata only; vectors live in the vector index.
"""

import json
from datetime import datetime, timezone
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError
from loguru import logger
from pydantic import ValidationError

from semantic_model.config import CosmosDbSettings
from semantic_model.exceptions import (
    ConfigurationError,
    CorruptDataError,
    NotFoundError,
    PersistenceWriteFailure,
)
from semantic_model.mappers import CosmosEntityMapper, EmbeddingPayload, unwrap_document
from semantic_model.models import EntityKind, SemanticModel, SemanticModelEntity, entity_from_dict
from semantic_model.persistence import (
    Location,
    PersistedEntity,
    SemanticModelPersistenceStrategy,
    assemble_model,
    model_name_of,
    split_entity_path,
)

_ENTITY_QUERY = "SELECT * FROM c WHERE c.modelName = @modelName"
_HASH_QUERY = "SELECT VALUE c.embedding.contentHash FROM c WHERE c.id = @id"
_MODEL_NAMES_QUERY = "SELECT VALUE c.modelName FROM c"


class CosmosPersistenceStrategy(SemanticModelPersistenceStrategy):
    """Stores models and entities as Cosmos DB documents."""

    def __init__(
        self,
        models_container: Any,
        entities_container: Any,
        mapper: CosmosEntityMapper | None = None,
    ):
        self.models = models_container
        self.entities = entities_container
        self.mapper = mapper or CosmosEntityMapper()

    @classmethod
    def from_settings(cls, settings: CosmosDbSettings) -> "CosmosPersistenceStrategy":
        """Connect and provision the database and both containers.

        Raises:
            ConfigurationError: If the endpoint or key is missing
        """
        if not settings.account_endpoint or not settings.account_key:
            raise ConfigurationError(
                "Cosmos DB persistence requires repository.cosmos_db.account_endpoint "
                "and repository.cosmos_db.account_key"
            )
        from azure.cosmos import CosmosClient, PartitionKey

        client = CosmosClient(settings.account_endpoint, credential=settings.account_key)
        database = client.create_database_if_not_exists(
            id=settings.database_name, offer_throughput=settings.database_throughput
        )
        partition_key = PartitionKey(path=settings.partition_key_path)
        models = database.create_container_if_not_exists(
            id=settings.models_container, partition_key=partition_key
        )
        entities = database.create_container_if_not_exists(
            id=settings.entities_container, partition_key=partition_key
        )
        logger.info(f"Connected to Cosmos DB database {settings.database_name!r}")
        return cls(models, entities)

    def _document_id(self, model_name: str, kind: EntityKind, schema_name: str, name: str) -> str:
        return self.mapper.document_id(model_name, kind.value, f"{schema_name}.{name}")

    def _entity_documents(self, model_name: str) -> list[dict[str, Any]]:
        return list(
            self.entities.query_items(
                query=_ENTITY_QUERY,
                parameters=[{"name": "@modelName", "value": model_name}],
                partition_key=model_name,
            )
        )

    def _read_entity_document(self, model_name: str, document_id: str) -> dict[str, Any] | None:
        try:
            return self.entities.read_item(item=document_id, partition_key=model_name)
        except ResourceNotFoundError:
            return None

    @staticmethod
    def _to_persisted(document: dict[str, Any]) -> PersistedEntity:
        source = str(document.get("id"))
        try:
            kind = EntityKind.parse(document.get("entityType", ""))
            data, embedding = unwrap_document(document)
            entity = entity_from_dict(kind, data)
        except (ValidationError, ValueError) as exc:
            raise CorruptDataError(f"Invalid entity document {source}: {exc}", {"id": source}) from exc
        return PersistedEntity(kind=kind, entity=entity, embedding=embedding)

    async def save_model(self, model: SemanticModel, location: Location) -> None:
        model_name = model_name_of(location)
        now = datetime.now(timezone.utc)
        try:
            existing = {doc["id"]: doc.get("embedding") for doc in self._entity_documents(model_name)}
            written: set[str] = set()
            for entity in model.entities():
                document_id = self._document_id(
                    model_name, entity.entity_kind, entity.schema_name, entity.name
                )
                document = self.mapper.to_document_entity(
                    model_name,
                    entity.entity_kind.value,
                    f"{entity.schema_name}.{entity.name}",
                    entity,
                    metadata=None,
                    created_at=now,
                )
                if existing.get(document_id):
                    document["embedding"] = existing[document_id]
                self.entities.upsert_item(document)
                written.add(document_id)

            for document_id in existing.keys() - written:
                self.entities.delete_item(item=document_id, partition_key=model_name)
                logger.debug(f"Deleted stale entity document {document_id}")

            header = model.index_document()
            header.update({"id": model_name, "modelName": model_name, "updatedAt": now.isoformat()})
            self.models.upsert_item(header)
        except AzureError as exc:
            raise PersistenceWriteFailure(
                f"Failed to save model {model_name!r} to Cosmos DB: {exc}", {"model": model_name}
            ) from exc

        logger.info(f"Saved semantic model {model_name!r} to Cosmos DB ({len(written)} entities)")

    async def load_model(self, location: Location) -> SemanticModel:
        model_name = model_name_of(location)
        try:
            header = self.models.read_item(item=model_name, partition_key=model_name)
        except ResourceNotFoundError as exc:
            raise NotFoundError(
                f"No semantic model {model_name!r} in Cosmos DB", {"model": model_name}
            ) from exc

        entities: dict[tuple[EntityKind, str], SemanticModelEntity] = {}
        for document in self._entity_documents(model_name):
            item = self._to_persisted(document)
            entities[(item.kind, f"{item.entity.schema_name}.{item.entity.name}")] = item.entity
        return assemble_model(header, entities, f"cosmos:{model_name}")

    async def exists(self, location: Location) -> bool:
        model_name = model_name_of(location)
        try:
            self.models.read_item(item=model_name, partition_key=model_name)
        except ResourceNotFoundError:
            return False
        return True

    async def list_models(self, root: Location) -> list[str]:
        names = self.models.query_items(query=_MODEL_NAMES_QUERY, enable_cross_partition_query=True)
        return sorted(set(names))

    async def delete_model(self, location: Location) -> None:
        model_name = model_name_of(location)
        for document in self._entity_documents(model_name):
            try:
                self.entities.delete_item(item=document["id"], partition_key=model_name)
            except ResourceNotFoundError:
                logger.debug(f"Entity document {document['id']} already absent")
        try:
            self.models.delete_item(item=model_name, partition_key=model_name)
        except ResourceNotFoundError:
            logger.debug(f"Model document {model_name!r} already absent")
        logger.info(f"Deleted semantic model {model_name!r} from Cosmos DB")

    async def load_entity_content(self, location: Location, relative_path: str) -> str | None:
        kind, entity_name = split_entity_path(relative_path)
        model_name = model_name_of(location)
        document = self._read_entity_document(
            model_name, self.mapper.document_id(model_name, kind.value, entity_name)
        )
        if document is None:
            return None
        data = document.get("data")
        if not isinstance(data, dict):
            raise CorruptDataError(f"Entity document {document.get('id')} has no data", {"id": document.get("id")})
        return json.dumps(data, indent=2, ensure_ascii=False)

    async def check_vector_exists(
        self,
        entity_type: EntityKind | str,
        schema_name: str,
        name: str,
        content_hash: str,
        location: Location,
    ) -> str | None:
        """Project only ``embedding.contentHash``; the entity body is never read."""
        model_name = model_name_of(location)
        document_id = self._document_id(model_name, EntityKind.parse(entity_type), schema_name, name)
        hashes = self.entities.query_items(
            query=_HASH_QUERY,
            parameters=[{"name": "@id", "value": document_id}],
            partition_key=model_name,
        )
        for value in hashes:
            return value or None
        return None

    async def save_entity(
        self,
        location: Location,
        entity: SemanticModelEntity,
        embedding: EmbeddingPayload | None = None,
    ) -> None:
        partition = model_name_of(location)
        document = self.mapper.to_document_entity(
            partition,
            entity.entity_kind.value,
            f"{entity.schema_name}.{entity.name}",
            entity,
            embedding.metadata if embedding else None,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.entities.upsert_item(document)
        except AzureError as exc:
            raise PersistenceWriteFailure(
                f"Failed to upsert entity document {document['id']}: {exc}", {"id": document["id"]}
            ) from exc
        logger.debug(f"Upserted entity document {document['id']}")

    async def load_persisted_entity(
        self, location: Location, kind: EntityKind, schema_name: str, name: str
    ) -> PersistedEntity | None:
        model_name = model_name_of(location)
        document = self._read_entity_document(
            model_name, self._document_id(model_name, EntityKind.parse(kind), schema_name, name)
        )
        return self._to_persisted(document) if document is not None else None

    async def list_persisted_entities(self, location: Location) -> list[PersistedEntity]:
        documents = sorted(self._entity_documents(model_name_of(location)), key=lambda d: d["id"])
        return [self._to_persisted(document) for document in documents]
