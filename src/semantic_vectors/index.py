"""Vector index providers.

Every provider creates its collection on first use when allowed, upserts by
the record's deterministic id (last write wins) and returns search hits ordered
by descending similarity.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import numpy as np
from azure.core.exceptions import AzureError, ResourceNotFoundError
from loguru import logger

from semantic_model.config import CosmosDbSettings, VectorProvider
from semantic_model.exceptions import ConfigurationError, IndexWriteFailure
from semantic_vectors.infrastructure import VectorInfrastructure
from semantic_vectors.models import EntityVectorRecord, IndexStats, SearchResult


class VectorIndex(ABC):
    """Abstract base class for vector index implementations."""

    provider: VectorProvider
    collection_name: str

    @abstractmethod
    async def upsert(self, record: EntityVectorRecord) -> None:
        """Insert or replace a record by id, provisioning the collection if needed.

        Raises:
            IndexWriteFailure: If the backend rejects the write
        """

    @abstractmethod
    async def search(self, query_vector: list[float], top_k: int = 10) -> list[SearchResult]:
        """Return up to ``top_k`` nearest records, most similar first.

        Raises:
            ValueError: If top_k is not positive
        """

    @abstractmethod
    async def delete(self, record_ids: list[str]) -> None: ...

    @abstractmethod
    async def count(self) -> int: ...

    async def stats(self) -> IndexStats:
        return IndexStats(
            provider=self.provider.value,
            collection=self.collection_name,
            total_records=await self.count(),
            checked_at=datetime.now(timezone.utc),
        )

    async def health_check(self) -> bool:
        """Check if index is accessible.

        Returns:
            True if healthy, False otherwise
        """
        try:
            await self.count()
            return True
        except Exception as exc:
            logger.warning(f"{self.provider.value} index health check failed: {exc}")
            return False


def _check_top_k(top_k: int) -> None:
    if top_k <= 0:
        raise ValueError(f"top_k must be positive, got {top_k}")


class InMemoryVectorStore:
    """Process-local vector collections.

    Construct one per composition root (or per test) and pass it to
    :class:`InMemoryVectorIndex`; there is no module-level instance.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, EntityVectorRecord]] = {}
        self._lock = threading.Lock()

    def ensure_collection(self, name: str) -> bool:
        """Create the collection if absent; returns True when it was created."""
        with self._lock:
            if name in self._collections:
                return False
            self._collections[name] = {}
            return True

    def has_collection(self, name: str) -> bool:
        with self._lock:
            return name in self._collections

    def upsert(self, collection: str, record: EntityVectorRecord) -> None:
        with self._lock:
            records = self._collections.setdefault(collection, {})
            other = next((r for r in records.values() if r.id != record.id), None)
            if other is not None and len(other.vector) != len(record.vector):
                raise IndexWriteFailure(
                    f"Vector for {record.id} has {len(record.vector)} dimensions, "
                    f"collection {collection!r} holds {len(other.vector)}",
                    {"id": record.id, "collection": collection},
                )
            records[record.id] = record

    def delete(self, collection: str, record_ids: list[str]) -> int:
        with self._lock:
            records = self._collections.get(collection, {})
            return sum(1 for rid in record_ids if records.pop(rid, None) is not None)

    def records(self, collection: str) -> list[EntityVectorRecord]:
        """Records in insertion order (a replaced id keeps its first position)."""
        with self._lock:
            return list(self._collections.get(collection, {}).values())

    def clear(self, collection: str | None = None) -> None:
        with self._lock:
            if collection is None:
                self._collections.clear()
            else:
                self._collections.pop(collection, None)


class InMemoryVectorIndex(VectorIndex):
    """Cosine-similarity index over an injected :class:`InMemoryVectorStore`."""

    provider = VectorProvider.IN_MEMORY

    def __init__(self, store: InMemoryVectorStore, collection_name: str, provision_if_missing: bool = True):
        self.store = store
        self.collection_name = collection_name
        self.provision_if_missing = provision_if_missing

    async def upsert(self, record: EntityVectorRecord) -> None:
        if not self.store.has_collection(self.collection_name):
            if not self.provision_if_missing:
                raise IndexWriteFailure(
                    f"Collection {self.collection_name!r} does not exist and provisioning is disabled"
                )
            if self.store.ensure_collection(self.collection_name):
                logger.info(f"Created in-memory vector collection {self.collection_name!r}")
        self.store.upsert(self.collection_name, record)

    async def search(self, query_vector: list[float], top_k: int = 10) -> list[SearchResult]:
        _check_top_k(top_k)
        if not query_vector:
            return []

        candidates = [
            r for r in self.store.records(self.collection_name) if len(r.vector) == len(query_vector)
        ]
        if not candidates:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        matrix = np.asarray([r.vector for r in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            SearchResult(record=candidates[i], score=float(scores[i]), rank=rank)
            for rank, i in enumerate(order, start=1)
        ]

    async def delete(self, record_ids: list[str]) -> None:
        removed = self.store.delete(self.collection_name, record_ids)
        logger.debug(f"Deleted {removed} records from in-memory collection {self.collection_name!r}")

    async def count(self) -> int:
        return len(self.store.records(self.collection_name))


_COSMOS_SEARCH_QUERY = (
    "SELECT TOP @top_k c.id, c.schema, c.name, c.entityType, c.content, c.contentHash, "
    "VectorDistance(c.{field}, @embedding) AS score "
    "FROM c ORDER BY VectorDistance(c.{field}, @embedding)"
)
_COSMOS_COUNT_QUERY = "SELECT VALUE COUNT(1) FROM c"


class CosmosVectorIndex(VectorIndex):
    """Cosmos DB NoSQL container with a vector embedding policy.

    Results come back without vector values; the container keeps them.
    """

    provider = VectorProvider.COSMOS_NOSQL

    def __init__(
        self,
        database: Any,
        collection_name: str,
        dimensions: int | None = None,
        vector_path: str = "/vector",
        data_type: str = "float32",
        distance_function: str = "cosine",
        index_type: str = "quantizedFlat",
        provision_if_missing: bool = True,
    ):
        self.database = database
        self.collection_name = collection_name
        self.dimensions = dimensions
        self.vector_path = vector_path
        self.data_type = data_type
        self.distance_function = distance_function
        self.index_type = index_type
        self.provision_if_missing = provision_if_missing
        self._container: Any = None

    @classmethod
    def from_settings(
        cls, infrastructure: VectorInfrastructure, cosmos_db: CosmosDbSettings
    ) -> "CosmosVectorIndex":
        """Connect using the repository's Cosmos account.

        Raises:
            ConfigurationError: If the endpoint or key is missing
        """
        if not cosmos_db.account_endpoint or not cosmos_db.account_key:
            raise ConfigurationError(
                "CosmosNoSql vector provider requires repository.cosmos_db.account_endpoint "
                "and repository.cosmos_db.account_key"
            )
        from azure.cosmos import CosmosClient

        vector = infrastructure.settings.cosmos
        client = CosmosClient(cosmos_db.account_endpoint, credential=cosmos_db.account_key)
        database = client.create_database_if_not_exists(id=vector.database_name or cosmos_db.database_name)
        return cls(
            database,
            infrastructure.collection_name,
            dimensions=infrastructure.settings.expected_dimensions,
            vector_path=vector.vector_path,
            data_type=vector.data_type,
            distance_function=vector.distance_function,
            index_type=vector.index_type,
            provision_if_missing=infrastructure.settings.provision_if_missing,
        )

    def _get_container(self, dimensions: int | None) -> Any:
        if self._container is not None:
            return self._container
        if not self.provision_if_missing:
            self._container = self.database.get_container_client(self.collection_name)
            return self._container

        from azure.cosmos import PartitionKey

        dims = self.dimensions or dimensions
        if not dims:
            raise ConfigurationError(
                f"Cannot provision vector container {self.collection_name!r} without dimensions"
            )
        self._container = self.database.create_container_if_not_exists(
            id=self.collection_name,
            partition_key=PartitionKey(path="/id"),
            indexing_policy={
                "indexingMode": "consistent",
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [{"path": f"{self.vector_path}/*"}],
                "vectorIndexes": [{"path": self.vector_path, "type": self.index_type}],
            },
            vector_embedding_policy={
                "vectorEmbeddings": [
                    {
                        "path": self.vector_path,
                        "dataType": self.data_type,
                        "distanceFunction": self.distance_function,
                        "dimensions": dims,
                    }
                ]
            },
        )
        logger.info(f"Ensured Cosmos vector container {self.collection_name!r} ({dims} dims)")
        return self._container

    async def upsert(self, record: EntityVectorRecord) -> None:
        document = {
            "id": record.id,
            "schema": record.schema_name,
            "name": record.name,
            "entityType": record.entity_type,
            "content": record.content,
            "contentHash": record.content_hash,
            self.vector_path.lstrip("/"): record.vector,
        }
        try:
            self._get_container(len(record.vector)).upsert_item(document)
        except AzureError as exc:
            raise IndexWriteFailure(
                f"Failed to upsert vector {record.id} into {self.collection_name!r}: {exc}",
                {"id": record.id},
            ) from exc

    async def search(self, query_vector: list[float], top_k: int = 10) -> list[SearchResult]:
        _check_top_k(top_k)
        if not query_vector:
            return []
        query = _COSMOS_SEARCH_QUERY.format(field=self.vector_path.lstrip("/"))
        items = self._get_container(len(query_vector)).query_items(
            query=query,
            parameters=[
                {"name": "@top_k", "value": top_k},
                {"name": "@embedding", "value": query_vector},
            ],
            enable_cross_partition_query=True,
        )
        results = []
        for rank, item in enumerate(items, start=1):
            record = EntityVectorRecord(
                id=item["id"],
                schema=item.get("schema", ""),
                name=item.get("name", ""),
                entity_type=item.get("entityType", ""),
                content=item.get("content", ""),
                content_hash=item.get("contentHash", ""),
            )
            results.append(SearchResult(record=record, score=float(item["score"]), rank=rank))
        return results

    async def delete(self, record_ids: list[str]) -> None:
        container = self._container or self.database.get_container_client(self.collection_name)
        for record_id in record_ids:
            try:
                container.delete_item(item=record_id, partition_key=record_id)
            except ResourceNotFoundError:
                logger.debug(f"Vector {record_id} already absent")

    async def count(self) -> int:
        container = self._container or self.database.get_container_client(self.collection_name)
        for value in container.query_items(query=_COSMOS_COUNT_QUERY, enable_cross_partition_query=True):
            return int(value)
        return 0


class PineconeIndex(VectorIndex):
    """Pinecone serverless index, created on first use."""

    provider = VectorProvider.PINECONE

    def __init__(
        self,
        client: Any,
        index_name: str,
        dimensions: int | None = None,
        metric: str = "cosine",
        cloud: str = "aws",
        region: str = "us-east-1",
        namespace: str | None = None,
        provision_if_missing: bool = True,
    ):
        """Initialize Pinecone index wrapper.

        Args:
            client: ``pinecone.Pinecone`` client
            index_name: Name of Pinecone index
            dimensions: Vector dimensions used when creating the index
            metric: Similarity metric for a newly created index
            cloud: Serverless cloud for a newly created index
            region: Serverless region for a newly created index
            namespace: Optional namespace for multi-tenancy
            provision_if_missing: Create the index when it does not exist
        """
        self.pc = client
        self.collection_name = index_name
        self.dimensions = dimensions
        self.metric = metric
        self.cloud = cloud
        self.region = region
        self.namespace = namespace
        self.provision_if_missing = provision_if_missing
        self._index: Any = None

    @classmethod
    def from_settings(cls, infrastructure: VectorInfrastructure) -> "PineconeIndex":
        settings = infrastructure.settings.pinecone
        if not settings.api_key:
            raise ConfigurationError("Pinecone vector provider requires vector_index.pinecone.api_key")
        from pinecone import Pinecone

        return cls(
            Pinecone(api_key=settings.api_key),
            infrastructure.collection_name,
            dimensions=infrastructure.settings.expected_dimensions,
            metric=settings.metric,
            cloud=settings.cloud,
            region=settings.region,
            namespace=settings.namespace,
            provision_if_missing=infrastructure.settings.provision_if_missing,
        )

    def _get_index(self, dimensions: int | None) -> Any:
        if self._index is not None:
            return self._index
        if self.provision_if_missing and self.collection_name not in self.pc.list_indexes().names():
            from pinecone import ServerlessSpec

            dims = self.dimensions or dimensions
            if not dims:
                raise ConfigurationError(
                    f"Cannot create Pinecone index {self.collection_name!r} without dimensions"
                )
            self.pc.create_index(
                name=self.collection_name,
                dimension=dims,
                metric=self.metric,
                spec=ServerlessSpec(cloud=self.cloud, region=self.region),
            )
            logger.info(f"Created Pinecone index {self.collection_name!r} ({dims} dims)")
        self._index = self.pc.Index(self.collection_name)
        return self._index

    async def upsert(self, record: EntityVectorRecord) -> None:
        try:
            self._get_index(len(record.vector)).upsert(
                vectors=[{"id": record.id, "values": record.vector, "metadata": record.metadata()}],
                namespace=self.namespace,
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            raise IndexWriteFailure(
                f"Failed to upsert vector {record.id} into Pinecone index {self.collection_name!r}: {exc}",
                {"id": record.id},
            ) from exc

    async def search(self, query_vector: list[float], top_k: int = 10) -> list[SearchResult]:
        _check_top_k(top_k)
        if not query_vector:
            return []
        response = self._get_index(len(query_vector)).query(
            vector=query_vector,
            top_k=top_k,
            namespace=self.namespace,
            include_metadata=True,
            include_values=False,
        )
        results = []
        for rank, match in enumerate(response.matches, start=1):
            metadata = match.metadata or {}
            record = EntityVectorRecord(
                id=match.id,
                schema=metadata.get("schema", ""),
                name=metadata.get("name", ""),
                entity_type=metadata.get("entity_type", ""),
                content=metadata.get("content", ""),
                content_hash=metadata.get("content_hash", ""),
            )
            results.append(SearchResult(record=record, score=float(match.score), rank=rank))
        return results

    async def delete(self, record_ids: list[str]) -> None:
        if not record_ids:
            return
        self._get_index(None).delete(ids=record_ids, namespace=self.namespace)

    async def count(self) -> int:
        stats = self._get_index(None).describe_index_stats()
        return int(getattr(stats, "total_vector_count", 0) or 0)


def create_vector_index(
    infrastructure: VectorInfrastructure,
    memory_store: InMemoryVectorStore | None = None,
    cosmos_db: CosmosDbSettings | None = None,
) -> VectorIndex:
    """Build the provider named by the infrastructure descriptor.

    Raises:
        ConfigurationError: If the provider's dependencies are not supplied
    """
    provider = infrastructure.provider
    if provider is VectorProvider.IN_MEMORY:
        if memory_store is None:
            raise ConfigurationError("InMemory vector provider requires an InMemoryVectorStore")
        return InMemoryVectorIndex(
            memory_store,
            infrastructure.collection_name,
            provision_if_missing=infrastructure.settings.provision_if_missing,
        )
    if provider is VectorProvider.COSMOS_NOSQL:
        return CosmosVectorIndex.from_settings(infrastructure, cosmos_db or CosmosDbSettings())
    if provider is VectorProvider.PINECONE:
        return PineconeIndex.from_settings(infrastructure)
    raise ConfigurationError(f"Unresolved vector provider {provider.value}")
