"""Unit tests for the Cosmos DB and Pinecone vector index adapters."""

from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from semantic_model.config import CosmosDbSettings, RepositoryStrategy, VectorIndexSettings
from semantic_model.exceptions import ConfigurationError, IndexWriteFailure
from semantic_vectors.index import (
    CosmosVectorIndex,
    InMemoryVectorIndex,
    InMemoryVectorStore,
    PineconeIndex,
    create_vector_index,
)
from semantic_vectors.infrastructure import VectorInfrastructureFactory
from semantic_vectors.models import EntityVectorRecord


def _record(record_id: str = "sales:table:dbo:customer") -> EntityVectorRecord:
    return EntityVectorRecord(
        id=record_id, schema="dbo", name="Customer", entity_type="table",
        content="Name: Customer", vector=[0.1, 0.2, 0.3], content_hash="abc",
    )


class FakeVectorContainer:
    def __init__(self, query_results=None, fail_upsert: bool = False):
        self.items: dict[str, dict] = {}
        self.queries: list[dict] = []
        self.query_results = query_results or []
        self.fail_upsert = fail_upsert

    def upsert_item(self, body):
        if self.fail_upsert:
            raise HttpResponseError(message="throttled")
        self.items[body["id"]] = body
        return body

    def query_items(self, query, parameters=None, enable_cross_partition_query=False):
        self.queries.append({"query": query, "parameters": parameters})
        if "COUNT(1)" in query:
            return iter([len(self.items)])
        return iter(self.query_results)

    def delete_item(self, item, partition_key):
        if item not in self.items:
            raise ResourceNotFoundError(message="missing")
        del self.items[item]


class FakeDatabase:
    def __init__(self, container: FakeVectorContainer):
        self.container = container
        self.created: list[dict] = []

    def create_container_if_not_exists(self, **kwargs):
        self.created.append(kwargs)
        return self.container

    def get_container_client(self, name):
        return self.container


class TestCosmosVectorIndex:
    """Tests for the Cosmos adapter."""

    @pytest.mark.asyncio
    async def test_upsert_provisions_with_vector_policy(self):
        container = FakeVectorContainer()
        database = FakeDatabase(container)
        index = CosmosVectorIndex(database, "entities")

        await index.upsert(_record())
        await index.upsert(_record("other"))

        assert len(database.created) == 1
        created = database.created[0]
        assert created["id"] == "entities"
        embedding = created["vector_embedding_policy"]["vectorEmbeddings"][0]
        assert embedding["path"] == "/vector"
        assert embedding["dimensions"] == 3
        assert embedding["distanceFunction"] == "cosine"
        stored = container.items["sales:table:dbo:customer"]
        assert stored["vector"] == [0.1, 0.2, 0.3]
        assert stored["contentHash"] == "abc"

    @pytest.mark.asyncio
    async def test_configured_dimensions_win(self):
        database = FakeDatabase(FakeVectorContainer())
        index = CosmosVectorIndex(database, "entities", dimensions=1536)
        await index.upsert(_record())
        assert database.created[0]["vector_embedding_policy"]["vectorEmbeddings"][0]["dimensions"] == 1536

    @pytest.mark.asyncio
    async def test_no_provisioning_uses_existing_container(self):
        database = FakeDatabase(FakeVectorContainer())
        index = CosmosVectorIndex(database, "entities", provision_if_missing=False)
        await index.upsert(_record())
        assert database.created == []
        assert await index.count() == 1

    @pytest.mark.asyncio
    async def test_upsert_failure_wrapped(self):
        index = CosmosVectorIndex(FakeDatabase(FakeVectorContainer(fail_upsert=True)), "entities")
        with pytest.raises(IndexWriteFailure):
            await index.upsert(_record())

    @pytest.mark.asyncio
    async def test_search_maps_rows(self):
        rows = [
            {"id": "a", "schema": "dbo", "name": "A", "entityType": "table",
             "content": "Name: A", "contentHash": "h1", "score": 0.9},
            {"id": "b", "schema": "dbo", "name": "B", "entityType": "view",
             "content": "Name: B", "contentHash": "h2", "score": 0.4},
        ]
        container = FakeVectorContainer(query_results=rows)
        index = CosmosVectorIndex(FakeDatabase(container), "entities")

        results = await index.search([1.0, 0.0, 0.0], top_k=2)

        assert [r.record.id for r in results] == ["a", "b"]
        assert [r.rank for r in results] == [1, 2]
        assert results[0].score == pytest.approx(0.9)
        assert results[1].record.entity_type == "view"
        query = container.queries[-1]
        assert "VectorDistance(c.vector, @embedding)" in query["query"]
        assert {"name": "@top_k", "value": 2} in query["parameters"]

    @pytest.mark.asyncio
    async def test_search_rejects_non_positive_top_k(self):
        index = CosmosVectorIndex(FakeDatabase(FakeVectorContainer()), "entities")
        with pytest.raises(ValueError):
            await index.search([1.0], top_k=0)

    @pytest.mark.asyncio
    async def test_delete_ignores_missing(self):
        container = FakeVectorContainer()
        index = CosmosVectorIndex(FakeDatabase(container), "entities")
        await index.upsert(_record())
        await index.delete(["sales:table:dbo:customer", "missing"])
        assert container.items == {}

    def test_from_settings_requires_credentials(self):
        infra = VectorInfrastructureFactory().create(VectorIndexSettings(), RepositoryStrategy.COSMOS_DB)
        with pytest.raises(ConfigurationError):
            CosmosVectorIndex.from_settings(infra, CosmosDbSettings())


class FakePineconeIndex:
    def __init__(self):
        self.vectors: dict[str, dict] = {}
        self.namespaces: list[str | None] = []

    def upsert(self, vectors, namespace=None):
        self.namespaces.append(namespace)
        for vector in vectors:
            self.vectors[vector["id"]] = vector

    def query(self, vector, top_k, namespace=None, include_metadata=False, include_values=False):
        matches = [
            SimpleNamespace(id=v["id"], score=0.5, metadata=v["metadata"])
            for v in list(self.vectors.values())[:top_k]
        ]
        return SimpleNamespace(matches=matches)

    def delete(self, ids, namespace=None):
        for record_id in ids:
            self.vectors.pop(record_id, None)

    def describe_index_stats(self):
        return SimpleNamespace(total_vector_count=len(self.vectors))


class FakePinecone:
    def __init__(self, existing: list[str] | None = None):
        self.existing = existing or []
        self.created: list[dict] = []
        self.index = FakePineconeIndex()

    def list_indexes(self):
        return SimpleNamespace(names=lambda: list(self.existing))

    def create_index(self, name, dimension, metric, spec):
        self.created.append({"name": name, "dimension": dimension, "metric": metric})
        self.existing.append(name)

    def Index(self, name):  # noqa: N802
        return self.index


class TestPineconeIndex:
    """Tests for the Pinecone adapter."""

    @pytest.mark.asyncio
    async def test_creates_missing_index_once(self):
        client = FakePinecone()
        index = PineconeIndex(client, "entities", namespace="sales")

        await index.upsert(_record())
        await index.upsert(_record("other"))

        assert client.created == [{"name": "entities", "dimension": 3, "metric": "cosine"}]
        assert client.index.namespaces == ["sales", "sales"]
        assert client.index.vectors["sales:table:dbo:customer"]["metadata"]["content_hash"] == "abc"

    @pytest.mark.asyncio
    async def test_existing_index_not_recreated(self):
        client = FakePinecone(existing=["entities"])
        await PineconeIndex(client, "entities").upsert(_record())
        assert client.created == []

    @pytest.mark.asyncio
    async def test_search_maps_metadata(self):
        client = FakePinecone(existing=["entities"])
        index = PineconeIndex(client, "entities")
        await index.upsert(_record())

        results = await index.search([0.1, 0.2, 0.3], top_k=5)

        assert len(results) == 1
        assert results[0].record.schema_name == "dbo"
        assert results[0].record.name == "Customer"
        assert results[0].rank == 1
        assert await index.count() == 1

    @pytest.mark.asyncio
    async def test_upsert_error_wrapped(self):
        client = FakePinecone(existing=["entities"])

        def boom(vectors, namespace=None):
            raise RuntimeError("quota")

        client.index.upsert = boom
        with pytest.raises(IndexWriteFailure):
            await PineconeIndex(client, "entities").upsert(_record())

    def test_from_settings_requires_api_key(self):
        infra = VectorInfrastructureFactory().create(
            VectorIndexSettings(provider="Pinecone"), RepositoryStrategy.LOCAL_DISK
        )
        with pytest.raises(ConfigurationError):
            PineconeIndex.from_settings(infra)


class TestCreateVectorIndex:
    """Tests for provider dispatch."""

    def test_in_memory_requires_store(self):
        infra = VectorInfrastructureFactory().create(VectorIndexSettings(), RepositoryStrategy.LOCAL_DISK)
        with pytest.raises(ConfigurationError):
            create_vector_index(infra)

    def test_in_memory(self):
        infra = VectorInfrastructureFactory().create(VectorIndexSettings(), RepositoryStrategy.LOCAL_DISK)
        store = InMemoryVectorStore()
        index = create_vector_index(infra, memory_store=store)
        assert isinstance(index, InMemoryVectorIndex)
        assert index.store is store
