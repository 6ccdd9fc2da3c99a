"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests share a small semantic model, a deterministic embedding generator
  and in-memory fakes for the Azure storage clients
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from semantic_model.models import (  # noqa: E402
    SemanticModel,
    SemanticModelColumn,
    SemanticModelParameter,
    SemanticModelStoredProcedure,
    SemanticModelTable,
    SemanticModelView,
)


class StubEmbeddingGenerator:
    """Returns a fixed vector (or one per text) and counts calls."""

    model_id = "stub-embedding"

    def __init__(self, vector: list[float] | None = None, by_text: dict[str, list[float]] | None = None):
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.by_text = by_text or {}
        self.calls: list[str] = []

    async def generate(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.by_text.get(text, self.vector))


@pytest.fixture
def stub_generator() -> StubEmbeddingGenerator:
    return StubEmbeddingGenerator()


@pytest.fixture
def customer_table() -> SemanticModelTable:
    return SemanticModelTable(
        schema="dbo",
        name="Customer",
        description="Customers who placed at least one order",
        columns=[
            SemanticModelColumn(name="CustomerId", type="int", is_primary_key=True, is_nullable=False),
            SemanticModelColumn(name="Email", type="nvarchar(256)", description="Login email"),
        ],
    )


@pytest.fixture
def sample_model(customer_table: SemanticModelTable) -> SemanticModel:
    return SemanticModel(
        name="sales",
        source="Server=localhost;Database=Sales",
        description="Sales database",
        tables=[
            customer_table,
            SemanticModelTable(
                schema="sales",
                name="Order",
                columns=[SemanticModelColumn(name="OrderId", type="int", is_primary_key=True)],
            ),
        ],
        views=[
            SemanticModelView(
                schema="dbo",
                name="ActiveCustomers",
                definition="SELECT * FROM dbo.Customer WHERE IsActive = 1",
                columns=[SemanticModelColumn(name="CustomerId", type="int")],
            )
        ],
        stored_procedures=[
            SemanticModelStoredProcedure(
                schema="dbo",
                name="GetCustomer",
                definition="SELECT * FROM dbo.Customer WHERE CustomerId = @id",
                parameters=[SemanticModelParameter(name="@id", type="int")],
            )
        ],
    )


@pytest.fixture
def make_generator() -> type[StubEmbeddingGenerator]:
    return StubEmbeddingGenerator


class FakeCosmosContainer:
    """Stand-in for azure.cosmos.ContainerProxy understanding the queries the strategy issues."""

    def __init__(self):
        self.items: dict[str, dict] = {}
        self.queries: list[str] = []
        self.reads = 0
        self.fail_upserts = False

    def upsert_item(self, body):
        if self.fail_upserts:
            raise HttpResponseError("throttled")
        self.items[body["id"]] = copy.deepcopy(body)

    def read_item(self, item, partition_key):
        self.reads += 1
        document = self.items.get(item)
        if document is None or document.get("modelName") != partition_key:
            raise ResourceNotFoundError("missing")
        return copy.deepcopy(document)

    def delete_item(self, item, partition_key):
        if item not in self.items:
            raise ResourceNotFoundError("missing")
        del self.items[item]

    def query_items(self, query, parameters=None, partition_key=None, enable_cross_partition_query=None):
        self.queries.append(query)
        params = {p["name"]: p["value"] for p in parameters or []}
        if "VALUE c.embedding.contentHash" in query:
            document = self.items.get(params["@id"])
            if document is None:
                return iter([])
            return iter([(document.get("embedding") or {}).get("contentHash")])
        if "VALUE c.modelName" in query:
            return iter([d["modelName"] for d in self.items.values()])
        return iter(
            copy.deepcopy(d) for d in self.items.values() if d.get("modelName") == params["@modelName"]
        )


class FakeBlobContainer:
    """Minimal stand-in for azure.storage.blob.ContainerClient."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.created = False
        self.fail_uploads = False

    def create_container(self):
        if self.created:
            raise ResourceExistsError("exists")
        self.created = True

    def upload_blob(self, name, data, overwrite=False, **kwargs):
        if self.fail_uploads:
            raise HttpResponseError("service unavailable")
        self.blobs[name] = data

    def download_blob(self, name, **kwargs):
        if name not in self.blobs:
            raise ResourceNotFoundError("missing")
        data = self.blobs[name]
        return SimpleNamespace(readall=lambda: data)

    def list_blobs(self, name_starts_with=""):
        return [SimpleNamespace(name=n) for n in sorted(self.blobs) if n.startswith(name_starts_with)]

    def delete_blob(self, name):
        if name not in self.blobs:
            raise ResourceNotFoundError("missing")
        del self.blobs[name]

    def get_blob_client(self, name):
        return SimpleNamespace(exists=lambda: name in self.blobs)


@pytest.fixture
def make_cosmos_container() -> type[FakeCosmosContainer]:
    return FakeCosmosContainer


@pytest.fixture
def make_blob_container() -> type[FakeBlobContainer]:
    return FakeBlobContainer
