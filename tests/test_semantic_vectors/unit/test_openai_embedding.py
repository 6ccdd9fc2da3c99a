"""Unit tests for the OpenAI embedding generator."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from httpx import Response

from semantic_model.config import EmbeddingConfig
from semantic_vectors.embedding import OpenAIEmbeddingGenerator, create_embedding_generator

EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def _ok(vector: list[float]) -> Response:
    return Response(
        200,
        json={
            "object": "list",
            "data": [{"object": "embedding", "embedding": vector, "index": 0}],
            "model": "text-embedding-3-small",
            "usage": {"prompt_tokens": 3, "total_tokens": 3},
        },
    )


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    return EmbeddingConfig(dimensions=4, max_retries=3, timeout_seconds=10.0, api_key="sk-test-key")


@pytest.fixture
def no_sleep(monkeypatch) -> AsyncMock:
    sleep = AsyncMock()
    monkeypatch.setattr(asyncio, "sleep", sleep)
    return sleep


class TestOpenAIEmbeddingGenerator:
    """Tests for the generator."""

    def test_model_id_drops_prefix(self, embedding_config):
        assert OpenAIEmbeddingGenerator(embedding_config).model_id == "text-embedding-3-small"

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self, embedding_config):
        route = respx.post(EMBEDDINGS_URL).mock(return_value=_ok([0.1, 0.2, 0.3, 0.4]))

        vector = await OpenAIEmbeddingGenerator(embedding_config).generate("Schema: dbo")

        assert vector == [0.1, 0.2, 0.3, 0.4]
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_blank_text_skips_call(self, embedding_config):
        route = respx.post(EMBEDDINGS_URL).mock(return_value=_ok([0.1]))
        assert await OpenAIEmbeddingGenerator(embedding_config).generate("   ") == []
        assert route.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_retried(self, embedding_config, no_sleep):
        route = respx.post(EMBEDDINGS_URL).mock(
            side_effect=[
                Response(429, json={"error": {"message": "Rate limit exceeded"}}),
                _ok([0.5, 0.5, 0.5, 0.5]),
            ]
        )

        vector = await OpenAIEmbeddingGenerator(embedding_config).generate("text")

        assert vector == [0.5, 0.5, 0.5, 0.5]
        assert route.call_count == 2
        no_sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_return_empty(self, embedding_config, no_sleep):
        route = respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )

        assert await OpenAIEmbeddingGenerator(embedding_config).generate("text") == []
        assert route.call_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_retried(self, embedding_config, no_sleep):
        route = respx.post(EMBEDDINGS_URL).mock(
            side_effect=[httpx.ConnectTimeout("slow"), _ok([1.0, 0.0, 0.0, 0.0])]
        )

        assert await OpenAIEmbeddingGenerator(embedding_config).generate("text") == [1.0, 0.0, 0.0, 0.0]
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self, embedding_config, no_sleep):
        route = respx.post(EMBEDDINGS_URL).mock(
            return_value=Response(400, json={"error": {"message": "bad input"}})
        )

        assert await OpenAIEmbeddingGenerator(embedding_config).generate("text") == []
        assert route.call_count == 1
        no_sleep.assert_not_awaited()


class TestCreateEmbeddingGenerator:
    """Tests for the factory."""

    def test_openai(self, embedding_config):
        assert isinstance(create_embedding_generator(embedding_config), OpenAIEmbeddingGenerator)

    def test_unknown_prefix(self):
        with pytest.raises(ValueError):
            create_embedding_generator(EmbeddingConfig(model="local/bge", api_key="x"))
