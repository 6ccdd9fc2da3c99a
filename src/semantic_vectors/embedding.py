"""Embedding generator abstraction.

Generation treats the embedding model as an opaque capability: text in, vector
out, and an empty vector when the call ultimately fails. Retries with backoff
happen here, never in the orchestrator.
"""

import asyncio
from typing import Protocol

import httpx
from loguru import logger
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from semantic_model.config import EmbeddingConfig


class EmbeddingGenerator(Protocol):
    """Protocol for embedding generator implementations."""

    model_id: str

    async def generate(self, text: str) -> list[float]:
        """Generate an embedding for ``text``.

        Returns:
            Embedding vector, or an empty list when generation failed
        """
        ...


class OpenAIEmbeddingGenerator:
    """OpenAI embeddings with retry logic."""

    def __init__(self, config: EmbeddingConfig, client: AsyncOpenAI | None = None):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
            client: Pre-built client (defaults to one built from config)
        """
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_id = config.model.removeprefix("openai/")

    async def generate(self, text: str) -> list[float]:
        if not text or not text.strip():
            return []

        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(
                    model=self.model_id, input=text, dimensions=self.config.dimensions
                )
                vector = list(response.data[0].embedding)
                logger.debug(
                    f"Embedded {len(text)} chars with {self.model_id} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return vector

            except (httpx.TimeoutException, APIConnectionError) as e:
                logger.warning(
                    f"Timeout embedding text (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)

            except RateLimitError as e:
                logger.warning(f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}")
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))

            except APIStatusError as e:
                logger.error(f"HTTP error embedding text: {e}")
                return []

        logger.error(f"Exhausted {self.config.max_retries} embedding attempts with {self.model_id}")
        return []


def create_embedding_generator(config: EmbeddingConfig) -> EmbeddingGenerator:
    """Factory function to create an embedding generator based on model config.

    Raises:
        ValueError: If the model prefix is not supported
    """
    if config.model.startswith("openai/"):
        return OpenAIEmbeddingGenerator(config)
    raise ValueError(f"Unknown model prefix in {config.model!r}. Expected 'openai/'")
