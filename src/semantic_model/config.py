"""Configuration for semantic model storage and vector indexing using Hydra.

Settings are composed from YAML files in conf/semantic_store/ and validated
into the typed objects below. Backend-specific required values (endpoints,
connection strings) are optional here and checked when the backend is built.
"""

from enum import Enum
from pathlib import Path
from typing import Any

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field, field_validator


def _normalize_name(value: str) -> str:
    return "".join(ch for ch in value.strip().lower() if ch.isalnum())


class RepositoryStrategy(str, Enum):
    """Backend used to persist semantic models."""

    LOCAL_DISK = "LocalDisk"
    AZURE_BLOB = "AzureBlob"
    COSMOS_DB = "CosmosDb"

    @classmethod
    def parse(cls, value: "RepositoryStrategy | str") -> "RepositoryStrategy":
        """Parse a strategy name case-insensitively, accepting common aliases.

        Raises:
            ValueError: If the name is not a known strategy
        """
        if isinstance(value, RepositoryStrategy):
            return value
        try:
            return _STRATEGY_ALIASES[_normalize_name(str(value))]
        except KeyError:
            raise ValueError(f"Unknown repository strategy {value!r}") from None


_STRATEGY_ALIASES = {
    "localdisk": RepositoryStrategy.LOCAL_DISK,
    "localfile": RepositoryStrategy.LOCAL_DISK,
    "local": RepositoryStrategy.LOCAL_DISK,
    "azureblob": RepositoryStrategy.AZURE_BLOB,
    "blob": RepositoryStrategy.AZURE_BLOB,
    "cosmosdb": RepositoryStrategy.COSMOS_DB,
    "cosmos": RepositoryStrategy.COSMOS_DB,
    "documentdb": RepositoryStrategy.COSMOS_DB,
}


class VectorProvider(str, Enum):
    """Vector index implementations."""

    AUTO = "Auto"
    IN_MEMORY = "InMemory"
    COSMOS_NOSQL = "CosmosNoSql"
    PINECONE = "Pinecone"

    @classmethod
    def parse(cls, value: "VectorProvider | str") -> "VectorProvider":
        if isinstance(value, VectorProvider):
            return value
        key = _normalize_name(str(value))
        for provider in cls:
            if _normalize_name(provider.value) == key:
                return provider
        raise ValueError(f"Unknown vector provider {value!r}")


class LocalDiskSettings(BaseModel):
    """Flat-file backend settings.

    Attributes:
        directory: Root directory holding one sub-directory per model
        lock_timeout_seconds: How long to wait for a model directory lock
    """

    directory: str = "semantic-models"
    lock_timeout_seconds: float = Field(default=30.0, gt=0)


class AzureBlobSettings(BaseModel):
    """Object-blob backend settings.

    Attributes:
        account_endpoint: Storage account blob endpoint URL
        connection_string: Alternative to endpoint plus credential
        credential: Account key or SAS token used with account_endpoint
        container_name: Container holding all models
        blob_prefix: Optional virtual directory prefix for every blob
        max_concurrency: Parallel transfers per upload/download
        operation_timeout_seconds: Timeout for individual blob operations
    """

    account_endpoint: str | None = None
    connection_string: str | None = None
    credential: str | None = None
    container_name: str = "semantic-models"
    blob_prefix: str = ""
    max_concurrency: int = Field(default=4, ge=1, le=64)
    operation_timeout_seconds: int = Field(default=300, ge=1)


class CosmosDbSettings(BaseModel):
    """Document-database backend settings.

    Attributes:
        account_endpoint: Cosmos DB account URL
        account_key: Primary or secondary account key
        database_name: Database holding the containers
        models_container: Container with one document per model
        entities_container: Container with one document per entity
        partition_key_path: Partition key shared by both containers
        database_throughput: Provisioned RU/s when the database is created
    """

    account_endpoint: str | None = None
    account_key: str | None = None
    database_name: str = "SemanticModels"
    models_container: str = "Models"
    entities_container: str = "ModelEntities"
    partition_key_path: str = "/modelName"
    database_throughput: int | None = None


class RepositorySettings(BaseModel):
    """Which persistence backend is active, plus per-backend settings."""

    strategy: RepositoryStrategy = RepositoryStrategy.LOCAL_DISK
    local_disk: LocalDiskSettings = Field(default_factory=LocalDiskSettings)
    azure_blob: AzureBlobSettings = Field(default_factory=AzureBlobSettings)
    cosmos_db: CosmosDbSettings = Field(default_factory=CosmosDbSettings)

    @field_validator("strategy", mode="before")
    @classmethod
    def parse_strategy(cls, value: Any) -> RepositoryStrategy:
        return RepositoryStrategy.parse(value)


class PineconeSettings(BaseModel):
    """Pinecone serverless index settings."""

    api_key: str | None = None
    cloud: str = "aws"
    region: str = "us-east-1"
    namespace: str | None = None
    metric: str = Field(default="cosine", pattern="^(cosine|euclidean|dotproduct)$")


class CosmosVectorSettings(BaseModel):
    """Cosmos DB NoSQL vector container settings.

    Attributes:
        database_name: Database for vector containers (defaults to the repository database)
        vector_path: Document path of the embedding field
        data_type: Stored element type
        distance_function: Similarity function used by VectorDistance
        index_type: Vector index kind
    """

    database_name: str | None = None
    vector_path: str = "/vector"
    data_type: str = "float32"
    distance_function: str = Field(default="cosine", pattern="^(cosine|dotproduct|euclidean)$")
    index_type: str = Field(default="quantizedFlat", pattern="^(flat|quantizedFlat|diskANN)$")


class VectorIndexSettings(BaseModel):
    """Vector index selection and behavior.

    Attributes:
        provider: Index implementation, or Auto to derive it from the repository strategy
        collection_name: Collection, container or index name holding entity vectors
        embedding_service_id: Identifier of the embedding service recorded with vectors
        expected_dimensions: Required vector length, when known
        allowed_for_repository: Repository strategies this provider may pair with (empty allows all)
        push_on_generate: Upsert into the index right after persisting a new vector
        provision_if_missing: Create the collection on first use
    """

    provider: VectorProvider = VectorProvider.AUTO
    collection_name: str = "semantic-model-entities"
    embedding_service_id: str = "Embeddings"
    expected_dimensions: int | None = None
    allowed_for_repository: list[RepositoryStrategy] = Field(default_factory=list)
    push_on_generate: bool = True
    provision_if_missing: bool = True
    pinecone: PineconeSettings = Field(default_factory=PineconeSettings)
    cosmos: CosmosVectorSettings = Field(default_factory=CosmosVectorSettings)

    @field_validator("provider", mode="before")
    @classmethod
    def parse_provider(cls, value: Any) -> VectorProvider:
        return VectorProvider.parse(value)

    @field_validator("allowed_for_repository", mode="before")
    @classmethod
    def parse_allowed(cls, value: Any) -> list[RepositoryStrategy]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [RepositoryStrategy.parse(item) for item in value]


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "openai/text-embedding-3-small")
        version: Version tag recorded with each vector
        dimensions: Embedding dimensionality requested from the model
        max_retries: Maximum retry attempts for transient failures
        timeout_seconds: API request timeout
        api_key: API key for external services (set via env var)
    """

    model: str = "openai/text-embedding-3-small"
    version: str = "v1"
    dimensions: int = Field(default=1536, ge=1, le=4096)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    api_key: str | None = None


class SemanticStoreConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        repository: Persistence backend settings
        vector_index: Vector index settings
        embedding: Embedding model settings
    """

    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    vector_index: VectorIndexSettings = Field(default_factory=VectorIndexSettings)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> SemanticStoreConfig:
    """Load configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/semantic_store/)
        overrides: List of config overrides (e.g., ["repository.strategy=AzureBlob"])

    Returns:
        Validated configuration object

    Raises:
        FileNotFoundError: If the config directory does not exist

    Example:
        >>> config = load_config("default", overrides=["vector_index.provider=InMemory"])
        >>> config.vector_index.provider
        <VectorProvider.IN_MEMORY: 'InMemory'>
    """
    if config_path is None:
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "semantic_store"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="semantic_store"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return SemanticStoreConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, Any]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> import yaml
        >>> with open("conf/semantic_store/default.yaml", "w") as f:
        ...     yaml.safe_dump(create_default_config(), f)
    """
    return {
        "repository": {
            "strategy": "LocalDisk",
            "local_disk": {"directory": "semantic-models", "lock_timeout_seconds": 30.0},
            "azure_blob": {
                "account_endpoint": None,
                "connection_string": "${oc.env:AZURE_STORAGE_CONNECTION_STRING,null}",
                "credential": None,
                "container_name": "semantic-models",
                "blob_prefix": "",
                "max_concurrency": 4,
                "operation_timeout_seconds": 300,
            },
            "cosmos_db": {
                "account_endpoint": "${oc.env:COSMOS_ENDPOINT,null}",
                "account_key": "${oc.env:COSMOS_KEY,null}",
                "database_name": "SemanticModels",
                "models_container": "Models",
                "entities_container": "ModelEntities",
                "partition_key_path": "/modelName",
                "database_throughput": None,
            },
        },
        "vector_index": {
            "provider": "Auto",
            "collection_name": "semantic-model-entities",
            "embedding_service_id": "Embeddings",
            "expected_dimensions": None,
            "allowed_for_repository": [],
            "push_on_generate": True,
            "provision_if_missing": True,
            "pinecone": {
                "api_key": "${oc.env:PINECONE_API_KEY,null}",
                "cloud": "aws",
                "region": "us-east-1",
                "namespace": None,
                "metric": "cosine",
            },
            "cosmos": {
                "database_name": None,
                "vector_path": "/vector",
                "data_type": "float32",
                "distance_function": "cosine",
                "index_type": "quantizedFlat",
            },
        },
        "embedding": {
            "model": "openai/text-embedding-3-small",
            "version": "v1",
            "dimensions": 1536,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
        },
    }
