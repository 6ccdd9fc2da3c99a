"""Semantic model domain, configuration and persistence backends.

Modules:
    models: Entity and model types
    config: Hydra/pydantic settings
    exceptions: Error taxonomy
    mappers: Storage-shape mappers (envelope vs. document)
    persistence: Strategy contract and flat-file backend
    blob: Azure Blob Storage backend
    cosmos: Azure Cosmos DB backend
    factory: Strategy resolution and caching
    repository: Monitored repository facade
    performance: Operation timing and recommendations
"""

__version__ = "0.1.0"
