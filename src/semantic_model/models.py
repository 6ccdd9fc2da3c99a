"""Pydantic models for the semantic model domain.

A semantic model is a named aggregate of database entities (tables, views and
stored procedures) enriched with AI-generated descriptions. Entities are
identified by (kind, schema, name) within a model.
"""

from collections.abc import Iterator
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityKind(str, Enum):
    """Kinds of entity a semantic model can hold."""

    TABLE = "table"
    VIEW = "view"
    STORED_PROCEDURE = "storedprocedure"

    @property
    def folder(self) -> str:
        """Sub-folder (or blob prefix) holding entities of this kind."""
        return _FOLDERS[self]

    @classmethod
    def parse(cls, value: "EntityKind | str") -> "EntityKind":
        """Parse a kind from its value, folder name, or class-style name.

        Accepts "table", "tables", "Table" and "SemanticModelTable" alike.

        Raises:
            ValueError: If the value does not name a known kind
        """
        if isinstance(value, EntityKind):
            return value
        key = str(value).strip().lower().removeprefix("semanticmodel")
        for kind in cls:
            if key in (kind.value, kind.folder):
                return kind
        raise ValueError(f"Unknown entity kind {value!r}")


_FOLDERS = {
    EntityKind.TABLE: "tables",
    EntityKind.VIEW: "views",
    EntityKind.STORED_PROCEDURE: "storedprocedures",
}


class SemanticModelColumn(BaseModel):
    """A column of a table or view."""

    name: str = Field(min_length=1)
    type: str = ""
    description: str | None = None
    is_primary_key: bool = False
    is_nullable: bool = True


class SemanticModelParameter(BaseModel):
    """A stored procedure parameter."""

    name: str = Field(min_length=1)
    type: str = ""
    direction: str = "in"
    description: str | None = None


class SemanticModelEntity(BaseModel):
    """Fields shared by every entity kind.

    Attributes:
        schema_name: Database schema (serialized as "schema")
        name: Object name within the schema
        description: Free-text description from the source database
        semantic_description: AI-generated description
        semantic_description_last_update: When the AI description was written
        is_ignored: Excluded from enrichment when True
        ignore_reason: Why the entity is ignored
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(alias="schema", min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    semantic_description: str | None = None
    semantic_description_last_update: datetime | None = None
    is_ignored: bool = False
    ignore_reason: str | None = None

    @property
    def entity_kind(self) -> EntityKind:
        return EntityKind(self.kind)  # type: ignore[attr-defined]

    @property
    def file_name(self) -> str:
        """Deterministic file or blob name for this entity."""
        return f"{self.schema_name}.{self.name}.json"

    @property
    def relative_path(self) -> str:
        return f"{self.entity_kind.folder}/{self.file_name}"

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to the JSON-ready dict written to storage."""
        return self.model_dump(mode="json", by_alias=True)


class SemanticModelTable(SemanticModelEntity):
    kind: Literal["table"] = "table"
    columns: list[SemanticModelColumn] = Field(default_factory=list)


class SemanticModelView(SemanticModelEntity):
    kind: Literal["view"] = "view"
    columns: list[SemanticModelColumn] = Field(default_factory=list)
    definition: str = ""


class SemanticModelStoredProcedure(SemanticModelEntity):
    kind: Literal["storedprocedure"] = "storedprocedure"
    parameters: list[SemanticModelParameter] = Field(default_factory=list)
    definition: str = ""


AnyEntity = SemanticModelTable | SemanticModelView | SemanticModelStoredProcedure

_ENTITY_TYPES: dict[EntityKind, type[SemanticModelEntity]] = {
    EntityKind.TABLE: SemanticModelTable,
    EntityKind.VIEW: SemanticModelView,
    EntityKind.STORED_PROCEDURE: SemanticModelStoredProcedure,
}


def entity_from_dict(kind: EntityKind | str, data: dict[str, Any]) -> SemanticModelEntity:
    """Rebuild an entity of the given kind from its JSON dict.

    Raises:
        pydantic.ValidationError: If the data does not match the entity schema
    """
    entity_kind = EntityKind.parse(kind)
    payload = {k: v for k, v in data.items() if k != "kind"}
    return _ENTITY_TYPES[entity_kind].model_validate(payload)


class EntityReference(BaseModel):
    """(schema, name) pointer stored in the model index file."""

    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(alias="schema")
    name: str


class SemanticModel(BaseModel):
    """Root aggregate: a named collection of entities.

    Entity order within each kind is preserved as given.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    source: str = ""
    description: str | None = None
    tables: list[SemanticModelTable] = Field(default_factory=list)
    views: list[SemanticModelView] = Field(default_factory=list)
    stored_procedures: list[SemanticModelStoredProcedure] = Field(
        default_factory=list, alias="storedProcedures"
    )

    @model_validator(mode="after")
    def check_unique_identities(self) -> "SemanticModel":
        """Reject two entities sharing (kind, schema, name)."""
        seen: set[tuple[str, str, str]] = set()
        for entity in self.entities():
            identity = (entity.kind, entity.schema_name, entity.name)  # type: ignore[attr-defined]
            if identity in seen:
                raise ValueError(
                    f"Duplicate {identity[0]} {identity[1]}.{identity[2]} in model {self.name!r}"
                )
            seen.add(identity)
        return self

    def _collection(self, kind: EntityKind) -> list[Any]:
        if kind is EntityKind.TABLE:
            return self.tables
        if kind is EntityKind.VIEW:
            return self.views
        return self.stored_procedures

    def entities(self, kind: EntityKind | str | None = None) -> Iterator[SemanticModelEntity]:
        """Yield entities, tables first, then views, then stored procedures."""
        kinds = [EntityKind.parse(kind)] if kind is not None else list(EntityKind)
        for k in kinds:
            yield from self._collection(k)

    def find_entity(
        self, kind: EntityKind | str, schema_name: str, name: str
    ) -> SemanticModelEntity | None:
        for entity in self.entities(kind):
            if entity.schema_name == schema_name and entity.name == name:
                return entity
        return None

    def add_entity(self, entity: SemanticModelEntity) -> None:
        """Append an entity to its collection.

        Raises:
            ValueError: If an entity with the same identity already exists
        """
        kind = entity.entity_kind
        if self.find_entity(kind, entity.schema_name, entity.name) is not None:
            raise ValueError(
                f"Duplicate {kind.value} {entity.schema_name}.{entity.name} in model {self.name!r}"
            )
        self._collection(kind).append(entity)

    def index_document(self) -> dict[str, Any]:
        """Model header with entity references, as written to semanticmodel.json."""
        return {
            "name": self.name,
            "source": self.source,
            "description": self.description,
            "tables": [_reference(e) for e in self.tables],
            "views": [_reference(e) for e in self.views],
            "storedProcedures": [_reference(e) for e in self.stored_procedures],
        }


def _reference(entity: SemanticModelEntity) -> dict[str, str]:
    return {"schema": entity.schema_name, "name": entity.name}


def references_by_kind(index: dict[str, Any]) -> dict[EntityKind, list[EntityReference]]:
    """Parse the entity references of a model index document."""
    keys = {
        EntityKind.TABLE: "tables",
        EntityKind.VIEW: "views",
        EntityKind.STORED_PROCEDURE: "storedProcedures",
    }
    return {
        kind: [EntityReference.model_validate(ref) for ref in index.get(key) or []]
        for kind, key in keys.items()
    }
