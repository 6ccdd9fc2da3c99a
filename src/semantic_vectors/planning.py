"""Per-entity generation planning and entity selection.

These pure functions decide what the generation workflow does for each entity,
so the decision table can be tested without any backend.
"""

from __future__ import annotations

from typing import TypedDict

from pydantic import BaseModel, Field, model_validator

from semantic_model.models import EntityKind, SemanticModel, SemanticModelEntity


class EntityPlan(TypedDict):
    action: str  # "skip" | "dry_run" | "generate"
    reason: str


def plan_entity(
    existing_hash: str | None,
    content_hash: str,
    *,
    overwrite: bool = False,
    dry_run: bool = False,
) -> EntityPlan:
    """Decide what to do with one entity.

    Args:
        existing_hash: Content hash stored with the entity's current vector (or None)
        content_hash: Hash of the entity's current canonical text
        overwrite: Regenerate even when the hash is unchanged
        dry_run: Report the intended action without generating or writing

    Returns:
        EntityPlan with action and reason
    """
    if existing_hash is not None and existing_hash == content_hash and not overwrite:
        return {"action": "skip", "reason": "unchanged"}

    if overwrite and existing_hash == content_hash:
        reason = "overwrite"
    elif existing_hash is None:
        reason = "no_vector"
    else:
        reason = "content_changed"

    if dry_run:
        return {"action": "dry_run", "reason": reason}
    return {"action": "generate", "reason": reason}


class VectorGenerationOptions(BaseModel):
    """Options for a "generate vectors" run.

    Attributes:
        overwrite: Regenerate vectors even when content is unchanged
        dry_run: Count would-be generations without embedding or writing
        skip_tables: Exclude tables
        skip_views: Exclude views
        skip_stored_procedures: Exclude stored procedures
        object_type: Restrict to one kind (requires schema_name and object_name)
        schema_name: Schema of the single target
        object_name: Name of the single target
        max_concurrency: Entities processed in parallel
    """

    overwrite: bool = False
    dry_run: bool = False
    skip_tables: bool = False
    skip_views: bool = False
    skip_stored_procedures: bool = False
    object_type: EntityKind | None = None
    schema_name: str | None = None
    object_name: str | None = None
    max_concurrency: int = Field(default=1, ge=1, le=64)

    def kind_included(self, kind: EntityKind) -> bool:
        if self.object_type is not None and kind is not self.object_type:
            return False
        skipped = {
            EntityKind.TABLE: self.skip_tables,
            EntityKind.VIEW: self.skip_views,
            EntityKind.STORED_PROCEDURE: self.skip_stored_procedures,
        }
        return not skipped[kind]

    @model_validator(mode="after")
    def _complete_target(self) -> "VectorGenerationOptions":
        if (self.schema_name is not None or self.object_name is not None) and (
            self.object_type is None or self.schema_name is None or self.object_name is None
        ):
            raise ValueError("A single target needs object_type, schema_name and object_name together")
        return self

    def matches(self, entity: SemanticModelEntity) -> bool:
        if not self.kind_included(entity.entity_kind):
            return False
        if self.schema_name is None:
            return True
        return entity.schema_name == self.schema_name and entity.name == self.object_name


def select_entities(model: SemanticModel, options: VectorGenerationOptions) -> list[SemanticModelEntity]:
    """Entities in scope for a run, in model order."""
    return [e for e in model.entities() if options.matches(e)]
