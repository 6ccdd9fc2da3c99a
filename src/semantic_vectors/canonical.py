"""Deterministic text projection of entities used for embedding and hashing."""

from semantic_model.models import (
    SemanticModelEntity,
    SemanticModelStoredProcedure,
    SemanticModelTable,
    SemanticModelView,
)


def _sort_key(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def _block(label: str, value: str | None) -> list[str]:
    if not value or not value.strip():
        return []
    return [f"{label}:", value.strip()]


def build_canonical_text(entity: SemanticModelEntity) -> str:
    """Render an entity as stable text.

    Members (columns, parameters) are sorted by name so that reordering them
    never changes the text, and therefore never changes the content hash.
    """
    lines = [
        f"Schema: {entity.schema_name}",
        f"Name: {entity.name}",
        f"Type: {entity.entity_kind.value}",
    ]
    lines += _block("Description", entity.description)
    lines += _block("Semantic Description", entity.semantic_description)

    if isinstance(entity, (SemanticModelTable, SemanticModelView)):
        if entity.columns:
            lines.append("Columns:")
            for column in sorted(entity.columns, key=lambda c: _sort_key(c.name)):
                line = f"- {column.name}"
                if column.type:
                    line += f" ({column.type})"
                if column.is_primary_key:
                    line += " [PK]"
                if column.description:
                    line += f": {column.description.strip()}"
                lines.append(line)
    if isinstance(entity, SemanticModelStoredProcedure) and entity.parameters:
        lines.append("Parameters:")
        for parameter in sorted(entity.parameters, key=lambda p: _sort_key(p.name)):
            line = f"- {parameter.name}"
            if parameter.type:
                line += f" ({parameter.type})"
            line += f" {parameter.direction}"
            if parameter.description:
                line += f": {parameter.description.strip()}"
            lines.append(line)
    if isinstance(entity, (SemanticModelView, SemanticModelStoredProcedure)):
        lines += _block("Definition", entity.definition)

    return "\n".join(lines)
