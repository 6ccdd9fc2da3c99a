"""Unit tests for per-entity planning and entity selection."""

import pytest

from semantic_model.models import EntityKind, SemanticModel, SemanticModelColumn, SemanticModelTable
from semantic_vectors.planning import VectorGenerationOptions, plan_entity, select_entities


class TestPlanEntity:
    """Decision table for a single entity."""

    def test_unchanged_is_skipped(self):
        assert plan_entity("h", "h") == {"action": "skip", "reason": "unchanged"}

    def test_unchanged_skipped_even_in_dry_run(self):
        assert plan_entity("h", "h", dry_run=True)["action"] == "skip"

    def test_missing_vector(self):
        assert plan_entity(None, "h") == {"action": "generate", "reason": "no_vector"}

    def test_changed_content(self):
        assert plan_entity("old", "new") == {"action": "generate", "reason": "content_changed"}

    def test_overwrite(self):
        assert plan_entity("h", "h", overwrite=True) == {"action": "generate", "reason": "overwrite"}

    def test_dry_run(self):
        assert plan_entity(None, "h", dry_run=True) == {"action": "dry_run", "reason": "no_vector"}
        assert plan_entity("h", "h", overwrite=True, dry_run=True)["action"] == "dry_run"


class TestSelectEntities:
    """Scope filters over a model."""

    def test_everything_by_default(self, sample_model):
        names = [e.name for e in select_entities(sample_model, VectorGenerationOptions())]
        assert names == ["Customer", "Order", "ActiveCustomers", "GetCustomer"]

    def test_skip_flags(self, sample_model):
        options = VectorGenerationOptions(skip_tables=True, skip_stored_procedures=True)
        assert [e.name for e in select_entities(sample_model, options)] == ["ActiveCustomers"]

    def test_single_target(self, sample_model):
        options = VectorGenerationOptions(
            object_type=EntityKind.TABLE, schema_name="sales", object_name="Order"
        )
        selected = select_entities(sample_model, options)
        assert [(e.schema_name, e.name) for e in selected] == [("sales", "Order")]

    def test_single_target_is_case_sensitive(self, customer_table):
        shouting = SemanticModelTable(
            schema="DBO", name="CUSTOMER", columns=[SemanticModelColumn(name="Id", type="int")]
        )
        model = SemanticModel(name="m", tables=[customer_table, shouting])
        options = VectorGenerationOptions(
            object_type=EntityKind.TABLE, schema_name="dbo", object_name="Customer"
        )

        selected = select_entities(model, options)
        assert [(e.schema_name, e.name) for e in selected] == [("dbo", "Customer")]

    def test_single_target_needs_kind_schema_and_name(self):
        with pytest.raises(ValueError):
            VectorGenerationOptions(schema_name="dbo")
        with pytest.raises(ValueError):
            VectorGenerationOptions(object_type=EntityKind.TABLE, object_name="Customer")
        with pytest.raises(ValueError):
            VectorGenerationOptions(schema_name="dbo", object_name="Customer")

    def test_kind_only(self, sample_model):
        options = VectorGenerationOptions(object_type=EntityKind.VIEW)
        assert [e.name for e in select_entities(sample_model, options)] == ["ActiveCustomers"]

    def test_no_match(self, sample_model):
        options = VectorGenerationOptions(
            object_type=EntityKind.TABLE, schema_name="dbo", object_name="customer"
        )
        assert select_entities(sample_model, options) == []

    @pytest.mark.parametrize("value", [0, 65])
    def test_concurrency_bounds(self, value):
        with pytest.raises(ValueError):
            VectorGenerationOptions(max_concurrency=value)
