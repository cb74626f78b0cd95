"""Tests for step templates and the workflow template library."""

import pytest

from workflow_canvas.core.exceptions import ValidationError
from workflow_canvas.core.templates import (
    DEFAULT_STEP_TEMPLATES,
    StepTemplateCatalog,
    builtin_workflow_templates,
    filter_templates,
    get_step_catalog,
    template_categories,
)
from workflow_canvas.models.core import StepType


class TestStepTemplates:
    """Test cases for step template config handling."""

    def test_default_config(self, catalog):
        """Test schema defaults with camelCase keys."""
        assert catalog.get("action.http_request").default_config() == {
            "method": "GET", "url": "https://api.example.com", "headers": {}, "body": {}
        }
        assert catalog.get("trigger.webhook").default_config()["requireAuth"] is False

    def test_build_config_accepts_either_key_style(self, catalog):
        """Test that snake_case and camelCase keys normalize the same way."""
        template = catalog.get("knowledge.query")
        assert template.build_config({"node_type": "person"}) == template.build_config({"nodeType": "person"})

    def test_build_config_reports_every_problem(self, catalog):
        """Test that invalid configs list each failing field."""
        with pytest.raises(ValidationError) as exc_info:
            catalog.get("knowledge.query").build_config({"limit": 5000, "colour": "red"})

        errors = exc_info.value.validation_errors
        assert len(errors) == 2
        assert any(error.startswith("limit:") for error in errors)
        assert any(error.startswith("colour:") for error in errors)

    @pytest.mark.parametrize("key,config", [
        ("trigger.webhook", {"path": "hooks"}),
        ("trigger.schedule", {"schedule": "every hour"}),
        ("action.http_request", {"method": "FETCH"}),
        ("knowledge.query", {"limit": 0}),
    ])
    def test_invalid_configs(self, catalog, key, config):
        """Test field-level constraints of the built-in templates."""
        with pytest.raises(ValidationError):
            catalog.get(key).build_config(config)

    def test_merge_config_is_shallow(self, catalog):
        """Test that overrides replace top-level keys only."""
        template = catalog.get("action.http_request")
        base = template.build_config({"headers": {"A": "1"}, "url": "https://a"})
        merged = template.merge_config(base, {"headers": {"B": "2"}})

        assert merged["headers"] == {"B": "2"}
        assert merged["url"] == "https://a"

    def test_describe(self, catalog):
        """Test the JSON description of a template."""
        description = catalog.get("trigger.schedule").describe()

        assert description["key"] == "trigger.schedule"
        assert description["type"] == "trigger"
        assert description["defaultConfig"]["schedule"] == "0 0 * * *"
        assert "schedule" in description["configSchema"]["properties"]


class TestStepTemplateCatalog:
    """Test cases for the template catalog."""

    def test_lookup(self, catalog):
        """Test key lookups and membership."""
        assert "condition.if" in catalog
        assert "condition.maybe" not in catalog
        with pytest.raises(ValidationError):
            catalog.get("condition.maybe")

    def test_templates_grouped_by_type(self, catalog):
        """Test that every step type is covered by at least one template."""
        grouped = catalog.by_type()

        assert set(grouped) == set(StepType)
        assert all(grouped[step_type] for step_type in StepType)
        assert [t.key for t in grouped[StepType.KNOWLEDGE_QUERY]] == ["knowledge.query", "knowledge.create"]

    def test_duplicate_keys_rejected(self):
        """Test that a catalog cannot hold two templates with the same key."""
        with pytest.raises(ValueError):
            StepTemplateCatalog(DEFAULT_STEP_TEMPLATES + DEFAULT_STEP_TEMPLATES[:1])

    def test_shared_catalog(self):
        """Test that the default catalog is created once."""
        assert get_step_catalog() is get_step_catalog()
        assert len(get_step_catalog().all()) == len(DEFAULT_STEP_TEMPLATES)


class TestWorkflowTemplates:
    """Test cases for the workflow template library."""

    @pytest.fixture
    def templates(self):
        return builtin_workflow_templates()

    def test_builtin_templates_are_valid_workflows(self, templates, catalog):
        """Test that every starter workflow's step configs fit their templates."""
        assert [t.id for t in templates] == ["webhook-to-email", "scheduled-sync", "conditional-alert"]
        for template in templates:
            assert template.workflow.id.startswith("template-")
            for step in template.workflow.steps:
                catalog.get(step.template).build_config(step.config)

    def test_filter_by_search_term(self, templates):
        """Test case-insensitive matching on name and description."""
        assert [t.id for t in filter_templates(templates, search_term="EMAIL")] == ["webhook-to-email"]
        assert [t.id for t in filter_templates(templates, search_term="knowledge graph")] == [
            "scheduled-sync", "conditional-alert"
        ]

    def test_filter_by_category(self, templates):
        """Test exact category matching combined with search."""
        assert len(filter_templates(templates, category="Notifications")) == 2
        assert filter_templates(templates, search_term="sync", category="Notifications") == []
        assert filter_templates(templates) == templates

    def test_categories(self, templates):
        """Test the sorted unique category list."""
        assert template_categories(templates) == ["Data", "Notifications"]
