"""Tests for workflow export, import and validation."""

import json

import pytest

from workflow_canvas.core.exceptions import PersistenceError, ValidationError
from workflow_canvas.core.serialization import (
    export_json,
    export_workflow,
    grid_position,
    import_json,
    import_workflow,
    read_workflow_file,
    suggested_filename,
    validate_document,
    validate_workflow,
    write_workflow_file,
)
from workflow_canvas.models.core import Position, Step, StepType

from conftest import make_step, make_workflow


class TestExport:
    """Test cases for exporting workflows."""

    def test_export_uses_camel_case_keys(self, linear_workflow):
        """Test the exported document shape."""
        document = export_workflow(linear_workflow)

        assert set(document) == {"id", "name", "description", "steps", "connections", "createdAt", "updatedAt"}
        assert document["steps"][1]["position"] == {"x": 200.0, "y": 0.0}
        assert document["connections"][0] == {
            "id": "start-fetch", "source": "start", "target": "fetch", "label": None
        }

    def test_export_import_preserves_workflow(self, linear_workflow):
        """Test that importing an export yields an equal workflow."""
        assert import_json(export_json(linear_workflow)) == linear_workflow

    def test_suggested_filename(self):
        """Test file names derived from workflow names."""
        assert suggested_filename("My  Daily\tReport") == "my-daily-report.json"
        assert suggested_filename(" Sync ") == "sync.json"


class TestImport:
    """Test cases for importing workflow documents."""

    def test_missing_positions_get_grid_layout(self):
        """Test that steps without a position are laid out three per row."""
        document = {
            "id": "imported",
            "name": "Imported",
            "steps": [{"id": f"s{i}", "type": "action", "name": f"S{i}"} for i in range(4)],
            "connections": [],
        }
        workflow = import_workflow(document)

        assert workflow.steps[0].position == Position(x=150, y=100)
        assert workflow.steps[2].position == Position(x=650, y=100)
        assert workflow.steps[3].position == Position(x=150, y=300)

    def test_grid_position(self):
        """Test the grid slot arithmetic."""
        assert grid_position(0) == {"x": 150, "y": 100}
        assert grid_position(4) == {"x": 400, "y": 300}

    def test_missing_connection_ids_are_generated(self):
        """Test that connections without ids get unique ones."""
        document = {
            "id": "imported",
            "name": "Imported",
            "steps": [
                {"id": "a", "type": "trigger", "name": "A"},
                {"id": "b", "type": "action", "name": "B"},
                {"id": "c", "type": "action", "name": "C"},
            ],
            "connections": [{"source": "a", "target": "b"}, {"source": "b", "target": "c"}],
        }
        workflow = import_workflow(document)

        ids = [connection.id for connection in workflow.connections]
        assert all(ids)
        assert len(set(ids)) == 2

    def test_copy_gets_new_identity(self, linear_workflow):
        """Test importing as a copy."""
        copy = import_workflow(export_workflow(linear_workflow), copy=True)

        assert copy.id != linear_workflow.id
        assert copy.id.startswith("workflow-")
        assert copy.created_at >= linear_workflow.created_at
        assert copy.steps == linear_workflow.steps

    @pytest.mark.parametrize("document,expected", [
        ({"name": "x", "steps": [], "connections": []}, "Missing required field: id"),
        ({"id": "x", "name": "  ", "steps": [], "connections": []}, "Missing required field: name"),
        ({"id": "x", "name": "x", "connections": []}, "Missing required field: steps"),
        ({"id": "x", "name": "x", "steps": {}, "connections": []}, "Field 'steps' must be a list"),
        ({"id": "x", "name": "x", "steps": [], "connections": [1]}, "Every entry of 'connections' must be an object"),
    ])
    def test_structural_errors(self, document, expected):
        """Test that malformed documents list their problems."""
        with pytest.raises(ValidationError) as exc_info:
            import_workflow(document)
        assert expected in exc_info.value.validation_errors

    def test_dangling_connection_reported(self):
        """Test that model-level problems surface as validation errors."""
        document = {
            "id": "x",
            "name": "x",
            "steps": [{"id": "a", "type": "action", "name": "A"}],
            "connections": [{"id": "c", "source": "a", "target": "missing"}],
        }
        with pytest.raises(ValidationError) as exc_info:
            import_workflow(document)
        assert any("missing" in error for error in exc_info.value.validation_errors)

    def test_unknown_step_type_reported(self):
        """Test that invalid step types are located in the error."""
        document = {
            "id": "x",
            "name": "x",
            "steps": [{"id": "a", "type": "teleport", "name": "A"}],
            "connections": [],
        }
        with pytest.raises(ValidationError) as exc_info:
            import_workflow(document)
        assert exc_info.value.validation_errors[0].startswith("steps.0.type")

    def test_non_object_and_bad_json(self):
        """Test inputs that are not JSON objects."""
        with pytest.raises(ValidationError):
            import_workflow([1, 2, 3])
        with pytest.raises(ValidationError):
            import_json("{not json")


class TestValidation:
    """Test cases for workflow validation warnings."""

    def test_clean_workflow_has_no_warnings(self, linear_workflow):
        """Test a connected workflow with a trigger."""
        result = validate_workflow(linear_workflow)
        assert result.is_valid
        assert result.warnings == []

    def test_cycle_and_missing_trigger_warned(self):
        """Test warnings for cycles and workflows without triggers."""
        workflow = make_workflow("cyclic", [make_step("a"), make_step("b")], [("a", "b"), ("b", "a")])
        result = validate_workflow(workflow)

        assert result.is_valid
        assert "Workflow contains a cycle and cannot be run" in result.warnings
        assert "Workflow has no trigger step" in result.warnings

    def test_unconnected_step_warned(self, linear_workflow):
        """Test the warning for a step with no connections."""
        workflow = linear_workflow.model_copy(update={
            "steps": linear_workflow.steps + [make_step("orphan", name="Orphan")]
        })
        result = validate_workflow(workflow)
        assert result.warnings == ["Step 'Orphan' is not connected to any other step"]

    def test_single_step_is_not_unconnected(self):
        """Test that a lone step does not count as unconnected."""
        workflow = make_workflow("single", [make_step("only", StepType.TRIGGER)])
        assert validate_workflow(workflow).warnings == []

    def test_template_config_problems_warned(self):
        """Test that config outside the template schema is a warning."""
        step = Step(id="hook", type=StepType.TRIGGER, name="Hook", template="trigger.webhook",
                    config={"path": "no-slash"})
        odd = Step(id="odd", type=StepType.ACTION, name="Odd", template="action.teleport")
        workflow = make_workflow("templated", [step, odd], [("hook", "odd")])

        warnings = validate_workflow(workflow).warnings
        assert any(w.startswith("Step 'Hook' config path") for w in warnings)
        assert "Step 'Odd' uses unknown template 'action.teleport'" in warnings

    def test_validate_document(self, linear_workflow):
        """Test validating raw documents."""
        assert validate_document(export_workflow(linear_workflow)).is_valid

        result = validate_document({"id": "x"})
        assert not result.is_valid
        assert "Missing required field: name" in result.errors


class TestWorkflowFiles:
    """Test cases for reading and writing workflow files."""

    def test_write_to_directory_uses_suggested_name(self, tmp_path, linear_workflow):
        """Test writing into a directory and reading back."""
        path = write_workflow_file(linear_workflow, tmp_path)

        assert path.name == "linear-workflow.json"
        assert json.loads(path.read_text(encoding="utf-8"))["id"] == "linear"
        assert read_workflow_file(path) == linear_workflow

    def test_missing_file_is_persistence_error(self, tmp_path):
        """Test reading a file that does not exist."""
        with pytest.raises(PersistenceError):
            read_workflow_file(tmp_path / "missing.json")

    def test_unwritable_path_is_persistence_error(self, tmp_path, linear_workflow):
        """Test writing below a missing directory."""
        with pytest.raises(PersistenceError):
            write_workflow_file(linear_workflow, tmp_path / "missing" / "out.json")
