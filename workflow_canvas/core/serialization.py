"""Workflow document export, import and structural validation."""

import json
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..models.core import StepType, ValidationResult, Workflow, utc_now
from .exceptions import PersistenceError, ValidationError
from .logging import get_logger
from .templates import StepTemplateCatalog, get_step_catalog
from .topology import has_cycle, isolated_steps

logger = get_logger(__name__)

GRID_COLUMNS = 3
GRID_ORIGIN_X = 150
GRID_ORIGIN_Y = 100
GRID_SPACING_X = 250
GRID_SPACING_Y = 200


def grid_position(index: int) -> Dict[str, float]:
    """Default layout slot for the ``index``-th step of an imported workflow."""
    return {
        "x": GRID_ORIGIN_X + (index % GRID_COLUMNS) * GRID_SPACING_X,
        "y": GRID_ORIGIN_Y + (index // GRID_COLUMNS) * GRID_SPACING_Y,
    }


def export_workflow(workflow: Workflow) -> Dict[str, Any]:
    """Workflow as a JSON-ready document with camelCase keys."""
    return workflow.model_dump(by_alias=True, mode="json")


def export_json(workflow: Workflow, indent: Optional[int] = 2) -> str:
    return workflow.model_dump_json(by_alias=True, indent=indent)


def _format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        message = err["msg"].removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return messages


def _structural_errors(document: Dict[str, Any]) -> List[str]:
    errors = []
    for key in ("id", "name"):
        value = document.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"Missing required field: {key}")

    for key in ("steps", "connections"):
        if key not in document:
            errors.append(f"Missing required field: {key}")
        elif not isinstance(document[key], list):
            errors.append(f"Field '{key}' must be a list")
        elif not all(isinstance(item, dict) for item in document[key]):
            errors.append(f"Every entry of '{key}' must be an object")
    return errors


def import_workflow(document: Any, copy: bool = False) -> Workflow:
    """
    Build a workflow from an exported document.

    Steps without a position are laid out on a grid and connections
    without an id get a fresh one.

    Args:
        document: Parsed JSON document
        copy: Give the workflow a fresh id and timestamps

    Returns:
        The imported workflow

    Raises:
        ValidationError: If the document is malformed; ``validation_errors``
            lists every problem found
    """
    if not isinstance(document, dict):
        raise ValidationError("Workflow document must be a JSON object")

    errors = _structural_errors(document)
    if errors:
        raise ValidationError("Invalid workflow document", validation_errors=errors)

    data = dict(document)
    data["steps"] = [
        step if step.get("position") is not None else {**step, "position": grid_position(index)}
        for index, step in enumerate(document["steps"])
    ]
    data["connections"] = [
        connection if connection.get("id") else {**connection, "id": f"connection-{uuid.uuid4().hex}"}
        for connection in document["connections"]
    ]

    if copy:
        now = utc_now()
        data["id"] = f"workflow-{uuid.uuid4().hex}"
        data["createdAt"] = now
        data["updatedAt"] = now
        data.pop("created_at", None)
        data.pop("updated_at", None)

    try:
        workflow = Workflow.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid workflow document",
            validation_errors=_format_pydantic_errors(e),
            workflow_name=document.get("name")
        )

    logger.info(f"Imported workflow '{workflow.name}' ({workflow.id}) with {len(workflow.steps)} steps")
    return workflow


def import_json(text: Union[str, bytes], copy: bool = False) -> Workflow:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON: {e}", validation_errors=[str(e)])
    return import_workflow(document, copy=copy)


def validate_workflow(workflow: Workflow, catalog: Optional[StepTemplateCatalog] = None) -> ValidationResult:
    """Check a well-formed workflow for problems that do not prevent editing."""
    catalog = catalog or get_step_catalog()
    warnings = []

    if has_cycle(workflow):
        warnings.append("Workflow contains a cycle and cannot be run")

    if len(workflow.steps) > 1:
        unconnected = isolated_steps(workflow)
        for step in workflow.steps:
            if step.id in unconnected:
                warnings.append(f"Step '{step.name}' is not connected to any other step")

    if workflow.steps and not any(step.type == StepType.TRIGGER for step in workflow.steps):
        warnings.append("Workflow has no trigger step")

    for step in workflow.steps:
        if step.template and step.template in catalog:
            try:
                catalog.get(step.template).build_config(step.config)
            except ValidationError as e:
                for problem in e.validation_errors:
                    warnings.append(f"Step '{step.name}' config {problem}")
        elif step.template:
            warnings.append(f"Step '{step.name}' uses unknown template '{step.template}'")

    return ValidationResult(is_valid=True, warnings=warnings)


def validate_document(document: Any) -> ValidationResult:
    """
    Validate a workflow document without importing it.

    Structural problems are errors; cycles, unconnected steps, a missing
    trigger and config that does not fit its template are warnings.
    """
    try:
        workflow = import_workflow(document)
    except ValidationError as e:
        return ValidationResult(is_valid=False, errors=e.validation_errors or [e.message])
    return validate_workflow(workflow)


def suggested_filename(name: str) -> str:
    """File name for an exported workflow: whitespace to dashes, lowercased."""
    slug = re.sub(r"\s+", "-", name.strip()).lower()
    return f"{slug}.json"


def write_workflow_file(workflow: Workflow, path: Union[str, Path]) -> Path:
    """
    Write a workflow document to ``path``; a directory gets the suggested file name.

    Raises:
        PersistenceError: If the file cannot be written
    """
    target = Path(path)
    if target.is_dir():
        target = target / suggested_filename(workflow.name)
    try:
        target.write_text(export_json(workflow), encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Failed to write workflow file {target}: {e}", operation="write_workflow_file")
    logger.info(f"Exported workflow {workflow.id} to {target}")
    return target


def read_workflow_file(path: Union[str, Path], copy: bool = False) -> Workflow:
    """
    Import a workflow from a JSON file.

    Raises:
        PersistenceError: If the file cannot be read
        ValidationError: If its content is not a valid workflow document
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Failed to read workflow file {path}: {e}", operation="read_workflow_file")
    return import_json(text, copy=copy)
