"""Graph model owning the steps and connections of the open workflow."""

import uuid
from typing import Any, Dict, List, Optional

from ..models.core import Connection, Position, Step, StepType, Workflow, utc_now
from .exceptions import GraphReferenceError, ValidationError
from .logging import get_logger
from .templates import StepTemplateCatalog, get_step_catalog

logger = get_logger(__name__)


class GraphModel:
    """Mutable workflow graph that keeps connections consistent with steps.

    All connections always join two existing, distinct steps and no
    ordered pair is connected twice. Operations that name an unknown step
    or connection raise :class:`GraphReferenceError` and leave the graph
    untouched. ``add_connection`` is the exception: it reports rejected
    connections by returning ``None``.
    """

    def __init__(self, workflow: Workflow, catalog: Optional[StepTemplateCatalog] = None):
        self._workflow = workflow
        self._catalog = catalog or get_step_catalog()

    @classmethod
    def new(cls, name: str, description: Optional[str] = None,
            catalog: Optional[StepTemplateCatalog] = None) -> "GraphModel":
        """Create a graph around a fresh, empty workflow."""
        workflow = Workflow(id=_generate_unique_id("workflow"), name=name, description=description)
        logger.info(f"Created new workflow '{name}' with ID: {workflow.id}")
        return cls(workflow, catalog)

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    @property
    def steps(self) -> List[Step]:
        return list(self._workflow.steps)

    @property
    def connections(self) -> List[Connection]:
        return list(self._workflow.connections)

    def _touch(self) -> None:
        self._workflow.updated_at = utc_now()

    # Steps

    def add_step(
        self,
        step_type: StepType,
        name: str,
        position: Position,
        config: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        template: Optional[str] = None
    ) -> Step:
        """
        Add a new step with a freshly generated id.

        Args:
            step_type: Type of the step
            name: Display name
            position: Canvas position of the step centre
            config: Step configuration
            description: Optional description
            template: Catalog template key the config conforms to

        Returns:
            The created step
        """
        step = Step(
            id=_generate_unique_id(StepType(step_type).value),
            type=step_type,
            name=name,
            description=description,
            config=dict(config or {}),
            position=position.model_copy(),
            template=template
        )
        self._workflow.steps.append(step)
        self._touch()
        logger.debug(f"Added {step.type.value} step '{step.name}' ({step.id}) to workflow {self._workflow.id}")
        return step

    def add_step_from_template(
        self,
        template_key: str,
        position: Position,
        overrides: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None
    ) -> Step:
        """
        Instantiate a catalog template as a new step.

        Raises:
            ValidationError: If the template is unknown or the overrides do not fit its schema
        """
        template = self._catalog.get(template_key)
        config = template.build_config(overrides)
        return self.add_step(
            template.type,
            name or template.name,
            position,
            config=config,
            description=template.description,
            template=template.key
        )

    def get_step(self, step_id: str) -> Step:
        """
        Retrieve a step by id.

        Raises:
            GraphReferenceError: If the step does not exist
        """
        step = self.find_step(step_id)
        if step is None:
            raise GraphReferenceError(
                f"Step '{step_id}' not found in workflow {self._workflow.id}",
                step_id=step_id,
                workflow_id=self._workflow.id
            )
        return step

    def find_step(self, step_id: str) -> Optional[Step]:
        for step in self._workflow.steps:
            if step.id == step_id:
                return step
        return None

    def has_step(self, step_id: str) -> bool:
        return self.find_step(step_id) is not None

    def remove_step(self, step_id: str) -> List[Connection]:
        """
        Remove a step and every connection that touches it.

        Returns:
            The connections removed along with the step

        Raises:
            GraphReferenceError: If the step does not exist
        """
        step = self.get_step(step_id)
        removed = self.connections_for(step_id)

        self._workflow.steps = [s for s in self._workflow.steps if s.id != step_id]
        self._workflow.connections = [
            c for c in self._workflow.connections
            if c.source != step_id and c.target != step_id
        ]
        self._touch()

        logger.info(f"Removed step '{step.name}' ({step_id}) and {len(removed)} connection(s)")
        return removed

    def update_step_config(self, step_id: str, partial_config: Dict[str, Any]) -> Step:
        """
        Shallow-merge ``partial_config`` into a step's config.

        Raises:
            GraphReferenceError: If the step does not exist
            ValidationError: If the merged config no longer fits the step's template
        """
        step = self.get_step(step_id)
        if step.template and step.template in self._catalog:
            merged = self._catalog.get(step.template).merge_config(step.config, partial_config)
        else:
            merged = {**step.config, **partial_config}

        step.config = merged
        self._touch()
        logger.debug(f"Updated config of step {step_id}: {sorted(partial_config)}")
        return step

    def update_step_details(self, step_id: str, name: Optional[str] = None,
                            description: Optional[str] = None) -> Step:
        """Rename a step and/or change its description."""
        step = self.get_step(step_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Step name cannot be empty")
            step.name = name.strip()
        if description is not None:
            step.description = description
        self._touch()
        return step

    def move_step(self, step_id: str, new_position: Position) -> Step:
        """Set a step's position; connections follow since they resolve endpoints by id."""
        step = self.get_step(step_id)
        step.position = new_position.model_copy()
        self._touch()
        return step

    # Connections

    def add_connection(self, source_id: str, target_id: str, label: Optional[str] = None) -> Optional[Connection]:
        """
        Connect two steps.

        Returns:
            The new connection, or ``None`` for a self-loop, an unknown
            endpoint, or an already connected ordered pair
        """
        if source_id == target_id:
            logger.debug(f"Rejected self-loop on step {source_id}")
            return None

        if not self.has_step(source_id) or not self.has_step(target_id):
            logger.warning(f"Rejected connection {source_id} -> {target_id}: unknown step")
            return None

        if self.find_connection_between(source_id, target_id) is not None:
            logger.debug(f"Connection {source_id} -> {target_id} already exists")
            return None

        connection = Connection(
            id=_generate_unique_id("connection"),
            source=source_id,
            target=target_id,
            label=label
        )
        self._workflow.connections.append(connection)
        self._touch()
        logger.debug(f"Connected {source_id} -> {target_id} ({connection.id})")
        return connection

    def get_connection(self, connection_id: str) -> Connection:
        """
        Retrieve a connection by id.

        Raises:
            GraphReferenceError: If the connection does not exist
        """
        for connection in self._workflow.connections:
            if connection.id == connection_id:
                return connection
        raise GraphReferenceError(
            f"Connection '{connection_id}' not found in workflow {self._workflow.id}",
            connection_id=connection_id,
            workflow_id=self._workflow.id
        )

    def update_connection(self, connection_id: str, label: Optional[str]) -> Connection:
        """
        Change a connection's label; a blank label clears it.

        Raises:
            GraphReferenceError: If the connection does not exist
        """
        connection = self.get_connection(connection_id)
        connection.label = (label or "").strip() or None
        self._touch()
        logger.debug(f"Relabelled connection {connection_id}: {connection.label!r}")
        return connection

    def find_connection_between(self, source_id: str, target_id: str) -> Optional[Connection]:
        for connection in self._workflow.connections:
            if connection.source == source_id and connection.target == target_id:
                return connection
        return None

    def remove_connection(self, connection_id: str) -> Connection:
        """
        Remove a connection.

        Raises:
            GraphReferenceError: If the connection does not exist
        """
        connection = self.get_connection(connection_id)
        self._workflow.connections = [c for c in self._workflow.connections if c.id != connection_id]
        self._touch()
        logger.debug(f"Removed connection {connection.source} -> {connection.target} ({connection_id})")
        return connection

    def connections_for(self, step_id: str) -> List[Connection]:
        return [c for c in self._workflow.connections if c.source == step_id or c.target == step_id]

    def outgoing(self, step_id: str) -> List[Connection]:
        return [c for c in self._workflow.connections if c.source == step_id]

    def incoming(self, step_id: str) -> List[Connection]:
        return [c for c in self._workflow.connections if c.target == step_id]

    # Workflow

    def update_details(self, name: Optional[str] = None, description: Optional[str] = None) -> Workflow:
        """Edit the workflow's name and description."""
        if name is not None:
            if not name.strip():
                raise ValidationError("Workflow name cannot be empty")
            self._workflow.name = name.strip()
        if description is not None:
            self._workflow.description = description
        self._touch()
        return self._workflow

    def check_integrity(self) -> List[str]:
        """
        Re-check the connection invariants.

        Returns:
            Human-readable violations; empty when the graph is consistent
        """
        problems = []
        step_ids = self._workflow.step_ids()
        pairs = set()
        for connection in self._workflow.connections:
            if connection.source not in step_ids:
                problems.append(f"Connection {connection.id} has unknown source {connection.source}")
            if connection.target not in step_ids:
                problems.append(f"Connection {connection.id} has unknown target {connection.target}")
            if connection.source == connection.target:
                problems.append(f"Connection {connection.id} is a self-loop")
            if connection.endpoints in pairs:
                problems.append(f"Connection {connection.id} duplicates {connection.source} -> {connection.target}")
            pairs.add(connection.endpoints)
        return problems


def _generate_unique_id(prefix: str) -> str:
    """Generate a unique, prefixed identifier."""
    return f"{prefix}-{uuid.uuid4().hex}"
