"""Graph topology helpers: entry steps, layering, cycle detection."""

from collections import defaultdict
from typing import Dict, Iterable, List, Set

from ..models.core import Connection, Step, Workflow


def build_adjacency(step_ids: Iterable[str], connections: Iterable[Connection]) -> Dict[str, List[str]]:
    """Map every step id to the ids of its direct successors."""
    adjacency: Dict[str, List[str]] = {step_id: [] for step_id in step_ids}
    for connection in connections:
        if connection.source in adjacency and connection.target in adjacency:
            adjacency[connection.source].append(connection.target)
    return adjacency


def build_predecessors(step_ids: Iterable[str], connections: Iterable[Connection]) -> Dict[str, List[str]]:
    """Map every step id to the ids of its direct predecessors."""
    predecessors: Dict[str, List[str]] = {step_id: [] for step_id in step_ids}
    for connection in connections:
        if connection.source in predecessors and connection.target in predecessors:
            predecessors[connection.target].append(connection.source)
    return predecessors


def entry_steps(workflow: Workflow) -> List[Step]:
    """Steps with no incoming connection, in workflow order."""
    targets = {connection.target for connection in workflow.connections}
    return [step for step in workflow.steps if step.id not in targets]


def topological_layers(workflow: Workflow) -> List[List[str]]:
    """
    Group step ids into layers with Kahn's algorithm.

    Every step appears after all of its predecessors; steps in the same
    layer are independent of each other. Within a layer, workflow order
    is preserved.

    Args:
        workflow: Workflow to layer

    Returns:
        List of layers, each a list of step ids

    Raises:
        ValueError: If the connection graph contains a cycle
    """
    order = [step.id for step in workflow.steps]
    adjacency = build_adjacency(order, workflow.connections)
    in_degree: Dict[str, int] = defaultdict(int)
    for successors in adjacency.values():
        for successor in successors:
            in_degree[successor] += 1

    layers: List[List[str]] = []
    remaining = list(order)
    while remaining:
        layer = [step_id for step_id in remaining if in_degree[step_id] == 0]
        if not layer:
            raise ValueError(f"Workflow contains a cycle through: {', '.join(sorted(remaining))}")

        layers.append(layer)
        placed = set(layer)
        remaining = [step_id for step_id in remaining if step_id not in placed]
        for step_id in layer:
            for successor in adjacency[step_id]:
                in_degree[successor] -= 1

    return layers


def has_cycle(workflow: Workflow) -> bool:
    try:
        topological_layers(workflow)
    except ValueError:
        return True
    return False


def descendants(workflow: Workflow, step_id: str) -> Set[str]:
    """All step ids reachable from ``step_id`` (excluding itself)."""
    adjacency = build_adjacency(workflow.step_ids(), workflow.connections)
    reachable: Set[str] = set()
    queue = list(adjacency.get(step_id, []))
    while queue:
        current = queue.pop(0)
        if current in reachable or current == step_id:
            continue
        reachable.add(current)
        queue.extend(adjacency.get(current, []))
    return reachable


def isolated_steps(workflow: Workflow) -> Set[str]:
    """Steps without any incoming or outgoing connection."""
    connected: Set[str] = set()
    for connection in workflow.connections:
        connected.add(connection.source)
        connected.add(connection.target)
    return workflow.step_ids() - connected
