"""Canvas interaction engine.

Pointer and keyboard events are folded into an immutable :class:`ViewState`
by :meth:`CanvasInteractionEngine.handle`. The engine never mutates a
state in place; every transition returns a new value. Graph changes
(moving, connecting, deleting) go through the :class:`GraphModel`.
"""

from enum import Enum
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.core import Connection, Position, Step
from .geometry import (
    ORIGIN,
    Point,
    distance_to_segment,
    point_in_box,
    screen_delta_to_world,
    screen_to_world,
    zoom_about,
)
from .graph_model import GraphModel
from .logging import get_logger

logger = get_logger(__name__)


class CanvasSettings(BaseModel):
    """Geometry and zoom limits used for hit-testing and view changes."""
    node_half_width: float = Field(50.0, gt=0, description="Half width of a step's hit box")
    node_half_height: float = Field(25.0, gt=0, description="Half height of a step's hit box")
    edge_hit_radius: float = Field(10.0, gt=0, description="Edge hit tolerance in screen pixels")
    min_zoom: float = Field(0.1, gt=0, description="Smallest allowed zoom")
    max_zoom: float = Field(4.0, gt=0, description="Largest allowed zoom")
    zoom_step: float = Field(1.1, gt=1, description="Zoom factor applied per wheel notch")

    @model_validator(mode='after')
    def validate_zoom_range(self):
        if self.max_zoom < self.min_zoom:
            raise ValueError("max_zoom must be greater than or equal to min_zoom")
        return self


class InteractionMode(str, Enum):
    IDLE = "idle"
    DRAGGING_NODE = "dragging_node"
    PANNING = "panning"
    CONNECTING_EDGE = "connecting_edge"


class SelectionKind(str, Enum):
    STEP = "step"
    CONNECTION = "connection"


class Selection(BaseModel):
    """The single selected step or connection."""
    model_config = ConfigDict(frozen=True)

    kind: SelectionKind
    id: str

    @classmethod
    def step(cls, step_id: str) -> "Selection":
        return cls(kind=SelectionKind.STEP, id=step_id)

    @classmethod
    def connection(cls, connection_id: str) -> "Selection":
        return cls(kind=SelectionKind.CONNECTION, id=connection_id)


class DragState(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    last_pointer: Point = Field(..., description="Screen position of the previous pointer event")
    moved: bool = False


class ConnectionInProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    pointer: Point = Field(..., description="Live pointer in world coordinates")


class ViewState(BaseModel):
    """Ephemeral editor view: pan, zoom, selection and the active gesture."""
    model_config = ConfigDict(frozen=True)

    pan: Point = ORIGIN
    zoom: float = Field(1.0, gt=0)
    selection: Optional[Selection] = None
    mode: InteractionMode = InteractionMode.IDLE
    drag: Optional[DragState] = None
    connection_in_progress: Optional[ConnectionInProgress] = None
    pointer: Optional[Point] = Field(None, description="Last pointer position in screen coordinates")

    def evolve(self, **changes) -> "ViewState":
        return self.model_copy(update=changes)

    def idle(self) -> "ViewState":
        """Drop any active gesture, keeping view and selection."""
        return self.evolve(mode=InteractionMode.IDLE, drag=None, connection_in_progress=None)


class CanvasEvent(BaseModel):
    """Base class for pointer and keyboard input."""
    model_config = ConfigDict(frozen=True)


class PointerEvent(CanvasEvent):
    x: float = Field(..., description="Pointer x relative to the canvas element")
    y: float = Field(..., description="Pointer y relative to the canvas element")

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


class PointerDown(PointerEvent):
    pass


class PointerMove(PointerEvent):
    pass


class PointerUp(PointerEvent):
    pass


class DoubleClick(PointerEvent):
    pass


class Wheel(PointerEvent):
    delta_y: float = Field(..., description="Negative values zoom in, positive values zoom out")


class PointerLeave(CanvasEvent):
    pass


class KeyDown(CanvasEvent):
    key: str


DELETE_KEYS = frozenset({"Delete", "Backspace"})


class CanvasInteractionEngine:
    """
    Turns input events into view-state transitions and graph edits.

    Modes: ``idle`` -> ``dragging_node`` | ``panning`` | ``connecting_edge``
    -> ``idle``. In read-only mode panning, zooming and selection still
    work while dragging, connecting and deleting are ignored.
    """

    def __init__(self, graph: GraphModel, settings: Optional[CanvasSettings] = None, read_only: bool = False):
        self.graph = graph
        self.settings = settings or CanvasSettings()
        self.read_only = read_only

    def initial_state(self) -> ViewState:
        return ViewState()

    def to_world(self, state: ViewState, screen: Point) -> Point:
        return screen_to_world(screen, state.pan, state.zoom)

    # Hit-testing

    def hit_test_step(self, world: Point) -> Optional[Step]:
        """Topmost step whose box contains the world point."""
        for step in reversed(self.graph.steps):
            if point_in_box(
                world,
                Point.from_position(step.position),
                self.settings.node_half_width,
                self.settings.node_half_height
            ):
                return step
        return None

    def hit_test_connection(self, world: Point, zoom: float = 1.0) -> Optional[Connection]:
        """
        Nearest connection whose segment passes within the hit radius.

        The radius is given in screen pixels and converted to world units,
        so edges stay equally easy to hit at every zoom level.
        """
        tolerance = self.settings.edge_hit_radius / zoom
        best: Optional[Connection] = None
        best_distance = tolerance

        for connection in reversed(self.graph.connections):
            source = self.graph.find_step(connection.source)
            target = self.graph.find_step(connection.target)
            if source is None or target is None:
                continue
            distance = distance_to_segment(
                world,
                Point.from_position(source.position),
                Point.from_position(target.position)
            )
            if distance < best_distance:
                best, best_distance = connection, distance

        return best

    # Transitions

    def handle(self, state: ViewState, event: CanvasEvent) -> ViewState:
        """
        Apply one input event.

        Args:
            state: Current view state
            event: Pointer or keyboard event

        Returns:
            The next view state
        """
        if isinstance(event, PointerDown):
            return self._on_pointer_down(state, event.point)
        if isinstance(event, PointerMove):
            return self._on_pointer_move(state, event.point)
        if isinstance(event, PointerUp):
            return self._on_pointer_up(state, event.point)
        if isinstance(event, DoubleClick):
            return self._on_double_click(state, event.point)
        if isinstance(event, Wheel):
            return self._on_wheel(state, event)
        if isinstance(event, PointerLeave):
            return self.cancel_gesture(state).evolve(pointer=None)
        if isinstance(event, KeyDown):
            return self._on_key_down(state, event.key)
        raise TypeError(f"Unsupported canvas event: {type(event).__name__}")

    def _on_pointer_down(self, state: ViewState, screen: Point) -> ViewState:
        world = self.to_world(state, screen)
        state = state.evolve(pointer=screen)

        if state.mode == InteractionMode.CONNECTING_EDGE:
            return self._finish_connection(state, world)

        step = self.hit_test_step(world)
        if step is not None:
            state = state.idle().evolve(selection=Selection.step(step.id))
            if self.read_only:
                return state
            return state.evolve(
                mode=InteractionMode.DRAGGING_NODE,
                drag=DragState(step_id=step.id, last_pointer=screen)
            )

        connection = self.hit_test_connection(world, state.zoom)
        if connection is not None:
            return state.idle().evolve(selection=Selection.connection(connection.id))

        return state.idle().evolve(mode=InteractionMode.PANNING, selection=None)

    def _on_pointer_move(self, state: ViewState, screen: Point) -> ViewState:
        previous = state.pointer
        state = state.evolve(pointer=screen)

        if state.mode == InteractionMode.DRAGGING_NODE and state.drag is not None:
            delta = screen_delta_to_world(screen - state.drag.last_pointer, state.zoom)
            step = self.graph.get_step(state.drag.step_id)
            self.graph.move_step(
                step.id,
                Position(x=step.position.x + delta.x, y=step.position.y + delta.y)
            )
            moved = state.drag.moved or delta != ORIGIN
            return state.evolve(drag=state.drag.model_copy(update={"last_pointer": screen, "moved": moved}))

        if state.mode == InteractionMode.PANNING and previous is not None:
            return state.evolve(pan=state.pan + (screen - previous))

        if state.mode == InteractionMode.CONNECTING_EDGE and state.connection_in_progress is not None:
            world = self.to_world(state, screen)
            return state.evolve(
                connection_in_progress=state.connection_in_progress.model_copy(update={"pointer": world})
            )

        return state

    def _on_pointer_up(self, state: ViewState, screen: Point) -> ViewState:
        state = state.evolve(pointer=screen)
        if state.mode in (InteractionMode.DRAGGING_NODE, InteractionMode.PANNING):
            if state.drag is not None and state.drag.moved:
                logger.debug(f"Finished dragging step {state.drag.step_id}")
            return state.idle()
        return state

    def _on_double_click(self, state: ViewState, screen: Point) -> ViewState:
        step = self.hit_test_step(self.to_world(state, screen))
        if step is None:
            return state
        return self.begin_connection(state.evolve(pointer=screen), step.id)

    def _on_wheel(self, state: ViewState, event: Wheel) -> ViewState:
        if event.delta_y == 0:
            return state
        factor = self.settings.zoom_step if event.delta_y < 0 else 1.0 / self.settings.zoom_step
        return self.zoom_by(state, factor, event.point)

    def _on_key_down(self, state: ViewState, key: str) -> ViewState:
        if key == "Escape":
            return self.cancel_gesture(state)
        if key in DELETE_KEYS and state.mode == InteractionMode.IDLE:
            return self.remove_selection(state)
        return state

    def _finish_connection(self, state: ViewState, world: Point) -> ViewState:
        pending = state.connection_in_progress
        target = self.hit_test_step(world)

        if pending is None or target is None or target.id == pending.source_id:
            logger.debug("Connection gesture cancelled")
            return state.idle()

        connection = self.graph.add_connection(pending.source_id, target.id)
        if connection is None:
            return state.idle()

        logger.info(f"Connected {pending.source_id} -> {target.id} from canvas")
        return state.idle().evolve(selection=Selection.connection(connection.id))

    # Commands

    def begin_connection(self, state: ViewState, step_id: str) -> ViewState:
        """
        Enter connect mode with ``step_id`` as the source.

        Raises:
            GraphReferenceError: If the step does not exist
        """
        step = self.graph.get_step(step_id)
        if self.read_only:
            return state

        pointer = self.to_world(state, state.pointer) if state.pointer is not None else Point.from_position(step.position)
        return state.idle().evolve(
            mode=InteractionMode.CONNECTING_EDGE,
            selection=Selection.step(step.id),
            connection_in_progress=ConnectionInProgress(source_id=step.id, pointer=pointer)
        )

    def provisional_edge(self, state: ViewState) -> Optional[Tuple[Point, Point]]:
        """World-space segment from the connect source to the live pointer."""
        pending = state.connection_in_progress
        if pending is None:
            return None
        source = self.graph.find_step(pending.source_id)
        if source is None:
            return None
        return Point.from_position(source.position), pending.pointer

    def zoom_by(self, state: ViewState, factor: float, anchor: Optional[Point] = None) -> ViewState:
        """
        Multiply the zoom, clamped to the configured range.

        Args:
            state: Current view state
            factor: Positive zoom multiplier
            anchor: Screen point kept fixed; defaults to the screen origin
        """
        if factor <= 0:
            raise ValueError(f"Zoom factor must be positive, got {factor}")

        new_zoom = min(self.settings.max_zoom, max(self.settings.min_zoom, state.zoom * factor))
        if new_zoom == state.zoom:
            return state

        pan = zoom_about(state.pan, state.zoom, new_zoom, anchor or ORIGIN)
        return state.evolve(zoom=new_zoom, pan=pan)

    def cancel_gesture(self, state: ViewState) -> ViewState:
        """Return to idle; moves already applied during a drag are kept."""
        if state.mode != InteractionMode.IDLE:
            logger.debug(f"Cancelled {state.mode.value} gesture")
        return state.idle()

    def remove_selection(self, state: ViewState) -> ViewState:
        """Delete the selected step (with its connections) or connection."""
        if state.selection is None or self.read_only:
            return state

        if state.selection.kind == SelectionKind.STEP:
            self.graph.remove_step(state.selection.id)
        else:
            self.graph.remove_connection(state.selection.id)
        return state.evolve(selection=None)

    def clear_selection_for(
        self,
        state: ViewState,
        step_ids: Iterable[str] = (),
        connection_ids: Iterable[str] = ()
    ) -> ViewState:
        """Drop selection and gestures that refer to removed graph elements."""
        step_ids = set(step_ids)
        connection_ids = set(connection_ids)
        selection = state.selection

        if selection is not None and (
            (selection.kind == SelectionKind.STEP and selection.id in step_ids)
            or (selection.kind == SelectionKind.CONNECTION and selection.id in connection_ids)
        ):
            state = state.evolve(selection=None)

        if state.drag is not None and state.drag.step_id in step_ids:
            state = state.idle()
        if state.connection_in_progress is not None and state.connection_in_progress.source_id in step_ids:
            state = state.idle()

        return state
