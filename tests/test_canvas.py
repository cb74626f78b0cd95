"""Tests for the canvas interaction engine."""

import pytest

from workflow_canvas.core.canvas import (
    CanvasInteractionEngine,
    CanvasSettings,
    DoubleClick,
    InteractionMode,
    KeyDown,
    PointerDown,
    PointerLeave,
    PointerMove,
    PointerUp,
    Selection,
    SelectionKind,
    ViewState,
    Wheel,
)
from workflow_canvas.core.exceptions import GraphReferenceError
from workflow_canvas.core.geometry import Point, world_to_screen
from workflow_canvas.core.graph_model import GraphModel
from workflow_canvas.models.core import Position, StepType


@pytest.fixture
def engine(graph):
    """Engine over the linear workflow: steps at x=0, 200 and 400 on y=0."""
    return CanvasInteractionEngine(graph)


@pytest.fixture
def read_only_engine(graph):
    return CanvasInteractionEngine(graph, read_only=True)


class TestHitTesting:
    """Test cases for step and connection hit-testing."""

    def test_hit_step_inside_box(self, engine):
        """Test that a point within the half extents hits the step."""
        assert engine.hit_test_step(Point(240.0, 20.0)).id == "fetch"
        assert engine.hit_test_step(Point(300.0, 0.0)) is None

    def test_topmost_step_wins(self, graph, engine):
        """Test that overlapping steps resolve to the last one drawn."""
        graph.move_step("notify", Position(x=220, y=0))
        assert engine.hit_test_step(Point(210.0, 0.0)).id == "notify"

    def test_hit_connection_within_radius(self, graph, engine):
        """Test edge hits within the screen-space radius."""
        graph.move_step("fetch", Position(x=200, y=200))
        # start (0,0) -> fetch (200,200); midpoint (100,100)
        hit = engine.hit_test_connection(Point(104.0, 100.0))
        assert hit is not None
        assert hit.id == "start-fetch"
        assert engine.hit_test_connection(Point(140.0, 100.0)) is None

    def test_hit_radius_scales_with_zoom(self, graph, engine):
        """Test that zooming out widens the hit radius in world units."""
        graph.move_step("fetch", Position(x=200, y=200))
        probe = Point(120.0, 100.0)
        assert engine.hit_test_connection(probe, zoom=1.0) is None
        assert engine.hit_test_connection(probe, zoom=0.5).id == "start-fetch"


class TestPointerGestures:
    """Test cases for selection, dragging and panning."""

    def test_pointer_down_on_step_selects_and_starts_drag(self, engine):
        """Test pressing on a step."""
        state = engine.handle(engine.initial_state(), PointerDown(x=200, y=0))

        assert state.selection == Selection.step("fetch")
        assert state.mode == InteractionMode.DRAGGING_NODE
        assert state.drag.step_id == "fetch"

    def test_drag_moves_step_by_world_delta(self, graph, engine):
        """Test that dragging at zoom 2 moves the step half the pointer distance."""
        state = ViewState(zoom=2.0)
        state = engine.handle(state, PointerDown(x=400, y=0))
        state = engine.handle(state, PointerMove(x=420, y=10))
        state = engine.handle(state, PointerMove(x=440, y=20))
        state = engine.handle(state, PointerUp(x=440, y=20))

        assert graph.get_step("fetch").position == Position(x=220, y=10)
        assert state.mode == InteractionMode.IDLE
        assert state.drag is None
        assert state.selection == Selection.step("fetch")

    def test_connections_follow_dragged_step(self, graph, engine):
        """Test that connections stay attached by id while a step moves."""
        state = engine.handle(engine.initial_state(), PointerDown(x=200, y=0))
        engine.handle(state, PointerMove(x=200, y=300))

        assert graph.find_connection_between("start", "fetch") is not None
        assert engine.hit_test_connection(Point(100.0, 150.0)).id == "start-fetch"

    def test_pointer_down_on_empty_canvas_pans(self, engine):
        """Test that pressing on empty space clears the selection and pans."""
        state = ViewState(selection=Selection.step("start"))
        state = engine.handle(state, PointerDown(x=100, y=300))
        assert state.mode == InteractionMode.PANNING
        assert state.selection is None

        state = engine.handle(state, PointerMove(x=130, y=280))
        state = engine.handle(state, PointerMove(x=150, y=290))
        state = engine.handle(state, PointerUp(x=150, y=290))

        assert state.pan == Point(50.0, -10.0)
        assert state.mode == InteractionMode.IDLE

    def test_pointer_down_on_connection_selects_it(self, engine):
        """Test edge selection without entering a gesture."""
        state = engine.handle(engine.initial_state(), PointerDown(x=100, y=5))

        assert state.selection == Selection.connection("start-fetch")
        assert state.mode == InteractionMode.IDLE

    def test_states_are_not_mutated(self, engine):
        """Test that transitions return new states."""
        initial = engine.initial_state()
        after = engine.handle(initial, PointerDown(x=200, y=0))

        assert initial.mode == InteractionMode.IDLE
        assert initial.selection is None
        assert after is not initial

    def test_pointer_leave_cancels_drag_but_keeps_moves(self, graph, engine):
        """Test leaving the canvas mid-drag."""
        state = engine.handle(engine.initial_state(), PointerDown(x=0, y=0))
        state = engine.handle(state, PointerMove(x=10, y=10))
        state = engine.handle(state, PointerLeave())

        assert state.mode == InteractionMode.IDLE
        assert state.pointer is None
        assert graph.get_step("start").position == Position(x=10, y=10)


class TestConnecting:
    """Test cases for the connect gesture."""

    def test_double_click_then_click_target_connects(self, graph, engine):
        """Test connecting two steps from the canvas."""
        state = engine.handle(engine.initial_state(), DoubleClick(x=0, y=0))
        assert state.mode == InteractionMode.CONNECTING_EDGE
        assert state.connection_in_progress.source_id == "start"

        state = engine.handle(state, PointerMove(x=300, y=40))
        assert engine.provisional_edge(state) == (Point(0.0, 0.0), Point(300.0, 40.0))

        state = engine.handle(state, PointerDown(x=400, y=0))

        connection = graph.find_connection_between("start", "notify")
        assert connection is not None
        assert state.mode == InteractionMode.IDLE
        assert state.selection == Selection.connection(connection.id)

    def test_clicking_source_or_empty_space_cancels(self, graph, engine):
        """Test that the gesture is abandoned without a valid target."""
        before = len(graph.connections)

        state = engine.begin_connection(engine.initial_state(), "start")
        state = engine.handle(state, PointerDown(x=0, y=0))
        assert state.mode == InteractionMode.IDLE

        state = engine.begin_connection(state, "start")
        state = engine.handle(state, PointerDown(x=100, y=500))
        assert state.mode == InteractionMode.IDLE
        assert state.connection_in_progress is None

        assert len(graph.connections) == before

    def test_connecting_existing_pair_is_ignored(self, graph, engine):
        """Test that duplicate connections are not created from the canvas."""
        state = engine.begin_connection(engine.initial_state(), "start")
        state = engine.handle(state, PointerDown(x=200, y=0))

        assert len(graph.connections) == 2
        assert state.mode == InteractionMode.IDLE

    def test_escape_cancels_connection(self, engine):
        """Test cancelling with the Escape key."""
        state = engine.begin_connection(engine.initial_state(), "fetch")
        state = engine.handle(state, KeyDown(key="Escape"))

        assert state.mode == InteractionMode.IDLE
        assert engine.provisional_edge(state) is None

    def test_begin_connection_unknown_step(self, engine):
        """Test that an unknown source is a reference error."""
        with pytest.raises(GraphReferenceError):
            engine.begin_connection(engine.initial_state(), "missing")


class TestZoom:
    """Test cases for wheel zoom."""

    def test_wheel_zooms_about_pointer(self, engine):
        """Test that the world point under the pointer stays fixed."""
        state = engine.initial_state()
        anchor = Point(250.0, 120.0)
        before = engine.to_world(state, anchor)

        state = engine.handle(state, Wheel(x=anchor.x, y=anchor.y, delta_y=-100))

        assert state.zoom == pytest.approx(1.1)
        after = engine.to_world(state, anchor)
        assert after.x == pytest.approx(before.x)
        assert after.y == pytest.approx(before.y)

    def test_wheel_down_zooms_out(self, engine):
        """Test that positive wheel deltas reduce the zoom."""
        state = engine.handle(engine.initial_state(), Wheel(x=0, y=0, delta_y=100))
        assert state.zoom == pytest.approx(1 / 1.1)

    def test_zoom_is_clamped(self, graph):
        """Test that zoom never leaves the configured range."""
        engine = CanvasInteractionEngine(graph, CanvasSettings(min_zoom=0.5, max_zoom=2.0))
        state = engine.initial_state()

        for _ in range(50):
            state = engine.handle(state, Wheel(x=0, y=0, delta_y=-1))
        assert state.zoom == 2.0

        for _ in range(50):
            state = engine.handle(state, Wheel(x=0, y=0, delta_y=1))
        assert state.zoom == 0.5

    def test_zero_delta_and_invalid_factor(self, engine):
        """Test that a zero wheel delta changes nothing and factors must be positive."""
        state = engine.initial_state()
        assert engine.handle(state, Wheel(x=0, y=0, delta_y=0)) == state

        with pytest.raises(ValueError):
            engine.zoom_by(state, 0)

    def test_invalid_settings(self):
        """Test that an inverted zoom range is rejected."""
        with pytest.raises(ValueError):
            CanvasSettings(min_zoom=2.0, max_zoom=1.0)


class TestDeletion:
    """Test cases for keyboard deletion."""

    def test_delete_selected_step(self, graph, engine):
        """Test that Delete removes the step and its connections."""
        state = ViewState(selection=Selection.step("fetch"))
        state = engine.handle(state, KeyDown(key="Delete"))

        assert state.selection is None
        assert not graph.has_step("fetch")
        assert graph.connections == []

    def test_backspace_deletes_selected_connection(self, graph, engine):
        """Test that Backspace removes a selected connection only."""
        state = ViewState(selection=Selection.connection("fetch-notify"))
        engine.handle(state, KeyDown(key="Backspace"))

        assert [c.id for c in graph.connections] == ["start-fetch"]
        assert len(graph.steps) == 3

    def test_delete_ignored_during_gesture(self, graph, engine):
        """Test that deletion only happens while idle."""
        state = engine.handle(engine.initial_state(), PointerDown(x=200, y=0))
        state = engine.handle(state, KeyDown(key="Delete"))

        assert graph.has_step("fetch")
        assert state.mode == InteractionMode.DRAGGING_NODE

    def test_clear_selection_for_removed_elements(self, engine):
        """Test that selections of removed elements are dropped."""
        state = ViewState(selection=Selection.step("fetch"))
        assert engine.clear_selection_for(state, step_ids=["fetch"]).selection is None
        assert engine.clear_selection_for(state, connection_ids=["fetch"]).selection.kind == SelectionKind.STEP


class TestReadOnly:
    """Test cases for read-only canvases."""

    def test_selection_and_pan_still_work(self, read_only_engine):
        """Test that viewing is allowed in read-only mode."""
        state = read_only_engine.handle(read_only_engine.initial_state(), PointerDown(x=200, y=0))
        assert state.selection == Selection.step("fetch")
        assert state.mode == InteractionMode.IDLE

        state = read_only_engine.handle(state, PointerDown(x=100, y=300))
        state = read_only_engine.handle(state, PointerMove(x=110, y=300))
        assert state.pan == Point(10.0, 0.0)

    def test_edits_are_ignored(self, graph, read_only_engine):
        """Test that dragging, connecting and deleting do nothing."""
        state = read_only_engine.handle(read_only_engine.initial_state(), DoubleClick(x=0, y=0))
        assert state.mode == InteractionMode.IDLE

        state = ViewState(selection=Selection.step("fetch"))
        read_only_engine.handle(state, KeyDown(key="Delete"))
        assert graph.has_step("fetch")

    def test_new_graph_has_no_hits(self):
        """Test hit-testing an empty graph."""
        engine = CanvasInteractionEngine(GraphModel.new("Empty"))
        assert engine.hit_test_step(Point(0.0, 0.0)) is None
        assert engine.hit_test_connection(Point(0.0, 0.0)) is None


class TestCanvasScenarios:
    """End-to-end gesture sequences."""

    @pytest.mark.parametrize("zoom", [0.5, 1.0, 2.0])
    def test_step_centre_is_hit_at_any_zoom(self, engine, zoom):
        """Test that pressing on a step's centre selects it under pan and zoom."""
        state = ViewState(zoom=zoom, pan=Point(30.0, -10.0))
        screen = world_to_screen(Point(200.0, 0.0), state.pan, zoom)

        state = engine.handle(state, PointerDown(x=screen.x, y=screen.y))
        assert state.selection == Selection.step("fetch")

    def test_connect_then_remove_source(self):
        """Test building two steps, connecting them and deleting the source."""
        graph = GraphModel.new("Scenario")
        engine = CanvasInteractionEngine(graph)
        a = graph.add_step(StepType.TRIGGER, "A", Position(x=100, y=100))
        b = graph.add_step(StepType.ACTION, "B", Position(x=400, y=100))

        state = engine.handle(engine.initial_state(), DoubleClick(x=100, y=100))
        state = engine.handle(state, PointerDown(x=400, y=100))
        assert graph.find_connection_between(a.id, b.id) is not None

        engine.handle(ViewState(selection=Selection.step(a.id)), KeyDown(key="Delete"))

        assert [step.id for step in graph.steps] == [b.id]
        assert graph.connections == []
        assert graph.check_integrity() == []
