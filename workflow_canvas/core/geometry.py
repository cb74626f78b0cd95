"""Canvas geometry: coordinate transforms and hit-testing primitives.

World coordinates are the unscaled canvas space steps are positioned in.
Screen coordinates are pointer positions relative to the canvas element.
The view maps world to screen as ``screen = world * zoom + pan``.
"""

import math
from dataclasses import dataclass
from typing import Tuple

from ..models.core import Position


@dataclass(frozen=True)
class Point:
    """An immutable 2D point or vector."""
    x: float
    y: float

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)

    def scale(self, factor: float) -> "Point":
        return Point(self.x * factor, self.y * factor)

    def dot(self, other: "Point") -> float:
        return self.x * other.x + self.y * other.y

    def length(self) -> float:
        return math.hypot(self.x, self.y)

    def distance_to(self, other: "Point") -> float:
        return (self - other).length()

    @classmethod
    def from_position(cls, position: Position) -> "Point":
        return cls(position.x, position.y)

    def to_position(self) -> Position:
        return Position(x=self.x, y=self.y)


ORIGIN = Point(0.0, 0.0)


def screen_to_world(screen: Point, pan: Point, zoom: float) -> Point:
    """Invert the view transform for a pointer position."""
    return Point((screen.x - pan.x) / zoom, (screen.y - pan.y) / zoom)


def world_to_screen(world: Point, pan: Point, zoom: float) -> Point:
    """Apply the view transform to a canvas position."""
    return Point(world.x * zoom + pan.x, world.y * zoom + pan.y)


def screen_delta_to_world(delta: Point, zoom: float) -> Point:
    """Convert a pointer movement to canvas units (pan does not affect deltas)."""
    return delta.scale(1.0 / zoom)


def point_in_box(point: Point, center: Point, half_width: float, half_height: float) -> bool:
    """Inclusive axis-aligned box test around a centre point."""
    return (
        center.x - half_width <= point.x <= center.x + half_width
        and center.y - half_height <= point.y <= center.y + half_height
    )


def closest_point_on_segment(point: Point, start: Point, end: Point) -> Tuple[Point, float]:
    """
    Project a point onto a segment.

    Args:
        point: Point to project
        start: Segment start
        end: Segment end

    Returns:
        Tuple of the closest point on the segment and the clamped projection
        parameter ``t`` in ``[0, 1]``. A degenerate segment yields ``start``.
    """
    direction = end - start
    length_sq = direction.dot(direction)
    if length_sq == 0:
        return start, 0.0

    t = (point - start).dot(direction) / length_sq
    t = max(0.0, min(1.0, t))
    return start + direction.scale(t), t


def distance_to_segment(point: Point, start: Point, end: Point) -> float:
    """Shortest distance from a point to a segment."""
    closest, _ = closest_point_on_segment(point, start, end)
    return point.distance_to(closest)


def zoom_about(pan: Point, zoom: float, new_zoom: float, anchor: Point) -> Point:
    """
    Compute the pan that keeps ``anchor`` (screen space) fixed while zooming.

    The world point under the anchor before the zoom must map back to the
    same screen position afterwards.
    """
    world_anchor = screen_to_world(anchor, pan, zoom)
    return Point(anchor.x - world_anchor.x * new_zoom, anchor.y - world_anchor.y * new_zoom)
