"""Trajectory data model.

Immutable, normalized, time-ordered ball positions for one shot. Every point is
documented against one coordinate space: detector space (origin bottom-left,
Y up) or display space (origin top-left, Y down). Trajectories handed to
consumers are always display space.
"""

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


# Slack allowed when validating rects against the unit square
RECT_TOLERANCE = 1e-9


class InvalidRegionError(ValueError):
    """Raised for a malformed region of interest (programming error)."""


@dataclass(frozen=True)
class NormalizedPoint:
    """A 2-D point in normalized (0-1) coordinates.

    Values may transiently fall slightly outside [0, 1] during prediction;
    call clamped() before handing the point to a renderer.
    """

    x: float
    y: float

    def clamped(self) -> "NormalizedPoint":
        return NormalizedPoint(
            x=max(0.0, min(1.0, self.x)),
            y=max(0.0, min(1.0, self.y)),
        )

    def distance_to(self, other: "NormalizedPoint") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def is_inside_unit_square(self, margin: float = 0.0) -> bool:
        return -margin <= self.x <= 1.0 + margin and -margin <= self.y <= 1.0 + margin


@dataclass(frozen=True)
class NormalizedRect:
    """Axis-aligned normalized rectangle.

    (x, y) is the corner with the smallest coordinates: top-left in display
    space, bottom-left in detector space.

    Raises:
        InvalidRegionError: If the rect is empty, non-finite or leaves [0, 1]².
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        values = (self.x, self.y, self.width, self.height)
        if not all(math.isfinite(v) for v in values):
            raise InvalidRegionError(f"Rect has non-finite values: {values}")
        if self.width <= 0 or self.height <= 0:
            raise InvalidRegionError(
                f"Rect must have positive size, got {self.width}x{self.height}"
            )
        if (
            self.x < -RECT_TOLERANCE
            or self.y < -RECT_TOLERANCE
            or self.max_x > 1.0 + RECT_TOLERANCE
            or self.max_y > 1.0 + RECT_TOLERANCE
        ):
            raise InvalidRegionError(f"Rect leaves the unit square: {values}")

    @classmethod
    def full_frame(cls) -> "NormalizedRect":
        return cls(0.0, 0.0, 1.0, 1.0)

    @classmethod
    def from_bounds(
        cls, min_x: float, min_y: float, max_x: float, max_y: float
    ) -> "NormalizedRect":
        return cls(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)

    @classmethod
    def from_center(
        cls,
        center: NormalizedPoint,
        half_width: float,
        half_height: float,
    ) -> "NormalizedRect":
        """Build a rect around a center, clipped to the unit square.

        Raises:
            InvalidRegionError: If nothing of the rect remains after clipping.
        """
        min_x = max(0.0, center.x - half_width)
        min_y = max(0.0, center.y - half_height)
        max_x = min(1.0, center.x + half_width)
        max_y = min(1.0, center.y + half_height)
        return cls.from_bounds(min_x, min_y, max_x, max_y)

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def contains(self, point: NormalizedPoint) -> bool:
        return self.x <= point.x <= self.max_x and self.y <= point.y <= self.max_y

    def clamped(self, point: NormalizedPoint) -> NormalizedPoint:
        """Closest point to `point` inside the rect."""
        return NormalizedPoint(
            x=max(self.x, min(self.max_x, point.x)),
            y=max(self.y, min(self.max_y, point.y)),
        )


# The alignment step hands over one of these per shot
RegionOfInterest = NormalizedRect


class PointSource(Enum):
    """Where a trajectory point came from."""

    ML_DETECTED = "ml_detected"
    MEASURED = "measured"
    PREDICTED = "predicted"

    @property
    def precedence(self) -> int:
        return _SOURCE_PRECEDENCE[self]

    @property
    def is_observed(self) -> bool:
        return self is not PointSource.PREDICTED


_SOURCE_PRECEDENCE = {
    PointSource.ML_DETECTED: 2,
    PointSource.MEASURED: 1,
    PointSource.PREDICTED: 0,
}


@dataclass(frozen=True)
class TrajectoryPoint:
    """A single timestamped ball position."""

    time: float  # Monotonic capture timestamp (seconds)
    position: NormalizedPoint
    source: PointSource

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "x": self.position.x,
            "y": self.position.y,
            "source": self.source.value,
        }


def _new_trajectory_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Trajectory:
    """Immutable snapshot of a shot's trajectory.

    Points are strictly time-ordered. A trajectory with zero points is valid
    and means tracking has not produced anything yet.

    Raises:
        ValueError: If points are not strictly increasing in time or the
            confidence is outside [0, 1].
    """

    points: tuple[TrajectoryPoint, ...] = ()
    confidence: float = 0.0
    id: str = field(default_factory=_new_trajectory_id)

    def __post_init__(self):
        # Accept any iterable but store a tuple so snapshots stay immutable
        object.__setattr__(self, "points", tuple(self.points))

        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")

        for prev, curr in zip(self.points, self.points[1:]):
            if curr.time <= prev.time:
                raise ValueError(
                    f"Trajectory points must be strictly time-ordered "
                    f"({prev.time:.6f} >= {curr.time:.6f})"
                )

    @classmethod
    def empty(cls, trajectory_id: Optional[str] = None) -> "Trajectory":
        if trajectory_id is None:
            return cls()
        return cls(id=trajectory_id)

    @classmethod
    def from_points(
        cls,
        points: Iterable[TrajectoryPoint],
        trajectory_id: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> "Trajectory":
        """Build a trajectory from unordered points.

        Duplicate timestamps keep the point with the highest source precedence.
        If confidence is None it is derived from the observed fraction.
        """
        by_time: dict[float, TrajectoryPoint] = {}
        for point in points:
            existing = by_time.get(point.time)
            if existing is None or point.source.precedence > existing.source.precedence:
                by_time[point.time] = point

        ordered = tuple(by_time[t] for t in sorted(by_time))
        if confidence is None:
            confidence = observed_fraction(ordered)

        kwargs = {"points": ordered, "confidence": confidence}
        if trajectory_id is not None:
            kwargs["id"] = trajectory_id
        return cls(**kwargs)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def start_time(self) -> Optional[float]:
        return self.points[0].time if self.points else None

    @property
    def end_time(self) -> Optional[float]:
        return self.points[-1].time if self.points else None

    @property
    def duration(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return self.points[-1].time - self.points[0].time

    def apex(self) -> Optional[TrajectoryPoint]:
        """Highest point on screen (lowest display-space y)."""
        if not self.points:
            return None
        return min(self.points, key=lambda p: p.position.y)

    def source_counts(self) -> dict[PointSource, int]:
        counts = {source: 0 for source in PointSource}
        for point in self.points:
            counts[point.source] += 1
        return counts

    def measured_fraction(self) -> float:
        return observed_fraction(self.points)

    def smoothed(self) -> "Trajectory":
        """1-2-1 smoothing for rendering; endpoints, times and sources unchanged."""
        if len(self.points) < 3:
            return self

        smoothed = [self.points[0]]
        for prev, curr, nxt in zip(self.points, self.points[1:], self.points[2:]):
            x = (prev.position.x + 2 * curr.position.x + nxt.position.x) / 4
            y = (prev.position.y + 2 * curr.position.y + nxt.position.y) / 4
            smoothed.append(
                TrajectoryPoint(time=curr.time, position=NormalizedPoint(x, y), source=curr.source)
            )
        smoothed.append(self.points[-1])

        return Trajectory(points=tuple(smoothed), confidence=self.confidence, id=self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "confidence": self.confidence,
            "points": [p.to_dict() for p in self.points],
        }


def observed_fraction(points: Iterable[TrajectoryPoint]) -> float:
    """Fraction of points backed by a real observation (ML or pixel measurement)."""
    points = list(points)
    if not points:
        return 0.0
    observed = sum(1 for p in points if p.source.is_observed)
    return observed / len(points)


class ShotOutcome(Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"  # Ended before the minimum trajectory duration
    NO_TRAJECTORY = "no_trajectory"


@dataclass(frozen=True)
class ShotResult:
    """Final result for one shot, delivered once to the export consumer."""

    outcome: ShotOutcome
    trajectory: Optional[Trajectory] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "trajectory": self.trajectory.to_dict() if self.trajectory is not None else None,
            "reason": self.reason,
        }
