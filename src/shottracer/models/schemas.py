"""Pydantic schemas for handing trajectories to out-of-process consumers."""

from typing import Optional

from pydantic import BaseModel, Field

from shottracer.core.coordinates import CoordinateContext, display_to_pixels
from shottracer.models.trajectory import ShotResult, Trajectory


class TrajectoryPointSchema(BaseModel):
    """A point in the ball's trajectory (normalized display coordinates)."""
    timestamp: float = Field(..., description="Monotonic capture time in seconds")
    x: float = Field(..., ge=0, le=1, description="X position as fraction of display width (0-1)")
    y: float = Field(..., ge=0, le=1, description="Y position as fraction of display height (0-1), down")
    source: str = Field(..., description="ml_detected, measured or predicted")


class TrajectorySchema(BaseModel):
    """Complete trajectory snapshot for a shot."""
    id: str
    points: list[TrajectoryPointSchema]
    confidence: float = Field(..., ge=0, le=1)
    duration: float = Field(0, ge=0, description="Seconds from first to last point")
    apex: Optional[TrajectoryPointSchema] = None
    has_predicted_points: bool = False

    @classmethod
    def from_trajectory(cls, trajectory: Trajectory) -> "TrajectorySchema":
        points = [_point_schema(p) for p in trajectory.points]
        apex = trajectory.apex()
        return cls(
            id=trajectory.id,
            points=points,
            confidence=trajectory.confidence,
            duration=trajectory.duration,
            apex=_point_schema(apex) if apex is not None else None,
            has_predicted_points=trajectory.measured_fraction() < 1.0,
        )


class ShotResultSchema(BaseModel):
    """Final outcome of one shot."""
    outcome: str = Field(..., description="complete, partial or no_trajectory")
    trajectory: Optional[TrajectorySchema] = None
    reason: Optional[str] = Field(None, description="Why tracking ended early, if it did")

    @classmethod
    def from_result(cls, result: ShotResult) -> "ShotResultSchema":
        trajectory = None
        if result.trajectory is not None:
            trajectory = TrajectorySchema.from_trajectory(result.trajectory)
        return cls(outcome=result.outcome.value, trajectory=trajectory, reason=result.reason)


def _point_schema(point) -> TrajectoryPointSchema:
    position = point.position.clamped()
    return TrajectoryPointSchema(
        timestamp=point.time,
        x=position.x,
        y=position.y,
        source=point.source.value,
    )


def trajectory_to_pixels(
    trajectory: Trajectory,
    width: int,
    height: int,
) -> list[dict]:
    """Convert a display-space trajectory to pixel coordinates for export.

    Args:
        trajectory: Trajectory in normalized display space
        width: Upright output video width in pixels
        height: Upright output video height in pixels

    Returns:
        List of dicts with timestamp, x, y (pixels) and source
    """
    context = CoordinateContext(width, height)
    result = []
    for point in trajectory.points:
        x, y = display_to_pixels(point.position.clamped(), context)
        result.append({
            "timestamp": point.time,
            "x": x,
            "y": y,
            "source": point.source.value,
        })
    return result
