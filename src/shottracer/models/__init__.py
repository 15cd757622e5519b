"""Trajectory data model."""

from shottracer.models.trajectory import (
    InvalidRegionError,
    NormalizedPoint,
    NormalizedRect,
    PointSource,
    RegionOfInterest,
    ShotOutcome,
    ShotResult,
    Trajectory,
    TrajectoryPoint,
)

__all__ = [
    "InvalidRegionError",
    "NormalizedPoint",
    "NormalizedRect",
    "PointSource",
    "RegionOfInterest",
    "ShotOutcome",
    "ShotResult",
    "Trajectory",
    "TrajectoryPoint",
]
