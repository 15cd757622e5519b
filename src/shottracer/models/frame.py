"""Frames, pose samples, ML observations and the services that produce them."""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import numpy as np

from shottracer.core.coordinates import CoordinateContext, Orientation, as_orientation
from shottracer.models.trajectory import NormalizedPoint, RegionOfInterest


@dataclass(frozen=True)
class Frame:
    """One captured video frame.

    Attributes:
        pixels: BGR uint8 image in raw buffer orientation (H x W x 3)
        timestamp: Monotonic capture time in seconds
        orientation: How the buffer is displayed upright
        index: Sequence number assigned by the frame source
    """

    pixels: np.ndarray
    timestamp: float
    orientation: Orientation = Orientation.UP
    index: int = 0

    def __post_init__(self):
        object.__setattr__(self, "orientation", as_orientation(self.orientation))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def context(self) -> CoordinateContext:
        return CoordinateContext(self.width, self.height, self.orientation)


@dataclass(frozen=True)
class Joint:
    """A detected body joint (detector space)."""

    position: NormalizedPoint
    confidence: float


@dataclass(frozen=True)
class PoseObservation:
    """Wrist positions for one frame, as reported by the pose service."""

    timestamp: float
    left_wrist: Joint
    right_wrist: Joint

    def wrists_confident(self, floor: float) -> bool:
        return self.left_wrist.confidence >= floor and self.right_wrist.confidence >= floor

    @property
    def mean_wrist_y(self) -> float:
        return (self.left_wrist.position.y + self.right_wrist.position.y) / 2


@dataclass(frozen=True)
class TrajectoryObservation:
    """Trajectory reported by the ML service (detector space).

    Attributes:
        observation_id: Service-assigned identifier, stable across frames
        confidence: Service confidence (0-1)
        detected_points: Raw detected ball positions, oldest first
        projected_points: Service's fitted curve through the detections
        time_range: (start, end) capture times covered by detected_points
        timestamps: Per-point capture times when the service reports them
    """

    observation_id: str
    confidence: float
    detected_points: Sequence[NormalizedPoint]
    projected_points: Sequence[NormalizedPoint] = ()
    time_range: tuple[float, float] = (0.0, 0.0)
    timestamps: Optional[Sequence[float]] = None

    @property
    def point_times(self) -> list[float]:
        """Capture time of every detected point.

        Evenly interpolated over time_range when the service did not report
        per-point timestamps. A single point takes the end of the range.
        """
        n = len(self.detected_points)
        if self.timestamps is not None and len(self.timestamps) == n:
            return list(self.timestamps)

        start, end = self.time_range
        if n == 1:
            return [end]
        step = (end - start) / (n - 1) if n > 1 else 0.0
        return [start + i * step for i in range(n)]


class TrajectoryObservationService(Protocol):
    """On-device trajectory detector (e.g. a Vision-style request)."""

    def detect(self, frame: Frame, roi: RegionOfInterest) -> Sequence[TrajectoryObservation]:
        """Detect trajectories in one frame.

        Both `roi` and the returned observations are in detector space
        (buffer orientation, origin bottom-left).
        """
        ...


class BodyPoseService(Protocol):
    """On-device body pose detector."""

    def detect(self, frame: Frame) -> Optional[PoseObservation]:
        ...
