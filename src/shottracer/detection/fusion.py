"""Fusion of ML-detected and tracker-produced trajectory points.

Keeps at most one point per recorded frame. ML-detected points always win
over tracker points for the same frame; between tracker points a measured
position wins over a predicted one. ML points are matched to the nearest
recorded frame time and dropped when no frame is close enough.

When the ML path stays silent for too long the fusion switches to
tracker-only mode for the rest of the shot.
"""

import bisect
from enum import Enum
from typing import Iterable, Optional

from loguru import logger

from shottracer.core.config import Settings
from shottracer.models.trajectory import Trajectory, TrajectoryPoint


class FusionMode(Enum):
    FUSED = "fused"
    TRACKER_ONLY = "tracker_only"


class TrajectoryFusion:
    """Merges per-frame ML and tracker output into trajectory snapshots."""

    def __init__(
        self,
        fps: float = 240.0,
        ml_degraded_after_frames: int = 12,
        min_duration: float = 0.5,
        idle_frames_to_complete: int = 10,
        trajectory_id: Optional[str] = None,
    ):
        """Initialize fusion for one shot.

        Args:
            fps: Nominal frame rate, sets the matching tolerance for ML points
            ml_degraded_after_frames: Consecutive frames without ML points
                before switching to tracker-only mode
            min_duration: Minimum trajectory duration before the shot can finish
            idle_frames_to_complete: Consecutive frames without any new point
                that finish the shot once min_duration is reached
            trajectory_id: Id stamped on every snapshot
        """
        self.frame_period = 1.0 / fps
        self.ml_degraded_after_frames = ml_degraded_after_frames
        self.min_duration = min_duration
        self.idle_frames_to_complete = idle_frames_to_complete
        self.trajectory_id = trajectory_id or Trajectory.empty().id

        self.mode = FusionMode.FUSED
        self.mode_changed_at: Optional[float] = None
        self.gaps: list[float] = []

        self._frame_times: list[float] = []
        self._points: dict[float, TrajectoryPoint] = {}
        self._ml_missed_frames = 0
        self._idle_frames = 0

    @classmethod
    def from_settings(cls, settings: Settings, trajectory_id: Optional[str] = None) -> "TrajectoryFusion":
        return cls(
            fps=settings.fps,
            ml_degraded_after_frames=settings.ml_degraded_after_frames,
            min_duration=settings.min_trajectory_duration,
            idle_frames_to_complete=settings.idle_frames_to_complete,
            trajectory_id=trajectory_id,
        )

    @property
    def ml_degraded(self) -> bool:
        return self.mode is FusionMode.TRACKER_ONLY

    def add_seed(self, point: TrajectoryPoint) -> Trajectory:
        """Record the tracker's seed point as the first frame of the shot."""
        self._record_frame(point.time)
        self._put(point)
        return self.snapshot()

    def merge_frame(
        self,
        timestamp: float,
        ml_points: Iterable[TrajectoryPoint] = (),
        tracker_point: Optional[TrajectoryPoint] = None,
    ) -> Trajectory:
        """Merge one frame's outputs.

        Args:
            timestamp: Capture time of the frame
            ml_points: ML-detected points delivered on this frame; may
                include earlier frames' positions
            tracker_point: Predictive tracker output for this frame

        Returns:
            Immutable trajectory snapshot
        """
        self._record_frame(timestamp)
        placed = 0

        if tracker_point is not None:
            self._put(TrajectoryPoint(timestamp, tracker_point.position, tracker_point.source))
            placed += 1

        ml_points = list(ml_points)
        if self.mode is FusionMode.FUSED:
            if ml_points:
                self._ml_missed_frames = 0
                placed += self._merge_ml(ml_points)
            else:
                self._ml_missed_frames += 1
                if self._ml_missed_frames > self.ml_degraded_after_frames:
                    self._degrade(timestamp)

        if placed:
            self._idle_frames = 0
        else:
            self._idle_frames += 1

        if timestamp not in self._points:
            self.gaps.append(timestamp)
            logger.debug(f"Detection gap at t={timestamp:.3f}s")

        return self.snapshot()

    def merge_late_ml(self, timestamp: float, ml_points: Iterable[TrajectoryPoint]) -> Trajectory:
        """Merge ML points that arrived after the frame at `timestamp`.

        The late result counts as ML activity but does not add a frame.
        """
        ml_points = list(ml_points)
        if self.mode is FusionMode.FUSED and ml_points:
            self._ml_missed_frames = 0
            self._merge_ml(ml_points)
            logger.debug(f"Merged {len(ml_points)} late ML points for t={timestamp:.3f}s")
        return self.snapshot()

    def snapshot(self) -> Trajectory:
        return Trajectory.from_points(self._points.values(), trajectory_id=self.trajectory_id)

    def is_finished(self, tracker_active: bool) -> bool:
        """Whether the shot has produced everything it is going to."""
        points = sorted(self._points)
        duration = points[-1] - points[0] if len(points) > 1 else 0.0

        if duration >= self.min_duration and self._idle_frames >= self.idle_frames_to_complete:
            return True
        return not tracker_active and self.ml_degraded

    def _merge_ml(self, ml_points: list[TrajectoryPoint]) -> int:
        tolerance = self.frame_period / 2
        placed = 0
        for point in ml_points:
            frame_time = self._nearest_frame(point.time, tolerance)
            if frame_time is None:
                logger.debug(f"Dropped ML point at t={point.time:.3f}s: no matching frame")
                continue
            self._put(TrajectoryPoint(frame_time, point.position, point.source))
            placed += 1
        return placed

    def _nearest_frame(self, time: float, tolerance: float) -> Optional[float]:
        i = bisect.bisect_left(self._frame_times, time)
        nearest = None
        for j in (i - 1, i):
            if 0 <= j < len(self._frame_times):
                candidate = self._frame_times[j]
                if abs(candidate - time) <= tolerance and (
                    nearest is None or abs(candidate - time) < abs(nearest - time)
                ):
                    nearest = candidate
        return nearest

    def _record_frame(self, timestamp: float) -> None:
        if self._frame_times and timestamp <= self._frame_times[-1]:
            if timestamp == self._frame_times[-1]:
                return
            raise ValueError(
                f"Frame at {timestamp:.6f}s is not after {self._frame_times[-1]:.6f}s"
            )
        self._frame_times.append(timestamp)

    def _put(self, point: TrajectoryPoint) -> None:
        existing = self._points.get(point.time)
        if existing is None or point.source.precedence >= existing.source.precedence:
            self._points[point.time] = point

    def _degrade(self, timestamp: float) -> None:
        self.mode = FusionMode.TRACKER_ONLY
        self.mode_changed_at = timestamp
        logger.warning(
            f"No ML trajectory for {self._ml_missed_frames} frames, "
            f"continuing tracker-only from t={timestamp:.3f}s"
        )
