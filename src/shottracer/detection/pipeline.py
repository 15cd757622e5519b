"""Per-frame shot tracking pipeline.

Drives one shot from the locked ball position to a finished trajectory:

    pose -> impact state machine
    impact -> predictive tracker seeded with the locked ball
    every following frame -> ML adapter + predictive tracker -> fusion
    fusion snapshot -> on_update, finished shot -> on_finish (once)

Frames are processed synchronously in capture order. Only ML requests may run
on an executor; their results are merged back by original frame timestamp
and replayed into the tracker as late measurements.
"""

from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from shottracer.core.config import Settings, settings as default_settings
from shottracer.detection.fusion import TrajectoryFusion
from shottracer.detection.impact import ImpactStateMachine, Impact, Lost, Tracking
from shottracer.detection.ml_adapter import MLFrameResult, MLTrajectoryAdapter
from shottracer.detection.predictive_tracker import PredictiveTracker
from shottracer.models.frame import BodyPoseService, Frame, PoseObservation, TrajectoryObservationService
from shottracer.models.trajectory import (
    NormalizedPoint,
    PointSource,
    RegionOfInterest,
    ShotOutcome,
    ShotResult,
    Trajectory,
)


@dataclass
class ShotStats:
    """Frame and detection counters for one shot."""

    frames: int = 0
    dropped_frames: int = 0
    tracked_frames: int = 0
    ml_frames: int = 0
    service_errors: int = 0
    gaps: list[float] = field(default_factory=list)


class ShotTrackingPipeline:
    """Tracks the ball for one shot at a time."""

    def __init__(
        self,
        ml_service: TrajectoryObservationService,
        pose_service: BodyPoseService,
        settings: Optional[Settings] = None,
        on_update: Optional[Callable[[Trajectory], None]] = None,
        on_finish: Optional[Callable[[ShotResult], None]] = None,
        executor: Optional[Executor] = None,
    ):
        """Initialize the pipeline.

        Args:
            ml_service: On-device trajectory detector
            pose_service: On-device body pose detector
            settings: Engine settings, module defaults if None
            on_update: Called with every incremental trajectory snapshot
            on_finish: Called once per shot with the final result
            executor: Runs ML requests asynchronously when set
        """
        self.settings = settings or default_settings
        self.pose_service = pose_service
        self.on_update = on_update
        self.on_finish = on_finish

        self.ml_adapter = MLTrajectoryAdapter.from_settings(ml_service, self.settings, executor=executor)
        self.machine = ImpactStateMachine.from_settings(self.settings)

        self.tracker: Optional[PredictiveTracker] = None
        self.fusion: Optional[TrajectoryFusion] = None
        self.result: Optional[ShotResult] = None
        self.stats = ShotStats()

        self._roi: Optional[RegionOfInterest] = None
        self._last_timestamp: Optional[float] = None

    @property
    def is_async(self) -> bool:
        return self.ml_adapter.executor is not None

    def start_shot(
        self,
        ball_position: NormalizedPoint,
        roi: Optional[RegionOfInterest] = None,
    ) -> None:
        """Arm the pipeline for a new shot.

        Args:
            ball_position: Locked ball position from alignment (display space)
            roi: Region of interest for the ML detector (display space),
                the whole frame if None
        """
        if roi is None:
            roi = RegionOfInterest.full_frame()
        if not isinstance(roi, RegionOfInterest):
            raise TypeError(f"roi must be a RegionOfInterest, got {type(roi).__name__}")

        self.ml_adapter.cancel()
        self.machine.arm(ball_position)
        self.tracker = PredictiveTracker.from_settings(self.settings)
        self.fusion = None
        self.result = None
        self.stats = ShotStats()
        self._roi = roi
        self._last_timestamp = None

        logger.info(
            f"Shot armed: ball at ({ball_position.x:.3f}, {ball_position.y:.3f}), "
            f"ROI {roi.width:.2f}x{roi.height:.2f} at ({roi.x:.2f}, {roi.y:.2f})"
        )

    def process_frame(self, frame: Frame) -> Optional[Trajectory]:
        """Process one captured frame.

        Returns:
            The trajectory snapshot after this frame, or None before impact,
            after the shot finished, or when the frame was dropped

        Raises:
            RuntimeError: If start_shot() has not been called
        """
        if self._roi is None:
            raise RuntimeError("Call start_shot() before process_frame()")

        if self.result is not None:
            return None

        if self._last_timestamp is not None and frame.timestamp <= self._last_timestamp:
            self.stats.dropped_frames += 1
            logger.warning(
                f"Dropped out-of-order frame {frame.index} at t={frame.timestamp:.6f}s "
                f"(last {self._last_timestamp:.6f}s)"
            )
            return None
        self._last_timestamp = frame.timestamp
        self.stats.frames += 1

        state = self.machine.state
        if not isinstance(state, Tracking):
            state = self.machine.process_pose(self._detect_pose(frame), frame.timestamp)

            if isinstance(state, Lost):
                self._publish_result(ShotResult(ShotOutcome.NO_TRAJECTORY, reason=state.reason))
                return None
            if not isinstance(state, Impact):
                return None
            self._begin_tracking(state)

        return self._track(frame)

    def stop(self) -> Optional[ShotResult]:
        """End the current shot immediately.

        Finished ML requests are merged, running ones are cancelled, and
        the final result is published exactly once.

        Returns:
            The shot result, None if no shot was started
        """
        if self._roi is None:
            return None
        if self.result is not None:
            return self.result

        trajectory = self._merge_finished_ml()
        state = self.machine.flush(trajectory)

        if isinstance(state, Lost):
            self._publish_result(ShotResult(ShotOutcome.NO_TRAJECTORY, reason=state.reason))
        else:
            self._finish_with(trajectory)
        return self.result

    def _detect_pose(self, frame: Frame) -> Optional[PoseObservation]:
        try:
            return self.pose_service.detect(frame)
        except Exception as e:
            self.stats.service_errors += 1
            logger.warning(f"Pose detection failed at t={frame.timestamp:.3f}s: {e}")
            return None

    def _begin_tracking(self, impact: Impact) -> None:
        self.fusion = TrajectoryFusion.from_settings(self.settings)
        seed = self.tracker.seed(impact.locked_position, impact.timestamp)
        self.fusion.add_seed(seed)
        self.machine.begin_tracking(self.tracker)

    def _track(self, frame: Frame) -> Trajectory:
        tolerance = self.fusion.frame_period / 2
        ml_points = []
        ml_measurement = None
        for ml_result in self._run_ml(frame):
            if ml_result.is_empty:
                continue
            self.stats.ml_frames += 1
            ml_points.extend(ml_result.points)

            match = ml_result.point_at(ml_result.timestamp, tolerance)
            if match is None:
                continue
            if ml_result.timestamp == frame.timestamp:
                ml_measurement = match.position
            else:
                # Result for an earlier frame: correct the tracker retroactively
                self.tracker.apply_late_measurement(ml_result.timestamp, match.position, tolerance)

        tracker_point = None
        if frame.timestamp > self.machine.state.impact_time:
            step = self.tracker.step(frame, ml_measurement=ml_measurement)
            tracker_point = step.point
            self.stats.tracked_frames += 1

        snapshot = self.fusion.merge_frame(frame.timestamp, ml_points, tracker_point)
        self._publish_update(snapshot)

        if self.fusion.is_finished(self.tracker.is_active):
            snapshot = self._merge_finished_ml()
            self.machine.complete(snapshot)
            self._finish_with(snapshot)

        return snapshot

    def _merge_finished_ml(self) -> Optional[Trajectory]:
        """Merge completed ML requests into fusion and cancel the rest."""
        for ml_result in self.ml_adapter.drain():
            if not ml_result.is_empty and self.fusion is not None:
                self.stats.ml_frames += 1
                self.fusion.merge_late_ml(ml_result.timestamp, ml_result.points)
        return self.fusion.snapshot() if self.fusion is not None else None

    def _run_ml(self, frame: Frame) -> list[MLFrameResult]:
        window = self.tracker.search_window
        if not self.is_async:
            return [self.ml_adapter.process(frame, self._roi, window)]

        results = self.ml_adapter.collect()
        self.ml_adapter.submit(frame, self._roi, window)
        return results

    def _finish_with(self, trajectory: Optional[Trajectory]) -> None:
        if trajectory is None or trajectory.is_empty:
            self._publish_result(ShotResult(ShotOutcome.NO_TRAJECTORY, reason="no trajectory detected"))
            return

        if trajectory.duration >= self.settings.min_trajectory_duration:
            outcome = ShotOutcome.COMPLETE
            reason = None
        else:
            outcome = ShotOutcome.PARTIAL
            reason = self.tracker.lost_reason if self.tracker is not None else None
        self._publish_result(ShotResult(outcome, trajectory=trajectory, reason=reason))

    def _publish_update(self, trajectory: Trajectory) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(trajectory)
        except Exception as e:
            logger.warning(f"Trajectory update consumer error: {e}")

    def _publish_result(self, result: ShotResult) -> None:
        if self.result is not None:
            return
        self.result = result
        self.ml_adapter.cancel()
        if self.fusion is not None:
            self.stats.gaps = list(self.fusion.gaps)
        self._log_summary(result)
        if self.tracker is not None:
            self.tracker.reset()

        if self.on_finish is None:
            return
        try:
            self.on_finish(result)
        except Exception as e:
            logger.warning(f"Shot result consumer error: {e}")

    def _log_summary(self, result: ShotResult) -> None:
        trajectory = result.trajectory
        if trajectory is None:
            logger.info(
                f"Shot finished: {result.outcome.value} ({result.reason}), "
                f"{self.stats.frames} frames, {self.stats.dropped_frames} dropped"
            )
            return

        counts = trajectory.source_counts()
        logger.info(
            f"Shot finished: {result.outcome.value}, {len(trajectory)} points over "
            f"{trajectory.duration:.2f}s (ml={counts[PointSource.ML_DETECTED]}, "
            f"measured={counts[PointSource.MEASURED]}, predicted={counts[PointSource.PREDICTED]}), "
            f"confidence {trajectory.confidence:.2f}, {len(self.stats.gaps)} gaps, "
            f"{self.stats.frames} frames, {self.stats.dropped_frames} dropped"
        )
