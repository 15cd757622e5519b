"""Predictive ball tracker.

Seeded with the locked ball position at impact, the tracker predicts where the
ball should be on each new frame, searches a small window around the
prediction for a bright round blob, and corrects the Kalman filter with the
best candidate. Frames without a usable measurement emit the prediction
itself, flagged as PREDICTED, until too many consecutive misses or a diverging
filter mark the track as lost.

All positions are display space (origin top-left, Y down).
"""

import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from shottracer.core.config import Settings
from shottracer.core.coordinates import display_rect_to_pixels, pixels_to_display
from shottracer.detection.blob_detector import BlobDetector
from shottracer.detection.detection_scorer import DetectionCandidate, DetectionScorer
from shottracer.detection.kalman_tracker import BallKalmanFilter, KalmanState
from shottracer.models.frame import Frame
from shottracer.models.trajectory import (
    NormalizedPoint,
    NormalizedRect,
    PointSource,
    TrajectoryPoint,
)


class TrackerStatus(Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    LOST = "lost"


@dataclass
class TrackerStep:
    """Outcome of one tracked frame.

    Attributes:
        point: Emitted point, None when nothing trustworthy was produced
        status: Tracker status after the frame
        window: Search window used for this frame
        candidates: Number of blob candidates found in the window
    """
    point: Optional[TrajectoryPoint]
    status: TrackerStatus
    window: Optional[NormalizedRect] = None
    candidates: int = 0


@dataclass
class _FrameRecord:
    """One tracked frame, kept so a late measurement can be replayed."""
    timestamp: float
    dt_frames: float
    prior: tuple  # Committed filter snapshot before this frame
    measurement: Optional[NormalizedPoint]
    confidence: float
    position: NormalizedPoint


def launch_velocity(angle_deg: float, speed_per_s: float, fps: float) -> tuple[float, float]:
    """Initial display-space velocity per frame for a launch toward +x."""
    angle = math.radians(angle_deg)
    speed = speed_per_s / fps
    return (speed * math.cos(angle), -speed * math.sin(angle))


class PredictiveTracker:
    """Kalman-guided blob tracker for one shot."""

    def __init__(
        self,
        fps: float = 240.0,
        gravity_per_s2: float = 0.15,
        launch_angle_deg: float = 60.0,
        launch_speed_per_s: float = 1.2,
        search_sigma: float = 3.0,
        min_search_half_size: float = 0.04,
        max_missed_frames: int = 10,
        max_out_of_frame_frames: int = 5,
        max_position_variance: float = 0.25,
        process_noise_position: float = 1e-6,
        process_noise_velocity: float = 1e-6,
        measurement_noise: float = 2.5e-5,
        initial_position_std: float = 0.01,
        initial_velocity_std: float = 0.01,
        miss_covariance_growth: float = 1.2,
        history_frames: int = 32,
        blob_detector: Optional[BlobDetector] = None,
        scorer: Optional[DetectionScorer] = None,
    ):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        if history_frames <= max(max_missed_frames, max_out_of_frame_frames):
            raise ValueError(
                f"history_frames ({history_frames}) must exceed the miss and off-frame limits"
            )

        self.fps = fps
        self.launch_angle_deg = launch_angle_deg
        self.launch_speed_per_s = launch_speed_per_s
        self.search_sigma = search_sigma
        self.min_search_half_size = min_search_half_size
        self.max_missed_frames = max_missed_frames
        self.max_out_of_frame_frames = max_out_of_frame_frames
        self.max_position_variance = max_position_variance
        self.initial_position_std = initial_position_std
        self.initial_velocity_std = initial_velocity_std
        self.miss_covariance_growth = miss_covariance_growth
        self._history: deque[_FrameRecord] = deque(maxlen=history_frames)

        self.blob_detector = blob_detector or BlobDetector()
        self.scorer = scorer or DetectionScorer()

        self._kalman = BallKalmanFilter(
            gravity_per_frame2=gravity_per_s2 / (fps * fps),
            position_noise=process_noise_position,
            velocity_noise=process_noise_velocity,
            measurement_noise=measurement_noise,
        )

        self.status = TrackerStatus.IDLE
        self.lost_reason: Optional[str] = None
        self._last_time: Optional[float] = None
        self._search_window: Optional[NormalizedRect] = None
        self._missed_frames = 0
        self._out_of_frame_frames = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PredictiveTracker":
        return cls(
            fps=settings.fps,
            gravity_per_s2=settings.gravity_per_s2,
            launch_angle_deg=settings.launch_angle_deg,
            launch_speed_per_s=settings.launch_speed_per_s,
            search_sigma=settings.search_sigma,
            min_search_half_size=settings.min_search_half_size,
            max_missed_frames=settings.max_missed_frames,
            max_out_of_frame_frames=settings.max_out_of_frame_frames,
            max_position_variance=settings.max_position_variance,
            process_noise_position=settings.process_noise_position,
            process_noise_velocity=settings.process_noise_velocity,
            measurement_noise=settings.measurement_noise,
            initial_position_std=settings.initial_position_std,
            initial_velocity_std=settings.initial_velocity_std,
            miss_covariance_growth=settings.miss_covariance_growth,
            history_frames=settings.late_measurement_history_frames,
            blob_detector=BlobDetector(
                min_brightness=settings.blob_min_brightness,
                max_saturation=settings.blob_max_saturation,
                min_pixels=settings.blob_min_pixels,
                max_pixels=settings.blob_max_pixels,
                min_circularity=settings.blob_min_circularity,
            ),
            scorer=DetectionScorer(min_confidence=settings.candidate_min_score),
        )

    @property
    def is_active(self) -> bool:
        return self.status is TrackerStatus.TRACKING

    @property
    def search_window(self) -> Optional[NormalizedRect]:
        """Window searched on the most recent frame (display space)."""
        return self._search_window

    @property
    def missed_frames(self) -> int:
        return self._missed_frames

    @property
    def state(self) -> Optional[KalmanState]:
        return self._kalman.get_state()

    def seed(
        self,
        position: NormalizedPoint,
        timestamp: float,
        velocity: Optional[tuple[float, float]] = None,
    ) -> TrajectoryPoint:
        """Start tracking from the locked ball position.

        Args:
            position: Ball position at impact (display space)
            timestamp: Impact frame time
            velocity: Initial (vx, vy) per frame; derived from the launch
                angle and speed if None

        Returns:
            The seed itself as the first MEASURED trajectory point
        """
        if velocity is None:
            velocity = launch_velocity(self.launch_angle_deg, self.launch_speed_per_s, self.fps)

        self._kalman.initialize(
            x=position.x,
            y=position.y,
            vx=velocity[0],
            vy=velocity[1],
            position_std=self.initial_position_std,
            velocity_std=self.initial_velocity_std,
        )

        self.status = TrackerStatus.TRACKING
        self.lost_reason = None
        self._last_time = timestamp
        self._missed_frames = 0
        self._out_of_frame_frames = 0
        self._search_window = None
        self._history.clear()

        logger.info(
            f"Tracker seeded at ({position.x:.3f}, {position.y:.3f}) t={timestamp:.3f}s, "
            f"v=({velocity[0]:.4f}, {velocity[1]:.4f})/frame"
        )
        return TrajectoryPoint(time=timestamp, position=position, source=PointSource.MEASURED)

    def step(
        self,
        frame: Frame,
        ml_measurement: Optional[NormalizedPoint] = None,
    ) -> TrackerStep:
        """Track the ball into a new frame.

        Args:
            frame: Frame to search
            ml_measurement: ML-detected ball position for this frame, used as
                the measurement when no blob is accepted

        Returns:
            TrackerStep with the emitted point (if any) and new status

        Raises:
            ValueError: If the frame is not newer than the previous one
        """
        if self.status is not TrackerStatus.TRACKING:
            return TrackerStep(point=None, status=self.status)

        if frame.timestamp <= self._last_time:
            raise ValueError(
                f"Frame at {frame.timestamp:.6f}s is not after {self._last_time:.6f}s"
            )

        dt_frames = (frame.timestamp - self._last_time) * self.fps
        self._last_time = frame.timestamp

        prior = self._kalman.snapshot()
        prediction = self._kalman.predict(dt_frames)
        window = self._kalman.get_search_window(self.search_sigma, self.min_search_half_size)
        self._search_window = window

        best, num_candidates = None, 0
        if window is not None:
            candidates = self._find_candidates(frame, window)
            num_candidates = len(candidates)
            scored = self.scorer.score_candidates(
                candidates,
                predicted=prediction.position,
                prediction_uncertainty=max(window.width, window.height) / 2,
            )
            best = self.scorer.select_best(scored)
            if best is not None and not self._kalman.is_measurement_plausible(
                best.position.x, best.position.y, self.search_sigma
            ):
                logger.debug(
                    f"Rejected blob at ({best.position.x:.3f}, {best.position.y:.3f}): "
                    f"too far from prediction"
                )
                best = None

        if best is not None:
            measurement, confidence = best.position, best.confidence
        else:
            measurement, confidence = ml_measurement, 1.0

        state = self._commit(measurement, confidence)
        self._history.append(_FrameRecord(
            timestamp=frame.timestamp,
            dt_frames=dt_frames,
            prior=prior,
            measurement=measurement,
            confidence=confidence,
            position=state.position,
        ))
        self._recount()

        lost_reason = self._check_lost(state)
        if lost_reason is not None:
            self._mark_lost(lost_reason)
            return TrackerStep(point=None, status=self.status, window=window, candidates=num_candidates)

        source = PointSource.MEASURED if measurement is not None else PointSource.PREDICTED
        position = state.position
        point = None
        if source is PointSource.MEASURED or position.is_inside_unit_square():
            point = TrajectoryPoint(time=frame.timestamp, position=position.clamped(), source=source)
        else:
            logger.debug(f"Predicted position off-frame at t={frame.timestamp:.3f}s")

        return TrackerStep(point=point, status=self.status, window=window, candidates=num_candidates)

    def apply_late_measurement(
        self,
        timestamp: float,
        position: NormalizedPoint,
        tolerance: float,
    ) -> bool:
        """Correct an already tracked frame with a measurement that arrived late.

        The filter is rolled back to that frame, corrected, and every later
        frame is replayed with the measurements it originally had. Points
        already emitted are not changed; the corrected state only affects
        frames still to come.

        Args:
            timestamp: Capture time of the frame the measurement belongs to
            position: Measured ball position (display space)
            tolerance: Maximum distance in seconds to a tracked frame time

        Returns:
            True if the measurement was applied
        """
        if self.status is not TrackerStatus.TRACKING:
            return False

        index = None
        for i, record in enumerate(self._history):
            delta = abs(record.timestamp - timestamp)
            if delta <= tolerance and (index is None or delta < abs(self._history[index].timestamp - timestamp)):
                index = i
        if index is None:
            logger.debug(f"Late measurement for t={timestamp:.3f}s has no tracked frame")
            return False

        target = self._history[index]
        if target.measurement is not None:
            return False

        target.measurement = position
        target.confidence = 1.0
        self._kalman.restore(target.prior)
        for i in range(index, len(self._history)):
            record = self._history[i]
            record.prior = self._kalman.snapshot()
            self._kalman.predict(record.dt_frames)
            record.position = self._commit(record.measurement, record.confidence).position
        self._recount()

        logger.debug(
            f"Applied late measurement for t={timestamp:.3f}s, "
            f"replayed {len(self._history) - index} frames"
        )
        return True

    def _commit(self, measurement: Optional[NormalizedPoint], confidence: float) -> KalmanState:
        if measurement is not None:
            return self._kalman.update(measurement.x, measurement.y, measurement_confidence=confidence)
        return self._kalman.update_no_measurement(self.miss_covariance_growth)

    def _recount(self) -> None:
        # Consecutive misses and off-frame positions, counted back from the newest frame
        self._missed_frames = 0
        for record in reversed(self._history):
            if record.measurement is not None:
                break
            self._missed_frames += 1

        self._out_of_frame_frames = 0
        for record in reversed(self._history):
            if record.position.is_inside_unit_square():
                break
            self._out_of_frame_frames += 1

    def _find_candidates(self, frame: Frame, window: NormalizedRect) -> list[DetectionCandidate]:
        context = frame.context
        pixel_window = display_rect_to_pixels(window, context)

        candidates = []
        for blob in self.blob_detector.detect(frame.pixels, pixel_window):
            position = pixels_to_display(blob.x, blob.y, context)
            if not window.contains(position):
                continue
            candidates.append(DetectionCandidate(
                position=position,
                brightness=blob.brightness,
                circularity=blob.circularity,
                pixel_count=blob.pixel_count,
            ))
        return candidates

    def _check_lost(self, state: KalmanState) -> Optional[str]:
        if self._missed_frames > self.max_missed_frames:
            return f"no measurement for {self._missed_frames} frames"
        if state.position_variance > self.max_position_variance:
            return f"position variance {state.position_variance:.3f} diverged"
        if self._out_of_frame_frames > self.max_out_of_frame_frames:
            return f"outside the frame for {self._out_of_frame_frames} frames"
        return None

    def _mark_lost(self, reason: str) -> None:
        self.status = TrackerStatus.LOST
        self.lost_reason = reason
        logger.warning(f"Tracker lost: {reason}")

    def reset(self) -> None:
        """Drop all tracking state."""
        self._kalman.reset()
        self.status = TrackerStatus.IDLE
        self.lost_reason = None
        self._last_time = None
        self._search_window = None
        self._missed_frames = 0
        self._out_of_frame_frames = 0
        self._history.clear()
