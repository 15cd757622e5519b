"""Adapter around the on-device ML trajectory detector.

Each frame is offered to a TrajectoryObservationService. The adapter picks the
most plausible observation, converts its points from detector space to display
space and returns them as ML_DETECTED trajectory points. Service failures are
logged and treated as "no detection" for that frame.

In asynchronous mode requests run on an Executor; finished results are
collected in submission order and stay keyed by the timestamp of the frame
that produced them, however late they arrive.
"""

from collections import deque
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger

from shottracer.core.config import Settings
from shottracer.core.coordinates import rect_to_detector_space, to_display
from shottracer.models.frame import Frame, TrajectoryObservation, TrajectoryObservationService
from shottracer.models.trajectory import (
    NormalizedPoint,
    NormalizedRect,
    PointSource,
    RegionOfInterest,
    TrajectoryPoint,
)


# Minimum accepted observation confidence
MIN_CONFIDENCE = 0.3
MIN_POINTS = 1

# Ranking weights
WEIGHT_CONFIDENCE = 0.5
WEIGHT_IN_WINDOW = 0.3
WEIGHT_ARC = 0.2

# Display-space Y movement below this counts as no vertical movement
VERTICAL_EPSILON = 1e-4


@dataclass
class MLFrameResult:
    """ML output for one frame.

    Attributes:
        timestamp: Capture time of the frame the request was made for
        points: Selected observation's points, display space, oldest first
        observation_id: Id of the selected observation
        confidence: Confidence of the selected observation
        rejected: Number of observations that failed validation
    """
    timestamp: float
    points: list[TrajectoryPoint] = field(default_factory=list)
    observation_id: Optional[str] = None
    confidence: float = 0.0
    rejected: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def latest(self) -> Optional[TrajectoryPoint]:
        return self.points[-1] if self.points else None

    def point_at(self, timestamp: float, tolerance: float) -> Optional[TrajectoryPoint]:
        """Point closest to timestamp, if one lies within tolerance."""
        best = None
        for point in self.points:
            delta = abs(point.time - timestamp)
            if delta <= tolerance and (best is None or delta < abs(best.time - timestamp)):
                best = point
        return best


def arc_score(points: Sequence[NormalizedPoint]) -> float:
    """Score how much a display-space point sequence looks like a ball flight.

    Rising then falling scores highest, still rising almost as high, a flat
    track is neutral. Pure descent from the first sample scores 0.
    """
    if len(points) < 2:
        return 0.5

    ys = [p.y for p in points]
    apex_index = min(range(len(ys)), key=lambda i: ys[i])
    rose = ys[0] - ys[apex_index] > VERTICAL_EPSILON
    fell = ys[-1] - ys[apex_index] > VERTICAL_EPSILON

    if rose and fell:
        return 1.0
    if rose:
        return 0.9
    if is_pure_descent(points):
        return 0.0
    return 0.5


def is_pure_descent(points: Sequence[NormalizedPoint]) -> bool:
    """True if the track only ever moves down the screen from its first sample.

    A track that rises first and then falls is not a pure descent.
    """
    if len(points) < 2:
        return False
    first_y = points[0].y
    return all(p.y > first_y + VERTICAL_EPSILON for p in points[1:])


class MLTrajectoryAdapter:
    """Selects and converts ML trajectory observations."""

    def __init__(
        self,
        service: TrajectoryObservationService,
        min_confidence: float = MIN_CONFIDENCE,
        min_points: int = MIN_POINTS,
        weight_confidence: float = WEIGHT_CONFIDENCE,
        weight_in_window: float = WEIGHT_IN_WINDOW,
        weight_arc: float = WEIGHT_ARC,
        executor: Optional[Executor] = None,
    ):
        """Initialize the adapter.

        Args:
            service: ML trajectory detector
            min_confidence: Observations below this confidence are rejected
            min_points: Observations with fewer detected points are rejected
            weight_confidence: Ranking weight for observation confidence
            weight_in_window: Ranking weight for ending inside the tracker's window
            weight_arc: Ranking weight for arc shape
            executor: Runs requests asynchronously when set
        """
        self.service = service
        self.min_confidence = min_confidence
        self.min_points = min_points
        self.weight_confidence = weight_confidence
        self.weight_in_window = weight_in_window
        self.weight_arc = weight_arc
        self.executor = executor

        self._pending: deque[tuple[float, Future]] = deque()

    @classmethod
    def from_settings(
        cls,
        service: TrajectoryObservationService,
        settings: Settings,
        executor: Optional[Executor] = None,
    ) -> "MLTrajectoryAdapter":
        return cls(
            service,
            min_confidence=settings.ml_min_confidence,
            min_points=settings.ml_min_points,
            executor=executor,
        )

    def process(
        self,
        frame: Frame,
        roi: RegionOfInterest,
        search_window: Optional[NormalizedRect] = None,
    ) -> MLFrameResult:
        """Run the service on one frame and select the best observation.

        Args:
            frame: Frame to analyze
            roi: Region of interest (display space)
            search_window: Predictive tracker's current window (display space)

        Returns:
            MLFrameResult, empty when nothing usable was detected
        """
        detector_roi = rect_to_detector_space(roi, frame.orientation)
        try:
            observations = self.service.detect(frame, detector_roi)
        except Exception as e:
            logger.warning(f"Trajectory detection failed at t={frame.timestamp:.3f}s: {e}")
            return MLFrameResult(timestamp=frame.timestamp)

        return self.select(observations, frame, search_window)

    def select(
        self,
        observations: Sequence[TrajectoryObservation],
        frame: Frame,
        search_window: Optional[NormalizedRect] = None,
    ) -> MLFrameResult:
        """Validate, rank and convert observations for one frame."""
        result = MLFrameResult(timestamp=frame.timestamp)
        if not observations:
            return result

        best_score = -1.0
        for observation in observations:
            points = [to_display(p, frame.orientation) for p in observation.detected_points]

            if observation.confidence < self.min_confidence or len(points) < self.min_points:
                result.rejected += 1
                continue
            if is_pure_descent(points):
                logger.debug(f"Rejected observation {observation.observation_id}: descending from start")
                result.rejected += 1
                continue

            in_window = 0.0
            if search_window is not None and search_window.contains(points[-1]):
                in_window = 1.0

            score = (
                self.weight_confidence * observation.confidence
                + self.weight_in_window * in_window
                + self.weight_arc * arc_score(points)
            )
            if score > best_score:
                best_score = score
                result.observation_id = observation.observation_id
                result.confidence = observation.confidence
                result.points = self._to_trajectory_points(observation, points)

        logger.debug(
            f"ML t={frame.timestamp:.3f}s: {len(observations)} observations, "
            f"{result.rejected} rejected, selected {result.observation_id}"
        )
        return result

    def _to_trajectory_points(
        self,
        observation: TrajectoryObservation,
        points: list[NormalizedPoint],
    ) -> list[TrajectoryPoint]:
        by_time: dict[float, TrajectoryPoint] = {}
        for time, position in zip(observation.point_times, points):
            by_time[time] = TrajectoryPoint(time=time, position=position, source=PointSource.ML_DETECTED)
        return [by_time[t] for t in sorted(by_time)]

    # -- asynchronous mode ---------------------------------------------------

    def submit(
        self,
        frame: Frame,
        roi: RegionOfInterest,
        search_window: Optional[NormalizedRect] = None,
    ) -> Future:
        """Issue the request for a frame on the executor.

        Raises:
            RuntimeError: If the adapter has no executor
        """
        if self.executor is None:
            raise RuntimeError("submit() requires an executor")

        future = self.executor.submit(self.process, frame, roi, search_window)
        self._pending.append((frame.timestamp, future))
        return future

    def collect(self) -> list[MLFrameResult]:
        """Return finished results in submission order.

        Stops at the first request that is still running so results are never
        delivered out of frame order.
        """
        results = []
        while self._pending and self._pending[0][1].done():
            timestamp, future = self._pending.popleft()
            result = self._result_of(timestamp, future)
            if result is not None:
                results.append(result)
        return results

    def drain(self) -> list[MLFrameResult]:
        """Return every finished result and cancel the requests still running.

        Used when a shot ends: completed detections are kept, in submission
        order, instead of being discarded with the unfinished ones.
        """
        results = []
        dropped = 0
        while self._pending:
            timestamp, future = self._pending.popleft()
            if not future.done():
                future.cancel()
                dropped += 1
                continue
            result = self._result_of(timestamp, future)
            if result is not None:
                results.append(result)
        if dropped:
            logger.debug(f"Cancelled {dropped} running trajectory requests")
        return results

    def _result_of(self, timestamp: float, future: Future) -> Optional[MLFrameResult]:
        if future.cancelled():
            return None
        exc = future.exception()
        if exc is not None:
            logger.warning(f"Trajectory request for t={timestamp:.3f}s failed: {exc}")
            return None
        return future.result()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def cancel(self) -> int:
        """Cancel all outstanding requests.

        Returns:
            Number of requests dropped
        """
        dropped = len(self._pending)
        for _, future in self._pending:
            future.cancel()
        self._pending.clear()
        if dropped:
            logger.debug(f"Cancelled {dropped} pending trajectory requests")
        return dropped
