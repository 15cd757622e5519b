"""Impact detection from body pose.

Infers the moment of club-ball impact from the golfer's wrists. The wrists
drop quickly through the downswing; at impact their vertical velocity
bottoms out and starts to recover. The machine fires once on that reversal
and then hands over to the predictive tracker.

Wrist positions are detector space (origin bottom-left, Y up), so a
downswing shows as negative vertical velocity.

States:
    Idle -> AddressDetected -> Downswing -> Impact -> Tracking -> Complete
    Any state before Impact -> Lost when the pose is lost for too long
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from loguru import logger

from shottracer.core.config import Settings
from shottracer.models.frame import PoseObservation
from shottracer.models.trajectory import NormalizedPoint, Trajectory


class SwingPhase(Enum):
    IDLE = "idle"
    ADDRESS_DETECTED = "address_detected"
    DOWNSWING = "downswing"
    IMPACT = "impact"
    TRACKING = "tracking"
    COMPLETE = "complete"
    LOST = "lost"


@dataclass(frozen=True)
class Idle:
    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.IDLE


@dataclass(frozen=True)
class AddressDetected:
    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.ADDRESS_DETECTED


@dataclass(frozen=True)
class Downswing:
    running_min_velocity: float

    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.DOWNSWING


@dataclass(frozen=True)
class Impact:
    locked_position: NormalizedPoint
    timestamp: float

    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.IMPACT


@dataclass(frozen=True)
class Tracking:
    locked_position: NormalizedPoint
    impact_time: float
    tracker: Any  # PredictiveTracker owned for the rest of the shot

    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.TRACKING


@dataclass(frozen=True)
class Complete:
    trajectory: Trajectory

    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.COMPLETE


@dataclass(frozen=True)
class Lost:
    reason: str

    @property
    def phase(self) -> SwingPhase:
        return SwingPhase.LOST


SwingState = Union[Idle, AddressDetected, Downswing, Impact, Tracking, Complete, Lost]

_PRE_IMPACT = (Idle, AddressDetected, Downswing)


@dataclass(frozen=True)
class Transition:
    """A recorded state change."""

    timestamp: float
    from_phase: SwingPhase
    to_phase: SwingPhase
    detail: str = ""


class ImpactStateMachine:
    """Swing phase state machine driven by per-frame wrist poses."""

    def __init__(
        self,
        confidence_floor: float = 0.3,
        smoothing_window: int = 3,
        downswing_velocity: float = 0.01,
        min_impact_speed: float = 0.015,
        impact_epsilon: float = 0.004,
        lost_after_frames: int = 15,
    ):
        """Initialize the state machine.

        Args:
            confidence_floor: Minimum wrist confidence for a usable pose
            smoothing_window: Number of velocity samples averaged
            downswing_velocity: Smoothed wrist drop per frame that starts a downswing
            min_impact_speed: Downswing must reach at least this speed to fire
            impact_epsilon: Recovery above the running minimum that fires impact
            lost_after_frames: Consecutive unusable poses before the swing is lost
        """
        self.confidence_floor = confidence_floor
        self.smoothing_window = smoothing_window
        self.downswing_velocity = downswing_velocity
        self.min_impact_speed = min_impact_speed
        self.impact_epsilon = impact_epsilon
        self.lost_after_frames = lost_after_frames

        self.state: SwingState = Idle()
        self.transitions: list[Transition] = []
        self.locked_position: Optional[NormalizedPoint] = None

        self._velocities: deque[float] = deque(maxlen=smoothing_window)
        self._previous_wrist_y: Optional[float] = None
        self._missing_poses = 0
        self._last_timestamp = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImpactStateMachine":
        return cls(
            confidence_floor=settings.pose_confidence_floor,
            smoothing_window=settings.wrist_smoothing_window,
            downswing_velocity=settings.downswing_velocity,
            min_impact_speed=settings.min_impact_speed,
            impact_epsilon=settings.impact_epsilon,
            lost_after_frames=settings.pose_lost_after_frames,
        )

    @property
    def phase(self) -> SwingPhase:
        return self.state.phase

    @property
    def smoothed_velocity(self) -> Optional[float]:
        if not self._velocities:
            return None
        return sum(self._velocities) / len(self._velocities)

    def arm(self, locked_position: NormalizedPoint) -> None:
        """Reset for a new shot with the ball locked at locked_position (display space)."""
        self.reset()
        self.locked_position = locked_position

    def process_pose(self, pose: Optional[PoseObservation], timestamp: float) -> SwingState:
        """Advance the machine with one frame's pose.

        Args:
            pose: Wrist pose, None when the pose service found nobody
            timestamp: Frame capture time

        Returns:
            The state after this frame
        """
        self._last_timestamp = timestamp
        if not isinstance(self.state, _PRE_IMPACT):
            return self.state

        if pose is None or not pose.wrists_confident(self.confidence_floor):
            self._missing_poses += 1
            if self._missing_poses >= self.lost_after_frames:
                self._transition(Lost(f"pose lost for {self._missing_poses} frames"), timestamp)
            return self.state
        self._missing_poses = 0

        wrist_y = pose.mean_wrist_y
        if self._previous_wrist_y is not None:
            self._velocities.append(wrist_y - self._previous_wrist_y)
        self._previous_wrist_y = wrist_y

        if isinstance(self.state, Idle):
            self._transition(AddressDetected(), timestamp)
            return self.state

        velocity = self.smoothed_velocity
        if velocity is None:
            return self.state

        if isinstance(self.state, AddressDetected):
            if velocity < -self.downswing_velocity:
                self._transition(
                    Downswing(running_min_velocity=velocity),
                    timestamp,
                    f"wrist velocity {velocity:.4f}/frame",
                )
            return self.state

        running_min = min(self.state.running_min_velocity, velocity)
        if velocity > running_min + self.impact_epsilon and running_min < -self.min_impact_speed:
            if self.locked_position is None:
                raise RuntimeError("Impact detected before arm() locked a ball position")
            self._transition(
                Impact(locked_position=self.locked_position, timestamp=timestamp),
                timestamp,
                f"wrist velocity {velocity:.4f} recovered from {running_min:.4f}",
            )
        elif running_min != self.state.running_min_velocity:
            self.state = Downswing(running_min_velocity=running_min)

        return self.state

    def begin_tracking(self, tracker) -> SwingState:
        """Hand the shot over to a seeded tracker.

        Raises:
            RuntimeError: If impact has not fired
        """
        if not isinstance(self.state, Impact):
            raise RuntimeError(f"begin_tracking() requires IMPACT, machine is {self.phase.value}")
        self._transition(
            Tracking(
                locked_position=self.state.locked_position,
                impact_time=self.state.timestamp,
                tracker=tracker,
            ),
            self.state.timestamp,
        )
        return self.state

    def complete(self, trajectory: Trajectory) -> SwingState:
        """Finish tracking with the fused trajectory.

        Raises:
            RuntimeError: If the machine is not tracking
        """
        if not isinstance(self.state, Tracking):
            raise RuntimeError(f"complete() requires TRACKING, machine is {self.phase.value}")
        self._finish(trajectory)
        return self.state

    def flush(self, trajectory: Optional[Trajectory] = None) -> SwingState:
        """Deterministically end the shot, e.g. when the session stops."""
        if isinstance(self.state, _PRE_IMPACT):
            self._transition(Lost("stopped before impact"), self._last_timestamp)
        elif isinstance(self.state, (Impact, Tracking)):
            self._finish(trajectory if trajectory is not None else Trajectory.empty())
        return self.state

    def _finish(self, trajectory: Trajectory) -> None:
        if trajectory.is_empty:
            self._transition(Lost("no trajectory detected"), self._last_timestamp)
        else:
            self._transition(
                Complete(trajectory=trajectory),
                self._last_timestamp,
                f"{len(trajectory)} points",
            )

    def _transition(self, new_state: SwingState, timestamp: float, detail: str = "") -> None:
        old_phase = self.state.phase
        self.state = new_state
        self.transitions.append(Transition(timestamp, old_phase, new_state.phase, detail))

        message = f"Swing {old_phase.value} -> {new_state.phase.value} at t={timestamp:.3f}s"
        if detail:
            message += f" ({detail})"
        if isinstance(new_state, Lost):
            logger.warning(f"{message}: {new_state.reason}")
        else:
            logger.info(message)

    def reset(self) -> None:
        """Return to Idle, forgetting velocity history and transitions."""
        self.state = Idle()
        self.transitions = []
        self.locked_position = None
        self._velocities.clear()
        self._previous_wrist_y = None
        self._missing_poses = 0
        self._last_timestamp = 0.0
