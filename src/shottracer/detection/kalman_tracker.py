"""Kalman filter predictor for ball tracking.

This module provides a Kalman filter for tracking a golf ball in flight in
normalized display space (origin top-left, Y down). The filter uses a 4-state
model [x, y, vx, vy] in per-frame units with gravity applied as a control input.

Key features:
- Predicts where the ball should be next frame
- Provides a search window for blob detection
- Smooths noisy detections
- Coasts through missing detections with growing uncertainty
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from shottracer.models.trajectory import InvalidRegionError, NormalizedPoint, NormalizedRect


# Default noise parameters (normalized units, per frame)
POSITION_NOISE = 1e-6
VELOCITY_NOISE = 1e-6
MEASUREMENT_NOISE = 2.5e-5
INITIAL_POSITION_STD = 0.01
INITIAL_VELOCITY_STD = 0.01


@dataclass
class KalmanState:
    """Current state of the Kalman filter.

    Attributes:
        x: X position (normalized)
        y: Y position (normalized, Y down)
        vx: X velocity per frame
        vy: Y velocity per frame (negative = upward on screen)
        covariance: 4x4 covariance matrix
    """
    x: float
    y: float
    vx: float
    vy: float
    covariance: np.ndarray

    @property
    def position(self) -> NormalizedPoint:
        return NormalizedPoint(self.x, self.y)

    @property
    def position_variance(self) -> float:
        return float(max(self.covariance[0, 0], self.covariance[1, 1]))


@dataclass
class KalmanPrediction:
    """Prediction from Kalman filter.

    Attributes:
        x: Predicted X position
        y: Predicted Y position
        vx: Predicted X velocity
        vy: Predicted Y velocity
        uncertainty_x: Uncertainty in X position (1-sigma)
        uncertainty_y: Uncertainty in Y position (1-sigma)
    """
    x: float
    y: float
    vx: float
    vy: float
    uncertainty_x: float
    uncertainty_y: float

    @property
    def position(self) -> NormalizedPoint:
        return NormalizedPoint(self.x, self.y)


class BallKalmanFilter:
    """Kalman filter for tracking golf balls with a gravity model.

    Uses a 4-state vector [x, y, vx, vy]. Time steps are measured in frames and
    may be fractional when frames arrive unevenly.

    Example:
        kf = BallKalmanFilter(gravity_per_frame2=2.6e-6)
        kf.initialize(x=0.5, y=0.8, vx=0.002, vy=-0.004)

        # Each frame:
        pred = kf.predict()
        if detection_found:
            state = kf.update(measured_x, measured_y)
        else:
            state = kf.update_no_measurement()
    """

    def __init__(
        self,
        gravity_per_frame2: float = 0.0,
        position_noise: float = POSITION_NOISE,
        velocity_noise: float = VELOCITY_NOISE,
        measurement_noise: float = MEASUREMENT_NOISE,
    ):
        """Initialize Kalman filter.

        Args:
            gravity_per_frame2: Apparent gravity in normalized units/frame^2
                (positive = downward on screen)
            position_noise: Process noise variance for position, per frame
            velocity_noise: Process noise variance for velocity, per frame
            measurement_noise: Measurement noise variance (detector accuracy)
        """
        self.gravity_per_frame2 = gravity_per_frame2
        self.position_noise = position_noise
        self.velocity_noise = velocity_noise
        self.measurement_noise = measurement_noise

        self._state: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._predicted_state: Optional[np.ndarray] = None
        self._predicted_covariance: Optional[np.ndarray] = None

        # Measurement matrix (we only observe position)
        self._H = np.array([
            [1, 0, 0, 0],
            [0, 1, 0, 0],
        ], dtype=np.float64)

        self._R = np.eye(2, dtype=np.float64) * measurement_noise

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    def _transition(self, dt: float) -> np.ndarray:
        # x' = x + vx*dt, vy' = vy + g*dt (gravity enters through _control)
        return np.array([
            [1, 0, dt, 0 ],
            [0, 1, 0,  dt],
            [0, 0, 1,  0 ],
            [0, 0, 0,  1 ],
        ], dtype=np.float64)

    def _control(self, dt: float) -> np.ndarray:
        g = self.gravity_per_frame2
        return np.array([0.0, 0.5 * g * dt * dt, 0.0, g * dt], dtype=np.float64)

    def _process_noise(self, dt: float) -> np.ndarray:
        return np.diag([
            self.position_noise * dt,
            self.position_noise * dt,
            self.velocity_noise * dt,
            self.velocity_noise * dt,
        ]).astype(np.float64)

    def initialize(
        self,
        x: float,
        y: float,
        vx: float = 0.0,
        vy: float = 0.0,
        position_std: float = INITIAL_POSITION_STD,
        velocity_std: float = INITIAL_VELOCITY_STD,
    ) -> None:
        """Initialize the filter with starting state.

        Args:
            x: Initial X position
            y: Initial Y position
            vx: Initial X velocity (per frame)
            vy: Initial Y velocity (per frame, negative = upward)
            position_std: Initial position uncertainty (1-sigma)
            velocity_std: Initial velocity uncertainty (1-sigma)
        """
        self._state = np.array([x, y, vx, vy], dtype=np.float64)
        self._covariance = np.diag([
            position_std ** 2,
            position_std ** 2,
            velocity_std ** 2,
            velocity_std ** 2,
        ]).astype(np.float64)

        self._predicted_state = None
        self._predicted_covariance = None

    def predict(self, dt: float = 1.0) -> KalmanPrediction:
        """Predict the state dt frames ahead.

        Calling predict() again before an update re-predicts from the last
        committed state.

        Returns:
            KalmanPrediction with predicted position and uncertainties

        Raises:
            RuntimeError: If filter not initialized
            ValueError: If dt is not positive
        """
        if self._state is None or self._covariance is None:
            raise RuntimeError("Kalman filter not initialized. Call initialize() first.")
        if dt <= 0:
            raise ValueError(f"Time step must be positive, got {dt}")

        F = self._transition(dt)

        # x' = F * x + B * g
        self._predicted_state = F @ self._state + self._control(dt)

        # P' = F * P * F^T + Q
        self._predicted_covariance = F @ self._covariance @ F.T + self._process_noise(dt)

        return KalmanPrediction(
            x=float(self._predicted_state[0]),
            y=float(self._predicted_state[1]),
            vx=float(self._predicted_state[2]),
            vy=float(self._predicted_state[3]),
            uncertainty_x=float(np.sqrt(self._predicted_covariance[0, 0])),
            uncertainty_y=float(np.sqrt(self._predicted_covariance[1, 1])),
        )

    def update(
        self,
        measured_x: float,
        measured_y: float,
        measurement_confidence: float = 1.0,
    ) -> KalmanState:
        """Update state with measurement.

        Args:
            measured_x: Measured X position
            measured_y: Measured Y position
            measurement_confidence: Confidence in measurement (0-1).
                Lower confidence increases measurement noise.

        Returns:
            Updated KalmanState

        Raises:
            RuntimeError: If predict() not called first
        """
        if self._predicted_state is None or self._predicted_covariance is None:
            raise RuntimeError("Must call predict() before update()")

        R = self._R
        if 0 < measurement_confidence < 1.0:
            R = R / measurement_confidence

        z = np.array([measured_x, measured_y], dtype=np.float64)

        # Innovation and its covariance
        innovation = z - self._H @ self._predicted_state
        S = self._H @ self._predicted_covariance @ self._H.T + R

        K = self._predicted_covariance @ self._H.T @ np.linalg.inv(S)

        self._state = self._predicted_state + K @ innovation
        self._covariance = (np.eye(4) - K @ self._H) @ self._predicted_covariance

        self._predicted_state = None
        self._predicted_covariance = None

        return self.get_state()

    def update_no_measurement(self, covariance_growth: float = 1.0) -> KalmanState:
        """Commit the prediction when no measurement is available.

        Args:
            covariance_growth: Factor applied to the predicted covariance so
                the next search window widens

        Returns:
            Updated KalmanState

        Raises:
            RuntimeError: If predict() not called first
        """
        if self._predicted_state is None or self._predicted_covariance is None:
            raise RuntimeError("Must call predict() before update_no_measurement()")

        self._state = self._predicted_state.copy()
        self._covariance = self._predicted_covariance * covariance_growth

        self._predicted_state = None
        self._predicted_covariance = None

        return self.get_state()

    def get_state(self) -> Optional[KalmanState]:
        """Get current state.

        Returns:
            Current KalmanState or None if not initialized
        """
        if self._state is None or self._covariance is None:
            return None

        return KalmanState(
            x=float(self._state[0]),
            y=float(self._state[1]),
            vx=float(self._state[2]),
            vy=float(self._state[3]),
            covariance=self._covariance.copy(),
        )

    def snapshot(self) -> tuple[np.ndarray, np.ndarray]:
        """Copy of the committed state vector and covariance.

        Raises:
            RuntimeError: If filter not initialized
        """
        if self._state is None or self._covariance is None:
            raise RuntimeError("Kalman filter not initialized. Call initialize() first.")
        return self._state.copy(), self._covariance.copy()

    def restore(self, snapshot: tuple[np.ndarray, np.ndarray]) -> None:
        """Roll the filter back to a snapshot, discarding any pending prediction."""
        state, covariance = snapshot
        self._state = state.copy()
        self._covariance = covariance.copy()
        self._predicted_state = None
        self._predicted_covariance = None

    def is_measurement_plausible(
        self,
        measured_x: float,
        measured_y: float,
        sigma_threshold: float = 3.0,
    ) -> bool:
        """Check if measurement is plausible given current prediction.

        Uses the Mahalanobis distance of the innovation.

        Raises:
            RuntimeError: If predict() not called first
        """
        if self._predicted_state is None or self._predicted_covariance is None:
            raise RuntimeError("Must call predict() before is_measurement_plausible()")

        z = np.array([measured_x, measured_y], dtype=np.float64)
        innovation = z - self._H @ self._predicted_state
        S = self._H @ self._predicted_covariance @ self._H.T + self._R

        mahal_dist_sq = float(innovation.T @ np.linalg.inv(S) @ innovation)

        # Same threshold shape as a per-axis sigma test on both axes
        return mahal_dist_sq <= (sigma_threshold ** 2) * 2

    def get_search_window(
        self,
        sigma_multiplier: float = 3.0,
        min_half_size: float = 0.0,
    ) -> Optional[NormalizedRect]:
        """Get the normalized search window around the prediction.

        Args:
            sigma_multiplier: Number of standard deviations for window size
            min_half_size: Lower bound on each half-extent

        Returns:
            Window clamped to the frame, or None if it lies entirely outside

        Raises:
            RuntimeError: If predict() not called first
        """
        if self._predicted_state is None or self._predicted_covariance is None:
            raise RuntimeError("Must call predict() before get_search_window()")

        center = NormalizedPoint(float(self._predicted_state[0]), float(self._predicted_state[1]))
        half_x = max(sigma_multiplier * float(np.sqrt(self._predicted_covariance[0, 0])), min_half_size)
        half_y = max(sigma_multiplier * float(np.sqrt(self._predicted_covariance[1, 1])), min_half_size)

        try:
            return NormalizedRect.from_center(center, half_x, half_y)
        except InvalidRegionError:
            return None

    def reset(self) -> None:
        """Reset filter to uninitialized state."""
        self._state = None
        self._covariance = None
        self._predicted_state = None
        self._predicted_covariance = None
