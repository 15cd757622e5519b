"""Tests for Kalman filter ball predictor."""

import numpy as np
import pytest

from shottracer.detection.kalman_tracker import BallKalmanFilter


class TestBallKalmanFilter:
    """Tests for BallKalmanFilter."""

    def test_initialization(self):
        """Initial state should match input."""
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.8, vx=0.002, vy=-0.004)

        state = kf.get_state()
        assert state is not None
        assert state.x == pytest.approx(0.5)
        assert state.y == pytest.approx(0.8)
        assert state.covariance.shape == (4, 4)

    def test_predict_before_initialize_raises(self):
        kf = BallKalmanFilter()
        with pytest.raises(RuntimeError):
            kf.predict()

    def test_update_before_predict_raises(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.5)
        with pytest.raises(RuntimeError):
            kf.update(0.5, 0.5)

    def test_prediction_follows_motion(self):
        """Prediction should follow the motion model."""
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.8, vx=0.01, vy=-0.02)

        pred = kf.predict()

        assert pred.x == pytest.approx(0.51)
        assert pred.y == pytest.approx(0.78)

    def test_fractional_time_step(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.5, vx=0.01, vy=0.0)

        pred = kf.predict(dt=2.5)

        assert pred.x == pytest.approx(0.525)

    def test_gravity_effect(self):
        """Ball should accelerate downward (increasing display y) over time."""
        kf = BallKalmanFilter(gravity_per_frame2=0.001)
        kf.initialize(x=0.5, y=0.5, vx=0, vy=0)

        positions = []
        for _ in range(10):
            pred = kf.predict()
            kf.update_no_measurement()
            positions.append(pred.y)

        steps = np.diff(positions)
        assert positions[0] == pytest.approx(0.5005)
        assert np.all(steps > 0)
        assert np.all(np.diff(steps) > 0)

    def test_measurement_update_moves_state(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.8)

        kf.predict()
        state = kf.update(measured_x=0.51, measured_y=0.79)

        assert abs(state.x - 0.51) < 0.005
        assert abs(state.y - 0.79) < 0.005

    def test_velocity_converges(self):
        """Velocity estimate should converge to the true velocity quickly."""
        kf = BallKalmanFilter(
            gravity_per_frame2=0.0,
            position_noise=1e-8,
            velocity_noise=1e-8,
            measurement_noise=1e-6,
        )
        kf.initialize(x=0.2, y=0.8, vx=0.0, vy=0.0, position_std=0.001, velocity_std=0.1)

        true_vx, true_vy = 0.01, -0.015
        for frame in range(1, 6):
            kf.predict()
            state = kf.update(0.2 + true_vx * frame, 0.8 + true_vy * frame)

        assert state.vx == pytest.approx(true_vx, abs=1e-3)
        assert state.vy == pytest.approx(true_vy, abs=1e-3)

    def test_missed_frames_widen_covariance(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.5)

        kf.predict()
        before = kf.update_no_measurement().position_variance
        kf.predict()
        after = kf.update_no_measurement(covariance_growth=2.0).position_variance

        assert after > 2 * before

    def test_plausibility_rejects_outliers(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.8, vx=0.005, vy=-0.01, position_std=0.005, velocity_std=0.005)

        kf.predict()

        assert kf.is_measurement_plausible(0.505, 0.79) is True
        assert kf.is_measurement_plausible(0.8, 0.4) is False

    def test_search_window(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.5, position_std=0.001, velocity_std=0.001)

        kf.predict()
        window = kf.get_search_window(sigma_multiplier=3.0, min_half_size=0.04)

        assert window.contains(kf.predict().position)
        assert window.width == pytest.approx(0.08)
        assert window.height == pytest.approx(0.08)

    def test_search_window_outside_frame(self):
        kf = BallKalmanFilter()
        kf.initialize(x=1.5, y=0.5, position_std=0.001, velocity_std=0.001)

        kf.predict()

        assert kf.get_search_window(min_half_size=0.04) is None

    def test_reset(self):
        kf = BallKalmanFilter()
        kf.initialize(x=0.5, y=0.5)
        kf.reset()
        assert kf.get_state() is None
        assert not kf.is_initialized

    def test_snapshot_and_restore(self):
        kf = BallKalmanFilter(gravity_per_frame2=0.001)
        kf.initialize(x=0.5, y=0.5, vx=0.01, vy=-0.01)
        saved = kf.snapshot()

        kf.predict()
        kf.update(0.52, 0.48)
        kf.restore(saved)

        state = kf.get_state()
        assert state.x == pytest.approx(0.5)
        assert state.vy == pytest.approx(-0.01)
        with pytest.raises(RuntimeError):
            kf.update(0.5, 0.5)

    def test_snapshot_before_initialize_raises(self):
        with pytest.raises(RuntimeError):
            BallKalmanFilter().snapshot()

    def test_low_confidence_measurement_pulls_less(self):
        sure, unsure = BallKalmanFilter(), BallKalmanFilter()
        for kf in (sure, unsure):
            kf.initialize(x=0.5, y=0.5, position_std=0.005, velocity_std=0.001)
            kf.predict()

        sure_state = sure.update(0.51, 0.5)
        unsure_state = unsure.update(0.51, 0.5, measurement_confidence=0.2)

        assert 0.5 < unsure_state.x < sure_state.x
