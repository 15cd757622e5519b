"""Tests for export schemas and settings."""

import pytest
from pydantic import ValidationError

from shottracer.core.config import Settings
from shottracer.models.schemas import (
    ShotResultSchema,
    TrajectoryPointSchema,
    TrajectorySchema,
    trajectory_to_pixels,
)
from shottracer.models.trajectory import (
    NormalizedPoint,
    PointSource,
    ShotOutcome,
    ShotResult,
    Trajectory,
    TrajectoryPoint,
)


def _trajectory():
    return Trajectory.from_points([
        TrajectoryPoint(0.0, NormalizedPoint(0.5, 0.9), PointSource.MEASURED),
        TrajectoryPoint(0.1, NormalizedPoint(0.55, 0.4), PointSource.ML_DETECTED),
        TrajectoryPoint(0.2, NormalizedPoint(0.6, 0.6), PointSource.PREDICTED),
    ], trajectory_id="shot-1")


class TestTrajectorySchema:
    """Tests for TrajectorySchema."""

    def test_from_trajectory(self):
        schema = TrajectorySchema.from_trajectory(_trajectory())

        assert schema.id == "shot-1"
        assert len(schema.points) == 3
        assert schema.points[1].source == "ml_detected"
        assert schema.duration == pytest.approx(0.2)
        assert schema.apex.timestamp == pytest.approx(0.1)
        assert schema.has_predicted_points is True
        assert schema.confidence == pytest.approx(2 / 3)

    def test_positions_clamped_for_export(self):
        trajectory = Trajectory.from_points([
            TrajectoryPoint(0.0, NormalizedPoint(1.02, -0.01), PointSource.PREDICTED),
        ])

        schema = TrajectorySchema.from_trajectory(trajectory)

        assert schema.points[0].x == 1.0
        assert schema.points[0].y == 0.0

    def test_point_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            TrajectoryPointSchema(timestamp=0.0, x=1.5, y=0.5, source="measured")

    def test_empty_trajectory(self):
        schema = TrajectorySchema.from_trajectory(Trajectory.empty())

        assert schema.points == []
        assert schema.apex is None


class TestShotResultSchema:
    def test_no_trajectory(self):
        result = ShotResult(ShotOutcome.NO_TRAJECTORY, reason="stopped before impact")

        schema = ShotResultSchema.from_result(result)

        assert schema.outcome == "no_trajectory"
        assert schema.trajectory is None
        assert schema.reason == "stopped before impact"

    def test_serializes_to_json(self):
        schema = ShotResultSchema.from_result(ShotResult(ShotOutcome.COMPLETE, trajectory=_trajectory()))

        data = schema.model_dump()

        assert data["outcome"] == "complete"
        assert data["trajectory"]["points"][0]["source"] == "measured"


class TestPixelExport:
    def test_trajectory_to_pixels(self):
        pixels = trajectory_to_pixels(_trajectory(), 1920, 1080)

        assert len(pixels) == 3
        assert pixels[0]["x"] == pytest.approx(960)
        assert pixels[0]["y"] == pytest.approx(972)
        assert pixels[1]["source"] == "ml_detected"


class TestSettings:
    def test_defaults(self):
        config = Settings(_env_file=None)

        assert config.fps == 240.0
        assert config.max_missed_frames == 10
        assert config.frame_period == pytest.approx(1 / 240)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SHOTTRACER_FPS", "120")
        monkeypatch.setenv("SHOTTRACER_MAX_MISSED_FRAMES", "4")

        config = Settings(_env_file=None)

        assert config.fps == 120.0
        assert config.max_missed_frames == 4
