"""Tests for trajectory fusion."""

import pytest

from shottracer.detection.fusion import FusionMode, TrajectoryFusion
from shottracer.models.trajectory import NormalizedPoint, PointSource, TrajectoryPoint

from conftest import FPS


def t(index: int) -> float:
    return index / FPS


def ml(index, x=0.5, y=0.5, offset=0.0):
    return TrajectoryPoint(t(index) + offset, NormalizedPoint(x, y), PointSource.ML_DETECTED)


def tracked(index, x=0.4, y=0.4, source=PointSource.PREDICTED):
    return TrajectoryPoint(t(index), NormalizedPoint(x, y), source)


class TestFusionPrecedence:
    """Tests for per-frame merging."""

    def test_ml_supersedes_predicted(self):
        fusion = TrajectoryFusion(fps=FPS)

        snapshot = fusion.merge_frame(t(0), [ml(0, x=0.6)], tracked(0))

        assert len(snapshot) == 1
        assert snapshot.points[0].source is PointSource.ML_DETECTED
        assert snapshot.points[0].position.x == pytest.approx(0.6)

    def test_ml_supersedes_measured(self):
        fusion = TrajectoryFusion(fps=FPS)

        snapshot = fusion.merge_frame(t(0), [ml(0)], tracked(0, source=PointSource.MEASURED))

        assert snapshot.points[0].source is PointSource.ML_DETECTED

    def test_late_ml_replaces_earlier_tracker_point(self):
        fusion = TrajectoryFusion(fps=FPS)
        fusion.merge_frame(t(0), [], tracked(0))
        fusion.merge_frame(t(1), [], tracked(1))

        snapshot = fusion.merge_late_ml(t(0), [ml(0, x=0.7)])

        assert [p.source for p in snapshot.points] == [PointSource.ML_DETECTED, PointSource.PREDICTED]
        assert snapshot.points[0].position.x == pytest.approx(0.7)

    def test_ml_point_snaps_to_nearest_frame(self):
        fusion = TrajectoryFusion(fps=FPS)
        fusion.merge_frame(t(0), [], tracked(0))

        snapshot = fusion.merge_frame(t(1), [ml(0, offset=0.3 / FPS)], tracked(1))

        assert snapshot.points[0].time == t(0)
        assert snapshot.points[0].source is PointSource.ML_DETECTED

    def test_unmatched_ml_point_dropped(self):
        fusion = TrajectoryFusion(fps=FPS)

        snapshot = fusion.merge_frame(t(0), [ml(5)], tracked(0))

        assert len(snapshot) == 1
        assert snapshot.points[0].source is PointSource.PREDICTED

    def test_one_point_per_frame_and_time_ordered(self):
        fusion = TrajectoryFusion(fps=FPS)
        for index in range(10):
            snapshot = fusion.merge_frame(t(index), [ml(index), ml(index, offset=1e-5)], tracked(index))

        times = [p.time for p in snapshot.points]
        assert len(times) == 10
        assert times == sorted(times)
        assert len(set(times)) == len(times)

    def test_snapshots_are_immutable_copies(self):
        fusion = TrajectoryFusion(fps=FPS)
        first = fusion.merge_frame(t(0), [], tracked(0))
        fusion.merge_frame(t(1), [], tracked(1))

        assert len(first) == 1

    def test_gap_recorded(self):
        fusion = TrajectoryFusion(fps=FPS)
        fusion.merge_frame(t(0), [], tracked(0))
        fusion.merge_frame(t(1), [], None)

        assert fusion.gaps == [t(1)]

    def test_confidence_is_observed_fraction(self):
        fusion = TrajectoryFusion(fps=FPS)
        fusion.merge_frame(t(0), [ml(0)], None)
        snapshot = fusion.merge_frame(t(1), [], tracked(1))

        assert snapshot.confidence == pytest.approx(0.5)

    def test_out_of_order_frame_rejected(self):
        fusion = TrajectoryFusion(fps=FPS)
        fusion.merge_frame(t(2), [], tracked(2))

        with pytest.raises(ValueError):
            fusion.merge_frame(t(1), [], tracked(1))


class TestDegradation:
    """Tests for switching to tracker-only mode."""

    def test_degrades_after_silent_frames(self):
        fusion = TrajectoryFusion(fps=FPS, ml_degraded_after_frames=12)
        fusion.merge_frame(t(0), [ml(0)], None)

        for index in range(1, 21):
            snapshot = fusion.merge_frame(t(index), [], tracked(index))

        assert fusion.mode is FusionMode.TRACKER_ONLY
        assert fusion.mode_changed_at == t(13)
        # Trajectory keeps growing from the tracker
        assert len(snapshot) == 21
        assert snapshot.points[-1].source is PointSource.PREDICTED

    def test_ml_ignored_once_degraded(self):
        fusion = TrajectoryFusion(fps=FPS, ml_degraded_after_frames=2)
        for index in range(4):
            fusion.merge_frame(t(index), [], tracked(index))
        assert fusion.ml_degraded

        snapshot = fusion.merge_frame(t(4), [ml(4)], tracked(4))

        assert snapshot.points[-1].source is PointSource.PREDICTED

    def test_finished_when_tracker_lost_and_ml_degraded(self):
        fusion = TrajectoryFusion(fps=FPS, ml_degraded_after_frames=2)
        for index in range(4):
            fusion.merge_frame(t(index), [], tracked(index))

        assert fusion.is_finished(tracker_active=True) is False
        assert fusion.is_finished(tracker_active=False) is True

    def test_finished_after_idle_frames(self):
        fusion = TrajectoryFusion(fps=10.0, min_duration=0.5, idle_frames_to_complete=3)
        for index in range(6):
            fusion.merge_frame(index / 10.0, [ml(0, offset=index / 10.0 - t(0))], None)
        assert not fusion.is_finished(tracker_active=True)

        for index in range(6, 9):
            fusion.merge_frame(index / 10.0, [], None)

        assert fusion.is_finished(tracker_active=True)
