"""Tests for blob detection and candidate scoring."""

import cv2
import numpy as np
import pytest

from shottracer.detection.blob_detector import BlobDetector, as_bgr
from shottracer.detection.detection_scorer import (
    DetectionCandidate,
    DetectionScorer,
    score_prediction_agreement,
)
from shottracer.models.trajectory import NormalizedPoint


def _dark_frame(width=320, height=240):
    return np.full((height, width, 3), 20, dtype=np.uint8)


class TestBlobDetector:
    """Tests for BlobDetector."""

    def test_finds_white_disc(self):
        frame = _dark_frame()
        cv2.circle(frame, (100, 80), 5, (255, 255, 255), -1)

        candidates = BlobDetector().detect(frame)

        assert len(candidates) == 1
        blob = candidates[0]
        assert abs(blob.x - 100.5) < 1.0
        assert abs(blob.y - 80.5) < 1.0
        assert blob.brightness > 250
        assert blob.circularity > 0.6

    def test_respects_window(self):
        frame = _dark_frame()
        cv2.circle(frame, (100, 80), 5, (255, 255, 255), -1)
        cv2.circle(frame, (250, 200), 5, (255, 255, 255), -1)

        candidates = BlobDetector().detect(frame, (200, 150, 320, 240))

        assert len(candidates) == 1
        assert abs(candidates[0].x - 250.5) < 1.0

    def test_rejects_saturated_color(self):
        """A bright red blob is not a white ball."""
        frame = _dark_frame()
        cv2.circle(frame, (100, 80), 5, (0, 0, 255), -1)

        assert BlobDetector().detect(frame) == []

    def test_rejects_oversized_blob(self):
        frame = _dark_frame()
        cv2.circle(frame, (100, 100), 30, (255, 255, 255), -1)

        assert BlobDetector().detect(frame) == []

    def test_rejects_elongated_blob(self):
        frame = _dark_frame()
        cv2.rectangle(frame, (50, 50), (110, 52), (255, 255, 255), -1)

        assert BlobDetector().detect(frame) == []

    def test_accepts_grayscale(self):
        gray = np.full((240, 320), 20, dtype=np.uint8)
        cv2.circle(gray, (60, 60), 4, 255, -1)

        candidates = BlobDetector().detect(gray)

        assert len(candidates) == 1

    def test_empty_window(self):
        assert BlobDetector().detect(_dark_frame(), (10, 10, 10, 50)) == []

    def test_as_bgr_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            as_bgr(np.zeros((10, 10, 4), dtype=np.uint8))


class TestDetectionScorer:
    """Tests for DetectionScorer."""

    def test_closer_candidate_wins(self):
        predicted = NormalizedPoint(0.5, 0.5)
        near = DetectionCandidate(NormalizedPoint(0.51, 0.5), brightness=230, circularity=0.8)
        far = DetectionCandidate(NormalizedPoint(0.6, 0.5), brightness=230, circularity=0.8)

        scorer = DetectionScorer()
        scored = scorer.score_candidates([far, near], predicted=predicted, prediction_uncertainty=0.05)

        assert scored[0].position == near.position
        assert scorer.select_best(scored).is_selected

    def test_candidate_below_previous_position_not_penalized(self):
        """Direction of the offset from the prediction must not matter."""
        predicted = NormalizedPoint(0.5, 0.5)
        above = NormalizedPoint(0.5, 0.47)
        below = NormalizedPoint(0.5, 0.53)

        assert score_prediction_agreement(above, predicted, 0.05) == pytest.approx(
            score_prediction_agreement(below, predicted, 0.05)
        )

    def test_select_best_threshold(self):
        scorer = DetectionScorer(min_confidence=0.9)
        dim = DetectionCandidate(NormalizedPoint(0.9, 0.9), brightness=100, circularity=0.3)
        scored = scorer.score_candidates([dim], predicted=NormalizedPoint(0.1, 0.1), prediction_uncertainty=0.05)

        assert scorer.select_best(scored) is None
        assert scorer.select_best([]) is None
