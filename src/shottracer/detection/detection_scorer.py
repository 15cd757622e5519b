"""Detection scorer for ball tracking.

Combines signals to select the best ball blob from candidates:
- Agreement with the Kalman prediction
- Brightness (golf ball is white)
- Circularity (golf ball is round)

Candidates are never penalized for lying below the previous position: a
descending ball is as valid as a rising one.
"""

from dataclasses import dataclass, field
from typing import Optional

from shottracer.models.trajectory import NormalizedPoint


# Default minimum confidence threshold
MIN_CONFIDENCE = 0.3

# Scoring weights
WEIGHT_PREDICTION = 0.5
WEIGHT_BRIGHTNESS = 0.25
WEIGHT_CIRCULARITY = 0.25


@dataclass
class DetectionCandidate:
    """A candidate ball detection in display space."""

    position: NormalizedPoint
    brightness: float  # 0-255
    circularity: float  # 0-1
    pixel_count: int = 0


@dataclass
class ScoredDetection:
    """A detection with computed confidence scores."""

    position: NormalizedPoint
    confidence: float
    scores: dict = field(default_factory=dict)
    is_selected: bool = False


class DetectionScorer:
    """Scores and selects the best ball detection from candidates."""

    def __init__(
        self,
        min_confidence: float = MIN_CONFIDENCE,
        weight_prediction: float = WEIGHT_PREDICTION,
        weight_brightness: float = WEIGHT_BRIGHTNESS,
        weight_circularity: float = WEIGHT_CIRCULARITY,
    ):
        """Initialize the scorer.

        Args:
            min_confidence: Minimum confidence threshold for selection.
            weight_prediction: Weight for prediction agreement score.
            weight_brightness: Weight for brightness score.
            weight_circularity: Weight for circularity score.
        """
        self.min_confidence = min_confidence
        self.weight_prediction = weight_prediction
        self.weight_brightness = weight_brightness
        self.weight_circularity = weight_circularity

    def score_candidates(
        self,
        candidates: list[DetectionCandidate],
        predicted: Optional[NormalizedPoint] = None,
        prediction_uncertainty: float = 0.05,
    ) -> list[ScoredDetection]:
        """Score all candidates and return sorted by confidence.

        Args:
            candidates: Detection candidates to score.
            predicted: Position predicted by the Kalman filter.
            prediction_uncertainty: Normalized radius within which a candidate
                fully agrees with the prediction.

        Returns:
            ScoredDetection list, highest confidence first.
        """
        scored = []
        for candidate in candidates:
            scores = {
                "brightness": score_brightness(candidate.brightness),
                "circularity": max(0.0, min(1.0, candidate.circularity)),
            }
            if predicted is not None:
                scores["prediction"] = score_prediction_agreement(
                    candidate.position, predicted, prediction_uncertainty
                )
            else:
                # No prediction available, use neutral score
                scores["prediction"] = 0.5

            confidence = (
                self.weight_prediction * scores["prediction"]
                + self.weight_brightness * scores["brightness"]
                + self.weight_circularity * scores["circularity"]
            )

            scored.append(ScoredDetection(
                position=candidate.position,
                confidence=confidence,
                scores=scores,
            ))

        scored.sort(key=lambda s: s.confidence, reverse=True)
        return scored

    def select_best(self, scored_detections: list[ScoredDetection]) -> Optional[ScoredDetection]:
        """Select the best detection if it passes the threshold.

        Args:
            scored_detections: Scored detections, sorted by confidence.

        Returns:
            The best detection if it passes threshold, otherwise None.
        """
        if not scored_detections:
            return None

        best = scored_detections[0]
        if best.confidence >= self.min_confidence:
            best.is_selected = True
            return best
        return None


def score_brightness(brightness: float) -> float:
    """Score from 0.0 to 1.0 favoring near-white values (0-255 scale)."""
    if brightness >= 200:
        return min(1.0, 0.8 + (brightness - 200) * 0.004)
    if brightness >= 150:
        return 0.5 + (brightness - 150) * 0.006
    return max(0.0, brightness / 300.0)


def score_prediction_agreement(
    position: NormalizedPoint,
    predicted: NormalizedPoint,
    uncertainty: float,
) -> float:
    """Score from 0.0 to 1.0 for distance to the prediction.

    Direction of the offset does not matter.
    """
    distance = position.distance_to(predicted)
    if uncertainty <= 0:
        return 1.0 if distance == 0 else 0.0

    if distance <= uncertainty:
        return 1.0 - 0.3 * (distance / uncertainty)

    excess = distance - uncertainty
    return max(0.0, 0.7 - excess / (2 * uncertainty))
