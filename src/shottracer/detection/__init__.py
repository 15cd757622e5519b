"""Ball tracking modules."""

from shottracer.detection.fusion import FusionMode, TrajectoryFusion
from shottracer.detection.impact import ImpactStateMachine, SwingPhase
from shottracer.detection.ml_adapter import MLTrajectoryAdapter
from shottracer.detection.pipeline import ShotTrackingPipeline
from shottracer.detection.predictive_tracker import PredictiveTracker, TrackerStatus

__all__ = [
    "FusionMode",
    "ImpactStateMachine",
    "MLTrajectoryAdapter",
    "PredictiveTracker",
    "ShotTrackingPipeline",
    "SwingPhase",
    "TrackerStatus",
    "TrajectoryFusion",
]
