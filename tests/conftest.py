"""Pytest configuration and fixtures for shottracer tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from shottracer.core.config import Settings  # noqa: E402
from shottracer.core.coordinates import Orientation  # noqa: E402
from shottracer.models.frame import Frame, Joint, PoseObservation  # noqa: E402
from shottracer.models.trajectory import NormalizedPoint  # noqa: E402


FRAME_WIDTH = 640
FRAME_HEIGHT = 480
FPS = 240.0


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )


def make_frame(
    index: int,
    ball: NormalizedPoint = None,
    radius: int = 5,
    fps: float = FPS,
    width: int = FRAME_WIDTH,
    height: int = FRAME_HEIGHT,
) -> Frame:
    """Dark BGR frame, optionally with a white ball drawn at a display-space position."""
    pixels = np.full((height, width, 3), 30, dtype=np.uint8)
    if ball is not None:
        center = (int(ball.x * width), int(ball.y * height))
        cv2.circle(pixels, center, radius, (255, 255, 255), -1)
    return Frame(pixels=pixels, timestamp=index / fps, orientation=Orientation.UP, index=index)


def make_pose(timestamp: float, wrist_y: float, confidence: float = 0.9) -> PoseObservation:
    """Pose with both wrists at the same detector-space height."""
    return PoseObservation(
        timestamp=timestamp,
        left_wrist=Joint(NormalizedPoint(0.45, wrist_y), confidence),
        right_wrist=Joint(NormalizedPoint(0.47, wrist_y), confidence),
    )


def swing_wrist_y(index: int, impact_index: int = 0, speed: float = 0.02) -> float:
    """Wrist height that drops at `speed` per frame and reverses at impact_index."""
    if index < impact_index:
        return 0.5 - speed * (index - impact_index + 10)
    return 0.5 - speed * 9 + speed * (index - impact_index + 1)


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and .env files."""
    return Settings(_env_file=None, fps=FPS)


@pytest.fixture
def blank_frame():
    return make_frame(0)


@pytest.fixture
def ml_service():
    """ML service mock that detects nothing."""
    service = MagicMock()
    service.detect.return_value = []
    return service


@pytest.fixture
def pose_service():
    """Pose service mock that sees nobody."""
    service = MagicMock()
    service.detect.return_value = None
    return service
