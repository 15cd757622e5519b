"""Bright-blob candidate detection inside a search window.

A golf ball in flight shows up as a small, bright, low-saturation, roughly
circular blob. Candidates are found with an HSV threshold followed by
connected-component analysis, then filtered by size and circularity.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
from loguru import logger


# White-ball thresholds on OpenCV's HSV scale (S, V in 0-255)
MIN_BRIGHTNESS = 180
MAX_SATURATION = 70

# Blob size limits in pixels
MIN_PIXELS = 3
MAX_PIXELS = 400

MIN_CIRCULARITY = 0.6

# Below this many pixels a contour is too coarse to measure a perimeter
SMALL_BLOB_PIXELS = 16


@dataclass
class BlobCandidate:
    """A candidate ball blob.

    Attributes:
        x: Centroid X in frame buffer pixels
        y: Centroid Y in frame buffer pixels
        pixel_count: Number of pixels in the component
        brightness: Mean HSV value of the component (0-255)
        circularity: 4*pi*area/perimeter^2, clamped to [0, 1]
    """
    x: float
    y: float
    pixel_count: int
    brightness: float
    circularity: float


def as_bgr(frame: np.ndarray) -> np.ndarray:
    """Return a 3-channel BGR view of a BGR or grayscale frame."""
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return frame
    raise ValueError(f"Expected a BGR or grayscale frame, got shape {frame.shape}")


def calculate_circularity(component_mask: np.ndarray, pixel_count: int) -> float:
    """Circularity of a single-component binary mask.

    Circularity = 4 * pi * Area / Perimeter^2. A perfect circle scores 1.0.
    Tiny blobs use the fill ratio of their bounding box instead, relative to
    the pi/4 fill of a disc.
    """
    contours, _ = cv2.findContours(component_mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return 0.0
    contour = max(contours, key=cv2.contourArea)

    if pixel_count < SMALL_BLOB_PIXELS:
        _, _, w, h = cv2.boundingRect(contour)
        fill = pixel_count / float(w * h)
        aspect = min(w, h) / float(max(w, h))
        return min(1.0, fill / (np.pi / 4)) * aspect

    area = cv2.contourArea(contour)
    perimeter = cv2.arcLength(contour, True)
    if perimeter == 0:
        return 0.0

    circularity = 4 * np.pi * area / (perimeter ** 2)

    # Clamp to [0, 1] range (can exceed 1 due to approximation errors)
    return float(min(max(circularity, 0.0), 1.0))


class BlobDetector:
    """Finds bright, white, round blobs in a pixel window."""

    def __init__(
        self,
        min_brightness: int = MIN_BRIGHTNESS,
        max_saturation: int = MAX_SATURATION,
        min_pixels: int = MIN_PIXELS,
        max_pixels: int = MAX_PIXELS,
        min_circularity: float = MIN_CIRCULARITY,
    ):
        self.min_brightness = min_brightness
        self.max_saturation = max_saturation
        self.min_pixels = min_pixels
        self.max_pixels = max_pixels
        self.min_circularity = min_circularity

    def detect(
        self,
        frame: np.ndarray,
        window: Optional[tuple[int, int, int, int]] = None,
    ) -> list[BlobCandidate]:
        """Detect candidate blobs.

        Args:
            frame: BGR (or grayscale) frame in buffer orientation
            window: (x_min, y_min, x_max, y_max) pixel window, whole frame if None

        Returns:
            Candidates in frame pixel coordinates, largest first
        """
        frame = as_bgr(frame)
        height, width = frame.shape[:2]

        if window is None:
            x1, y1, x2, y2 = 0, 0, width, height
        else:
            x1, y1, x2, y2 = window
            x1, y1 = max(0, x1), max(0, y1)
            x2, y2 = min(width, x2), min(height, y2)

        region = frame[y1:y2, x1:x2]
        if region.size == 0:
            return []

        hsv = cv2.cvtColor(region, cv2.COLOR_BGR2HSV)
        mask = cv2.inRange(
            hsv,
            np.array([0, 0, self.min_brightness], dtype=np.uint8),
            np.array([180, self.max_saturation, 255], dtype=np.uint8),
        )

        num_labels, labels, stats, centroids = cv2.connectedComponentsWithStats(mask, connectivity=8)

        candidates = []
        for label in range(1, num_labels):
            pixel_count = int(stats[label, cv2.CC_STAT_AREA])
            if pixel_count < self.min_pixels or pixel_count > self.max_pixels:
                continue

            component = (labels == label).astype(np.uint8) * 255
            circularity = calculate_circularity(component, pixel_count)
            if circularity < self.min_circularity:
                continue

            brightness = float(hsv[:, :, 2][labels == label].mean())
            cx, cy = centroids[label]

            candidates.append(BlobCandidate(
                x=float(cx) + x1 + 0.5,
                y=float(cy) + y1 + 0.5,
                pixel_count=pixel_count,
                brightness=brightness,
                circularity=circularity,
            ))

        logger.debug(
            f"Blob search {x2 - x1}x{y2 - y1}px: {num_labels - 1} components, "
            f"{len(candidates)} candidates"
        )

        candidates.sort(key=lambda c: c.pixel_count, reverse=True)
        return candidates
