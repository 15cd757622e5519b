"""Coordinate system conversions for ball tracking.

Handles conversions between the coordinate systems in play:
- Detector space: origin bottom-left, Y increases upward (0-1 normalized),
  laid out like the raw frame buffer
- Display space: origin top-left, Y increases downward (0-1 normalized),
  upright as the user sees the video
- Pixel space: origin top-left, raw frame buffer pixels
- Preview space: points in a preview view that may letterbox or crop the video

Every function is pure. Frame size and orientation travel in immutable context
values; there is no shared converter state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from shottracer.models.trajectory import NormalizedPoint, NormalizedRect


class OrientationError(ValueError):
    """Raised for an unrecognized video orientation (programming error)."""


class Orientation(Enum):
    """Video orientations, numbered like EXIF / CGImagePropertyOrientation."""

    UP = 1
    UP_MIRRORED = 2
    DOWN = 3
    DOWN_MIRRORED = 4
    LEFT_MIRRORED = 5
    RIGHT = 6
    RIGHT_MIRRORED = 7
    LEFT = 8

    @property
    def is_rotated(self) -> bool:
        """True when the buffer's width is the display's height."""
        return self in _ROTATED


_ROTATED = frozenset({
    Orientation.LEFT,
    Orientation.RIGHT,
    Orientation.LEFT_MIRRORED,
    Orientation.RIGHT_MIRRORED,
})


_Transform = Callable[[float, float], tuple[float, float]]

# Upright (display layout) -> buffer layout, both top-left origin
_APPLY: dict[Orientation, _Transform] = {
    Orientation.UP: lambda x, y: (x, y),
    Orientation.UP_MIRRORED: lambda x, y: (1.0 - x, y),
    Orientation.DOWN: lambda x, y: (1.0 - x, 1.0 - y),
    Orientation.DOWN_MIRRORED: lambda x, y: (x, 1.0 - y),
    Orientation.LEFT_MIRRORED: lambda x, y: (y, x),
    Orientation.RIGHT: lambda x, y: (y, 1.0 - x),  # 90° CW, iPhone portrait
    Orientation.RIGHT_MIRRORED: lambda x, y: (1.0 - y, 1.0 - x),
    Orientation.LEFT: lambda x, y: (1.0 - y, x),  # 90° CCW
}

# Buffer layout -> upright; mirrors and 180° are their own inverse
_REMOVE: dict[Orientation, _Transform] = {
    Orientation.UP: lambda x, y: (x, y),
    Orientation.UP_MIRRORED: lambda x, y: (1.0 - x, y),
    Orientation.DOWN: lambda x, y: (1.0 - x, 1.0 - y),
    Orientation.DOWN_MIRRORED: lambda x, y: (x, 1.0 - y),
    Orientation.LEFT_MIRRORED: lambda x, y: (y, x),
    Orientation.RIGHT: lambda x, y: (1.0 - y, x),
    Orientation.RIGHT_MIRRORED: lambda x, y: (1.0 - y, 1.0 - x),
    Orientation.LEFT: lambda x, y: (y, 1.0 - x),
}


def as_orientation(value) -> Orientation:
    """Coerce an Orientation or its raw value, failing fast on anything else.

    Raises:
        OrientationError: If value is not one of the 8 orientations.
    """
    if isinstance(value, Orientation):
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise OrientationError(f"Unrecognized orientation: {value!r}")
    try:
        return Orientation(value)
    except ValueError:
        raise OrientationError(f"Unrecognized orientation: {value!r}") from None


def _lookup(table: dict[Orientation, _Transform], orientation) -> _Transform:
    return table[as_orientation(orientation)]


# ---------------------------------------------------------------------------
# Point conversions
# ---------------------------------------------------------------------------


def display_to_detector(point: NormalizedPoint) -> NormalizedPoint:
    """Flip Y only (top-left origin -> bottom-left origin)."""
    return NormalizedPoint(point.x, 1.0 - point.y)


def detector_to_display(point: NormalizedPoint) -> NormalizedPoint:
    """Flip Y only (bottom-left origin -> top-left origin)."""
    return NormalizedPoint(point.x, 1.0 - point.y)


def apply_orientation(point: NormalizedPoint, orientation) -> NormalizedPoint:
    """Map an upright point onto the frame buffer's layout."""
    x, y = _lookup(_APPLY, orientation)(point.x, point.y)
    return NormalizedPoint(x, y)


def remove_orientation(point: NormalizedPoint, orientation) -> NormalizedPoint:
    """Map a frame-buffer point back to the upright layout."""
    x, y = _lookup(_REMOVE, orientation)(point.x, point.y)
    return NormalizedPoint(x, y)


def to_detector_space(point: NormalizedPoint, orientation) -> NormalizedPoint:
    """Display-space point -> detector-space point for the given orientation."""
    return display_to_detector(apply_orientation(point, orientation))


def to_display(point: NormalizedPoint, orientation) -> NormalizedPoint:
    """Detector-space point -> display-space point for the given orientation."""
    return remove_orientation(detector_to_display(point), orientation)


# ---------------------------------------------------------------------------
# Rect conversions
# ---------------------------------------------------------------------------


def _convert_rect(
    rect: NormalizedRect,
    convert: Callable[[NormalizedPoint, Orientation], NormalizedPoint],
    orientation,
) -> NormalizedRect:
    # Every orientation maps axis-aligned rects to axis-aligned rects, so the
    # two opposite corners are enough
    a = convert(NormalizedPoint(rect.x, rect.y), orientation)
    b = convert(NormalizedPoint(rect.max_x, rect.max_y), orientation)
    return NormalizedRect.from_bounds(
        min(a.x, b.x), min(a.y, b.y), max(a.x, b.x), max(a.y, b.y)
    )


def rect_to_detector_space(rect: NormalizedRect, orientation) -> NormalizedRect:
    """Display-space rect -> detector-space rect (origin at its bottom-left)."""
    return _convert_rect(rect, to_detector_space, orientation)


def rect_to_display(rect: NormalizedRect, orientation) -> NormalizedRect:
    """Detector-space rect -> display-space rect (origin at its top-left)."""
    return _convert_rect(rect, to_display, orientation)


# ---------------------------------------------------------------------------
# Pixel conversions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoordinateContext:
    """Frame geometry needed for pixel conversions.

    Attributes:
        frame_width: Raw buffer width in pixels
        frame_height: Raw buffer height in pixels
        orientation: How the buffer must be rotated/mirrored for display
    """

    frame_width: int
    frame_height: int
    orientation: Orientation = Orientation.UP

    def __post_init__(self):
        if self.frame_width <= 0 or self.frame_height <= 0:
            raise ValueError(
                f"Frame size must be positive, got {self.frame_width}x{self.frame_height}"
            )
        object.__setattr__(self, "orientation", as_orientation(self.orientation))

    @property
    def display_size(self) -> tuple[int, int]:
        return effective_size(self.frame_width, self.frame_height, self.orientation)


def normalized_to_pixels(point: NormalizedPoint, width: int, height: int) -> tuple[float, float]:
    """Convert normalized coordinates (0-1) to pixel coordinates."""
    return (point.x * width, point.y * height)


def pixels_to_normalized(x: float, y: float, width: int, height: int) -> NormalizedPoint:
    """Convert pixel coordinates to normalized (0-1)."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Frame size must be positive, got {width}x{height}")
    return NormalizedPoint(x / width, y / height)


def display_to_pixels(point: NormalizedPoint, context: CoordinateContext) -> tuple[float, float]:
    """Display-space point -> raw buffer pixel coordinates."""
    buffer_point = apply_orientation(point, context.orientation)
    return normalized_to_pixels(buffer_point, context.frame_width, context.frame_height)


def pixels_to_display(x: float, y: float, context: CoordinateContext) -> NormalizedPoint:
    """Raw buffer pixel coordinates -> display-space point."""
    buffer_point = pixels_to_normalized(x, y, context.frame_width, context.frame_height)
    return remove_orientation(buffer_point, context.orientation)


def display_rect_to_pixels(
    rect: NormalizedRect,
    context: CoordinateContext,
) -> tuple[int, int, int, int]:
    """Display-space rect -> (x_min, y_min, x_max, y_max) in buffer pixels.

    The result is clamped to the frame and suitable for array slicing.
    """
    a = apply_orientation(NormalizedPoint(rect.x, rect.y), context.orientation)
    b = apply_orientation(NormalizedPoint(rect.max_x, rect.max_y), context.orientation)

    x1 = int(min(a.x, b.x) * context.frame_width)
    y1 = int(min(a.y, b.y) * context.frame_height)
    x2 = int(round(max(a.x, b.x) * context.frame_width))
    y2 = int(round(max(a.y, b.y) * context.frame_height))

    return (
        max(0, x1),
        max(0, y1),
        min(context.frame_width, x2),
        min(context.frame_height, y2),
    )


def effective_size(width: int, height: int, orientation) -> tuple[int, int]:
    """Size of the frame once displayed upright."""
    if as_orientation(orientation).is_rotated:
        return (height, width)
    return (width, height)


def orientation_from_transform(a: float, b: float, c: float, d: float) -> Orientation:
    """Orientation of a video track from its preferred affine transform.

    Raises:
        OrientationError: If the transform is not a pure 90° rotation.
    """
    key = (round(a), round(b), round(c), round(d))
    if max(abs(a - key[0]), abs(b - key[1]), abs(c - key[2]), abs(d - key[3])) > 1e-6:
        raise OrientationError(f"Transform is not a quarter rotation: {(a, b, c, d)}")

    mapping = {
        (1, 0, 0, 1): Orientation.UP,
        (0, 1, -1, 0): Orientation.RIGHT,
        (0, -1, 1, 0): Orientation.LEFT,
        (-1, 0, 0, -1): Orientation.DOWN,
    }
    if key not in mapping:
        raise OrientationError(f"Unrecognized track transform: {(a, b, c, d)}")
    return mapping[key]


# ---------------------------------------------------------------------------
# Preview conversions
# ---------------------------------------------------------------------------


class VideoGravity(Enum):
    """How a preview view fits the video."""

    RESIZE = "resize"  # Stretch to fill
    RESIZE_ASPECT = "resize_aspect"  # Letterbox/pillarbox
    RESIZE_ASPECT_FILL = "resize_aspect_fill"  # Fill and crop


@dataclass(frozen=True)
class PreviewContext:
    """Geometry of a preview view showing the video."""

    video_width: int
    video_height: int
    preview_width: float
    preview_height: float
    orientation: Orientation = Orientation.UP
    gravity: VideoGravity = VideoGravity.RESIZE_ASPECT_FILL

    def __post_init__(self):
        if self.video_width <= 0 or self.video_height <= 0:
            raise ValueError(f"Video size must be positive, got {self.video_width}x{self.video_height}")
        if self.preview_width <= 0 or self.preview_height <= 0:
            raise ValueError(
                f"Preview size must be positive, got {self.preview_width}x{self.preview_height}"
            )
        object.__setattr__(self, "orientation", as_orientation(self.orientation))


def video_rect_in_preview(context: PreviewContext) -> tuple[float, float, float, float]:
    """Rect (x, y, width, height) the upright video occupies in the preview.

    With RESIZE_ASPECT_FILL the rect overflows the preview on one axis.
    """
    video_w, video_h = effective_size(context.video_width, context.video_height, context.orientation)
    preview_w, preview_h = context.preview_width, context.preview_height

    video_aspect = video_w / video_h
    preview_aspect = preview_w / preview_h

    if context.gravity is VideoGravity.RESIZE:
        return (0.0, 0.0, preview_w, preview_h)

    wider = video_aspect > preview_aspect
    if context.gravity is VideoGravity.RESIZE_ASPECT:
        fit_width = wider
    else:
        fit_width = not wider

    if fit_width:
        height = preview_w / video_aspect
        return (0.0, (preview_h - height) / 2, preview_w, height)
    width = preview_h * video_aspect
    return ((preview_w - width) / 2, 0.0, width, preview_h)


def normalized_to_preview(point: NormalizedPoint, context: PreviewContext) -> tuple[float, float]:
    """Display-space point -> preview view point."""
    x, y, width, height = video_rect_in_preview(context)
    return (x + point.x * width, y + point.y * height)


def preview_to_normalized(px: float, py: float, context: PreviewContext) -> NormalizedPoint:
    """Preview view point -> display-space point (may fall outside 0-1)."""
    x, y, width, height = video_rect_in_preview(context)
    return NormalizedPoint((px - x) / width, (py - y) / height)
