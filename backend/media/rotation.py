"""
Remote preview geometry (pure).

The remote stream is VIDEO_WIDTH x VIDEO_HEIGHT and arrives rotated by the
peer's camera orientation. The view scales the stream so its longer side
fills the view's longer side, then rotates around the view center.
"""

from __future__ import annotations

from dataclasses import dataclass

from spec import VIDEO_HEIGHT, VIDEO_WIDTH


@dataclass(frozen=True)
class ViewTransform:
    degrees: int
    center_x: float
    center_y: float
    scale_x: float
    scale_y: float


def rotation_transform(
    degrees: int,
    view_width: int,
    view_height: int,
    *,
    video_width: int = VIDEO_WIDTH,
    video_height: int = VIDEO_HEIGHT,
) -> ViewTransform:
    """
    Compute the rotate-and-scale transform for a view of the given size.

    Raises:
        ValueError if the view has no area.
    """
    if view_width <= 0 or view_height <= 0:
        raise ValueError("view dimensions must be > 0")

    ratio = video_width / video_height
    longest = max(view_width, view_height)

    scaled_height = longest
    scaled_width = round(longest * ratio)

    return ViewTransform(
        degrees=degrees % 360,
        center_x=view_width / 2,
        center_y=view_height / 2,
        scale_x=scaled_width / view_width,
        scale_y=scaled_height / view_height,
    )
