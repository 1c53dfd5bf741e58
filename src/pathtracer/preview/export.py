"""Image sinks for finished frames.

Supported formats:
    - PNG (8-bit RGB via Pillow)
    - PPM (plain-text P3, no dependencies)

Both sinks accept either a FrameBuffer or a linear float image of shape
(H, W, 3) with row 0 at the top.

Example:
    >>> from pathtracer.preview.export import frame_path, save_png
    >>> save_png(frame, frame_path("out", 0))
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Union

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from pathtracer.preview.display import ToneMapMethod, process_image_for_display

if TYPE_CHECKING:
    from pathtracer.core.renderer import FrameBuffer

logger = logging.getLogger(__name__)

ImageSource = Union["FrameBuffer", npt.NDArray[np.floating]]


def _linear(image: ImageSource) -> npt.NDArray[np.float32]:
    linear = getattr(image, "linear", image)
    array = np.asarray(linear, dtype=np.float32)
    if array.ndim != 3 or array.shape[2] != 3:
        raise ValueError(f"Expected an image of shape (H, W, 3), got {array.shape}")
    return array


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear float32 image to uint8.

    Display values in [0, 1] map to floor(256 * min(x, 0.999)), which spreads
    the 256 output levels evenly over the input range.

    Args:
        image: Linear HDR image array of shape (H, W, 3).
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma correction value.
        exposure: Exposure value for exposure tone mapping.

    Returns:
        8-bit image array of shape (H, W, 3).
    """
    processed = process_image_for_display(
        image, tone_map=tone_map, gamma=gamma, exposure=exposure
    )
    return np.floor(256.0 * np.clip(processed, 0.0, 0.999)).astype(np.uint8)


def save_png(
    image: ImageSource,
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> Path:
    """Save a frame as an 8-bit RGB PNG.

    Args:
        image: A FrameBuffer or a linear image array of shape (H, W, 3).
        filepath: Output file path. Missing parent directories are created.
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma correction value.
        exposure: Exposure value for exposure tone mapping.

    Returns:
        The path written.
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)

    pixels = image_to_uint8(_linear(image), tone_map=tone_map, gamma=gamma, exposure=exposure)
    PILImage.fromarray(pixels).save(path)
    logger.debug("Wrote %s (%dx%d)", path, pixels.shape[1], pixels.shape[0])
    return path


def save_ppm(
    image: ImageSource,
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> Path:
    """Save a frame as a plain-text PPM (P3) image.

    The file holds the header "P3", the dimensions, the maximum value 255,
    then one "r g b" line per pixel from the top-left corner in row order.
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)

    pixels = image_to_uint8(_linear(image), tone_map=tone_map, gamma=gamma, exposure=exposure)
    height, width = pixels.shape[:2]

    lines = [f"P3\n{width} {height}\n255\n"]
    lines.extend(f"{r} {g} {b}\n" for r, g, b in pixels.reshape(-1, 3).tolist())
    path.write_text("".join(lines), encoding="ascii")
    logger.debug("Wrote %s (%dx%d)", path, width, height)
    return path


def frame_path(directory: str | Path, index: int, extension: str = "png") -> Path:
    """Path of an animation frame: <directory>/frame_<index:04d>.<extension>.

    Raises:
        ValueError: If index is negative.
    """
    if index < 0:
        raise ValueError(f"Frame index must be non-negative, got {index}")
    return Path(directory) / f"frame_{index:04d}.{extension.lstrip('.')}"


def compute_rmse(
    image_a: npt.NDArray[np.floating],
    image_b: npt.NDArray[np.floating],
) -> float:
    """Compute root mean squared error between two images.

    Raises:
        ValueError: If image shapes don't match.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(
            f"Image shapes must match: {image_a.shape} vs {image_b.shape}"
        )

    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
