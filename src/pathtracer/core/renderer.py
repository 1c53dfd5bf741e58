"""Render scheduling: progressive accumulation, frames and animations.

The integrator owns the device buffers and the render kernel. This module
drives it from the host:
- ProgressiveRenderer accumulates samples in batches, reports progress and
  checks the fault counter after every batch
- FrameBuffer is the immutable result of a finished frame
- render_frame() and render_animation() are the entry points used by the
  command line tools

Work inside a batch is spread over the Taichi worker threads configured by
init_taichi(). Every pixel draws from its own seeded random streams, so the
image does not depend on the worker count.

Example:
    >>> from pathtracer.config import RenderConfig, init_taichi
    >>> config = RenderConfig(width=320, height=240, samples_per_pixel=32)
    >>> init_taichi(config)
    >>> from pathtracer.core.renderer import render_frame
    >>> from pathtracer.scene.presets import create_spheres_scene
    >>> scene, camera, background = create_spheres_scene(config.aspect_ratio)
    >>> frame = render_frame(scene, camera, config, background=background)
    >>> frame.to_uint8().shape
    (240, 320, 3)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from pathtracer.camera.thin_lens import Camera, orbit_sequence, setup_camera
from pathtracer.config import RenderConfig, ToneMap
from pathtracer.core.integrator import (
    Background,
    RenderFaultError,
    clear_render_target,
    get_accumulated_numpy,
    get_fault_count,
    get_total_samples,
    render_image,
    setup_background,
    setup_render_target,
)
from pathtracer.scene.manager import SceneManager

logger = logging.getLogger(__name__)

# Type alias for progress callback
# Callback receives (current_samples, total_target_samples)
ProgressCallback = Callable[[int, int], None]

# Receives (frame_index, frame) for every finished animation frame
FrameSink = Callable[[int, "FrameBuffer"], None]


@dataclass(frozen=True)
class FrameBuffer:
    """A finished frame.

    Attributes:
        linear: Mean radiance per pixel, shape (height, width, 3), float32,
            row 0 at the top. Values are not clamped.
        samples: Samples per pixel averaged into the frame.
    """

    linear: npt.NDArray[np.float32]
    samples: int

    @property
    def width(self) -> int:
        return int(self.linear.shape[1])

    @property
    def height(self) -> int:
        return int(self.linear.shape[0])

    def to_display(
        self,
        gamma: float = 2.2,
        tone_map: ToneMap = "none",
        exposure: float = 1.0,
    ) -> npt.NDArray[np.float32]:
        """Tone map, gamma-encode and clamp the frame to [0, 1]."""
        from pathtracer.preview.display import process_image_for_display

        return process_image_for_display(
            self.linear, tone_map=tone_map, gamma=gamma, exposure=exposure
        )

    def to_uint8(
        self,
        gamma: float = 2.2,
        tone_map: ToneMap = "none",
        exposure: float = 1.0,
    ) -> npt.NDArray[np.uint8]:
        """Convert the frame to 8-bit RGB."""
        from pathtracer.preview.export import image_to_uint8

        return image_to_uint8(self.linear, tone_map=tone_map, gamma=gamma, exposure=exposure)


class ProgressiveRenderer:
    """A progressive renderer that accumulates samples over time.

    The renderer keeps the image size and delegates storage to the global
    integrator buffers (which are Taichi fields). Only one renderer should be
    active at a time.

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
        max_depth: Maximum number of ray segments per path.
        seed: Global seed for the per-sample random streams.
        jitter: Whether primary rays are jittered inside the pixel.
    """

    def __init__(
        self,
        width: int,
        height: int,
        *,
        max_depth: int = 50,
        seed: int = 0,
        jitter: bool = True,
    ) -> None:
        """Initialize the progressive renderer.

        Args:
            width: Image width in pixels (max 2048).
            height: Image height in pixels (max 2048).
            max_depth: Maximum number of ray segments per path.
            seed: Global seed for the per-sample random streams.
            jitter: Whether primary rays are jittered inside the pixel.

        Raises:
            ValueError: If dimensions are invalid or max_depth is not positive.
        """
        if max_depth <= 0:
            raise ValueError(f"max_depth must be positive, got {max_depth}")
        self._width = width
        self._height = height
        self.max_depth = max_depth
        self.seed = seed
        self.jitter = jitter
        setup_render_target(width, height)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def sample_count(self) -> int:
        """Get the current number of accumulated samples per pixel."""
        return get_total_samples()

    def reset(self) -> None:
        """Clear the accumulated samples and the fault counter."""
        clear_render_target()

    def _render_batch(self, batch: int) -> None:
        faults = render_image(batch, max_depth=self.max_depth, seed=self.seed, jitter=self.jitter)
        if faults > 0:
            raise RenderFaultError(
                f"{faults} sample(s) produced non-finite radiance; frame aborted"
            )

    def render(
        self,
        num_samples: int = 1,
        batch_size: int = 1,
        callback: ProgressCallback | None = None,
    ) -> None:
        """Render samples progressively with optional progress callback.

        Accumulates the specified number of samples into the existing buffer.
        Can be called multiple times to continue refining the image.

        Args:
            num_samples: Total number of samples to add.
            batch_size: Number of samples to render before each callback.
            callback: Optional callback function called after each batch.
                Receives (current_total_samples, target_total_samples).

        Raises:
            RenderFaultError: If any sample produced a non-finite value.
        """
        for current, target in self.render_progressive(num_samples, batch_size):
            if callback is not None:
                callback(current, target)

    def render_progressive(
        self,
        num_samples: int = 1,
        batch_size: int = 1,
    ) -> Generator[tuple[int, int], None, None]:
        """Render samples progressively, yielding progress after each batch.

        Args:
            num_samples: Total number of samples to add.
            batch_size: Number of samples to render before each yield.

        Yields:
            Tuple of (current_total_samples, target_total_samples).

        Raises:
            ValueError: If batch_size is not positive.
            RenderFaultError: If any sample produced a non-finite value.
        """
        if num_samples <= 0:
            return
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        target_samples = self.sample_count + num_samples

        remaining = num_samples
        while remaining > 0:
            batch = min(batch_size, remaining)
            self._render_batch(batch)
            remaining -= batch
            yield (self.sample_count, target_samples)

    def frame_buffer(self) -> FrameBuffer:
        """Snapshot the accumulated image.

        Raises:
            RenderFaultError: If a non-finite sample was recorded.
        """
        faults = get_fault_count()
        if faults > 0:
            raise RenderFaultError(
                f"{faults} sample(s) produced non-finite radiance; frame aborted"
            )
        return FrameBuffer(linear=get_accumulated_numpy(), samples=self.sample_count)

    def __repr__(self) -> str:
        return (
            f"ProgressiveRenderer(width={self.width}, height={self.height}, "
            f"samples={self.sample_count})"
        )


def render_frame(
    scene: SceneManager,
    camera: Camera,
    config: RenderConfig,
    *,
    background: Background | None = None,
    callback: ProgressCallback | None = None,
) -> FrameBuffer:
    """Render one frame of a scene.

    Builds the scene acceleration structure if needed, uploads the camera and
    background, then accumulates config.samples_per_pixel samples in batches
    of config.batch_size.

    Args:
        scene: The scene to render.
        camera: The camera to render from. Its aspect ratio should match
            config.width / config.height.
        config: The render configuration.
        background: Radiance for escaping rays. Defaults to the sky gradient.
        callback: Optional progress callback, see ProgressiveRenderer.render.

    Returns:
        The finished frame.

    Raises:
        RenderFaultError: If any sample produced a non-finite value.
    """
    scene.build()
    setup_camera(camera)
    setup_background(background if background is not None else Background())

    renderer = ProgressiveRenderer(
        config.width,
        config.height,
        max_depth=config.max_depth,
        seed=config.seed,
        jitter=config.jitter,
    )

    start = time.perf_counter()
    renderer.render(config.samples_per_pixel, batch_size=config.batch_size, callback=callback)
    elapsed = time.perf_counter() - start

    logger.info(
        "Rendered %dx%d at %d spp in %.2fs",
        config.width,
        config.height,
        config.samples_per_pixel,
        elapsed,
    )
    return renderer.frame_buffer()


def render_animation(
    scene: SceneManager,
    camera: Camera,
    config: RenderConfig,
    frames: int,
    sink: FrameSink,
    *,
    pivot: Sequence[float] | None = None,
    background: Background | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> int:
    """Render a full orbit of the camera around a pivot.

    Frame i is rendered from camera.orbit(2 * pi * i / frames, pivot) and
    passed to the sink before the next frame starts.

    Args:
        scene: The scene to render.
        camera: The camera for frame 0.
        config: The render configuration used for every frame.
        frames: Number of frames in the orbit.
        sink: Receives (frame_index, FrameBuffer) for every finished frame.
        pivot: Orbit center. Defaults to the camera's look-at point.
        background: Radiance for escaping rays. Defaults to the sky gradient.
        should_stop: Polled before each frame; returning True ends the
            animation early.

    Returns:
        The number of frames delivered to the sink.

    Raises:
        ValueError: If frames is not positive.
        RenderFaultError: If any sample of any frame was non-finite. Frames
            already delivered stay delivered.
    """
    delivered = 0
    for index, frame_camera in enumerate(orbit_sequence(camera, frames, pivot)):
        if should_stop is not None and should_stop():
            logger.info("Animation stopped after %d of %d frames", delivered, frames)
            break

        frame = render_frame(scene, frame_camera, config, background=background)
        sink(index, frame)
        delivered += 1
        logger.info("Frame %d/%d done", index + 1, frames)

    return delivered
