"""Render configuration and Taichi runtime initialization.

All knobs that control a render are carried by a single RenderConfig value
that is passed explicitly into the render entry points. The Taichi runtime
itself is process-global, so the worker count and backend are applied once
through init_taichi().

Example:
    >>> from pathtracer.config import RenderConfig, init_taichi
    >>> config = RenderConfig(width=320, height=240, samples_per_pixel=16, seed=7)
    >>> init_taichi(config)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Literal

import taichi as ti

logger = logging.getLogger(__name__)

# Type alias for tone mapping options (mirrors preview.display.ToneMapMethod)
ToneMap = Literal["none", "reinhard", "exposure"]
Arch = Literal["cpu", "gpu"]

_ARCHES = {"cpu": ti.cpu, "gpu": ti.gpu}


@dataclass(frozen=True)
class RenderConfig:
    """Configuration for rendering a single frame or an animation.

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
        samples_per_pixel: Number of primary samples averaged per pixel.
        max_depth: Maximum number of ray segments traced per sample. A path
            that is still bouncing when this cap is reached contributes black.
        seed: Global seed mixed into every per-pixel random stream.
        num_workers: Number of CPU worker threads. None uses every core.
        batch_size: Samples rendered per kernel launch (progress granularity).
        jitter: Whether primary rays are jittered within the pixel footprint.
            When disabled every sample goes through the pixel center.
        gamma: Display gamma applied when converting to 8-bit output.
        tone_map: Tone mapping operator applied before gamma.
        exposure: Exposure used by the "exposure" tone mapping operator.
        arch: Taichi backend to run kernels on.
    """

    width: int = 640
    height: int = 480
    samples_per_pixel: int = 100
    max_depth: int = 50
    seed: int = 0
    num_workers: int | None = None
    batch_size: int = 10
    jitter: bool = True
    gamma: float = 2.2
    tone_map: ToneMap = "none"
    exposure: float = 1.0
    arch: Arch = "cpu"

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Image dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.samples_per_pixel <= 0:
            raise ValueError(
                f"samples_per_pixel must be positive, got {self.samples_per_pixel}"
            )
        if self.max_depth <= 0:
            raise ValueError(f"max_depth must be positive, got {self.max_depth}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.num_workers is not None and self.num_workers <= 0:
            raise ValueError(f"num_workers must be positive, got {self.num_workers}")
        if not 0 <= self.seed < 2**32:
            raise ValueError(f"seed must fit in an unsigned 32-bit integer, got {self.seed}")
        if self.gamma <= 0.0:
            raise ValueError(f"gamma must be positive, got {self.gamma}")
        if self.tone_map not in ("none", "reinhard", "exposure"):
            raise ValueError(f"Unknown tone mapping method: {self.tone_map}")
        if self.arch not in _ARCHES:
            raise ValueError(f"Unknown arch {self.arch!r}, expected one of {sorted(_ARCHES)}")

    @property
    def aspect_ratio(self) -> float:
        """Width divided by height."""
        return self.width / self.height

    def resolved_workers(self) -> int:
        """Get the worker count, defaulting to every available core."""
        if self.num_workers is not None:
            return self.num_workers
        return os.cpu_count() or 1

    def with_overrides(self, **changes: object) -> RenderConfig:
        """Return a copy with the given fields replaced (validated again)."""
        return replace(self, **changes)


@dataclass(frozen=True)
class PresetInfo:
    """Defaults of a predefined scene.

    Attributes:
        name: Preset name.
        width: Default image width.
        height: Default image height.
        samples_per_pixel: Default sample count.
        orbit_pivot: Point the animation orbits around.
    """

    name: str
    width: int
    height: int
    samples_per_pixel: int
    orbit_pivot: tuple[float, float, float]


# Kept here rather than in scene.presets so it can be read before init_taichi()
PRESETS: dict[str, PresetInfo] = {
    "spheres": PresetInfo("spheres", 640, 480, 100, (0.0, 0.0, -1.0)),
    "cornell": PresetInfo("cornell", 512, 512, 10000, (278.0, 273.0, 279.6)),
    "balls": PresetInfo("balls", 640, 480, 100, (0.0, 0.0, -10.0)),
}

# Numeric selectors accepted by the command line
_NUMBERED = {"1": "spheres", "2": "cornell", "3": "balls"}


def resolve_preset_name(name: str | int) -> str:
    """Map "1"/"2"/"3" or a preset name to the preset name.

    Raises:
        ValueError: If the preset is unknown.
    """
    key = str(name).strip().lower()
    key = _NUMBERED.get(key, key)
    if key not in PRESETS:
        raise ValueError(
            f"Unknown scene {name!r}, expected one of {sorted(PRESETS)} or 1-{len(_NUMBERED)}"
        )
    return key


def init_taichi(config: RenderConfig) -> None:
    """Initialize the Taichi runtime for the given configuration.

    Must be called once per process before any module holding Taichi fields
    is imported. fast_math is disabled so that non-finite radiance values
    are still detectable after compilation.

    Args:
        config: The render configuration supplying backend, worker count
            and seed.
    """
    workers = config.resolved_workers()
    logger.info("Initializing Taichi (arch=%s, workers=%d)", config.arch, workers)
    ti.init(
        arch=_ARCHES[config.arch],
        cpu_max_num_threads=workers,
        random_seed=config.seed,
        fast_math=False,
    )
