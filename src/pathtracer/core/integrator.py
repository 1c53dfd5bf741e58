"""Path tracing integrator for Monte Carlo light transport.

This module implements the rendering kernel: primary ray generation, the
bounce loop with material dispatch, the background model and per-pixel
sample accumulation.

Paths are traced iteratively with a carried throughput:
    - miss:      add throughput * background and stop
    - emitted:   add throughput * emission and stop
    - absorbed:  stop (contributes black)
    - scattered: multiply throughput by the attenuation and continue
A path still bouncing after max_depth segments contributes black. There is
no Russian roulette and no direct light sampling, so the estimator is the
plain unbiased depth-capped path tracer.

Every sample draws from its own random stream seeded by (pixel, sample index,
global seed). Results therefore do not depend on how pixels are distributed
over worker threads, and re-rendering with the same seed reproduces the same
image.

Example:
    >>> from pathtracer.core.integrator import setup_render_target, render_image
    >>> setup_render_target(320, 240)
    >>> render_image(num_samples=16, max_depth=8, seed=1)
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from pathtracer.camera.thin_lens import get_ray
from pathtracer.core.ray import is_finite, safe_normalize
from pathtracer.core.sampler import next_float, seed_rng
from pathtracer.materials.dielectric import scatter_dielectric_by_id
from pathtracer.materials.diffuse_light import emit_diffuse_light_by_id
from pathtracer.materials.isotropic import scatter_isotropic_by_id
from pathtracer.materials.lambertian import scatter_lambertian_by_id
from pathtracer.materials.metal import scatter_metal_by_id
from pathtracer.materials.scatter import ABSORBED, EMITTED, make_absorbed
from pathtracer.scene.intersection import intersect_scene
from pathtracer.scene.manager import MaterialType, get_material_type, get_material_type_index

logger = logging.getLogger(__name__)

vec3 = tm.vec3

# =============================================================================
# Rendering Constants
# =============================================================================

# Default maximum number of ray segments per path
MAX_DEPTH = 50

# Ray offset epsilon to avoid self-intersection
RAY_EPSILON = 1e-4

# t_min and t_max for ray intersection
T_MIN = 1e-4
T_MAX = 1e10


class RenderFaultError(RuntimeError):
    """A sample produced a non-finite radiance; the frame is unusable."""


# =============================================================================
# Background
# =============================================================================

BACKGROUND_GRADIENT = 0
BACKGROUND_SOLID = 1


@dataclass(frozen=True)
class Background:
    """Radiance returned by rays that leave the scene.

    Attributes:
        mode: "gradient" for a vertical sky gradient, "solid" for a constant.
        horizon: Gradient color for straight-down rays (and the horizon mix).
        zenith: Gradient color for straight-up rays.
        color: Constant radiance used in "solid" mode.
    """

    mode: Literal["gradient", "solid"] = "gradient"
    horizon: tuple[float, float, float] = (1.0, 1.0, 1.0)
    zenith: tuple[float, float, float] = (0.5, 0.7, 1.0)
    color: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if self.mode not in ("gradient", "solid"):
            raise ValueError(f"Unknown background mode: {self.mode}")

    @classmethod
    def solid(cls, color: tuple[float, float, float]) -> "Background":
        """A constant background."""
        return cls(mode="solid", color=color)

    @classmethod
    def black(cls) -> "Background":
        return cls.solid((0.0, 0.0, 0.0))

    def evaluate(self, direction: Sequence[float]) -> npt.NDArray[np.float64]:
        """Host-side background radiance for a ray direction.

        In gradient mode the unit direction's y component selects
        lerp(zenith, horizon, 0.5 * (1 - y)).
        """
        if self.mode == "solid":
            return np.asarray(self.color, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        y = d[1] / np.linalg.norm(d)
        t = 0.5 * (1.0 - y)
        return (1.0 - t) * np.asarray(self.zenith, dtype=np.float64) + t * np.asarray(
            self.horizon, dtype=np.float64
        )


_background_mode = ti.field(dtype=ti.i32, shape=())
_background_horizon = ti.Vector.field(3, dtype=ti.f32, shape=())
_background_zenith = ti.Vector.field(3, dtype=ti.f32, shape=())
_background_color = ti.Vector.field(3, dtype=ti.f32, shape=())


def setup_background(background: Background) -> None:
    """Write the background model into the device fields."""
    _background_mode[None] = BACKGROUND_GRADIENT if background.mode == "gradient" else BACKGROUND_SOLID
    _background_horizon[None] = list(background.horizon)
    _background_zenith[None] = list(background.zenith)
    _background_color[None] = list(background.color)


@ti.func
def background_radiance(direction: vec3) -> vec3:
    """Radiance seen along an escaping ray."""
    result = _background_color[None]
    if _background_mode[None] == BACKGROUND_GRADIENT:
        unit = safe_normalize(direction)
        t = 0.5 * (1.0 - unit.y)
        result = (1.0 - t) * _background_zenith[None] + t * _background_horizon[None]
    return result


# =============================================================================
# Render Target (Image Buffer)
# =============================================================================

# Preallocated to avoid kernel recompilation
MAX_IMAGE_WIDTH = 2048
MAX_IMAGE_HEIGHT = 2048

_image_width = ti.field(dtype=ti.i32, shape=())
_image_height = ti.field(dtype=ti.i32, shape=())

# Sum of all sample radiances per pixel and the number of samples
_color_sum = ti.Vector.field(3, dtype=ti.f32, shape=(MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT))
_sample_count = ti.field(dtype=ti.i32, shape=(MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT))

# Number of non-finite samples since the target was cleared
_fault_count = ti.field(dtype=ti.i32, shape=())

_render_target_initialized = ti.field(dtype=ti.i32, shape=())


def setup_render_target(width: int, height: int) -> None:
    """Set the active image size and clear the accumulation buffers.

    Args:
        width: Image width in pixels (max MAX_IMAGE_WIDTH).
        height: Image height in pixels (max MAX_IMAGE_HEIGHT).

    Raises:
        ValueError: If a dimension is not positive or exceeds the maximum.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if width > MAX_IMAGE_WIDTH or height > MAX_IMAGE_HEIGHT:
        raise ValueError(
            f"Image dimensions ({width}x{height}) exceed maximum supported "
            f"({MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT})"
        )

    _image_width[None] = width
    _image_height[None] = height
    _render_target_initialized[None] = 1
    clear_render_target()


def clear_render_target() -> None:
    """Clear the accumulation buffers and the fault counter."""
    _color_sum.fill(0.0)
    _sample_count.fill(0)
    _fault_count[None] = 0


def get_image_dimensions() -> tuple[int, int]:
    """Get the current render target dimensions as (width, height)."""
    return int(_image_width[None]), int(_image_height[None])


def _check_render_target_initialized() -> None:
    if _render_target_initialized[None] == 0:
        raise RuntimeError("Render target not set up. Call setup_render_target() first.")


def get_total_samples() -> int:
    """Samples accumulated per pixel (every pixel receives the same count).

    Raises:
        RuntimeError: If the render target has not been set up.
    """
    _check_render_target_initialized()
    return int(_sample_count[0, 0])


def get_fault_count() -> int:
    """Number of non-finite samples seen since the target was cleared."""
    return int(_fault_count[None])


def get_accumulated_numpy() -> npt.NDArray[np.float32]:
    """Get the mean radiance per pixel as an image array.

    Returns:
        Linear (unclamped) radiance of shape (height, width, 3), float32,
        with row 0 at the top of the image. Pixels without samples are 0.

    Raises:
        RuntimeError: If the render target has not been set up.
    """
    _check_render_target_initialized()
    width, height = get_image_dimensions()

    sums = _color_sum.to_numpy()[:width, :height, :]
    counts = _sample_count.to_numpy()[:width, :height].astype(np.float32)
    mean = sums / np.maximum(counts, 1.0)[..., None]

    # (width, height, 3) -> (height, width, 3), bottom-left -> top-left origin
    image = np.flipud(np.transpose(mean, (1, 0, 2)))
    return np.ascontiguousarray(image, dtype=np.float32)


# =============================================================================
# Material Dispatch
# =============================================================================


@ti.func
def _scatter_material(
    material_id: ti.i32,
    incident_direction: vec3,
    normal: vec3,
    front_face: ti.i32,
    rng: ti.u32,
):
    """Dispatch to the scatter function of the hit material.

    Returns:
        A tuple of (ScatterResult, new_rng). Unknown material ids absorb.
    """
    mat_type = get_material_type(material_id)
    type_index = get_material_type_index(material_id)

    result = make_absorbed()
    state = rng

    if mat_type == int(MaterialType.LAMBERTIAN):
        result, state = scatter_lambertian_by_id(type_index, normal, state)
    elif mat_type == int(MaterialType.METAL):
        result, state = scatter_metal_by_id(type_index, incident_direction, normal, state)
    elif mat_type == int(MaterialType.DIELECTRIC):
        result, state = scatter_dielectric_by_id(
            type_index, incident_direction, normal, front_face, state
        )
    elif mat_type == int(MaterialType.DIFFUSE_LIGHT):
        result = emit_diffuse_light_by_id(type_index, front_face)
    elif mat_type == int(MaterialType.ISOTROPIC):
        result, state = scatter_isotropic_by_id(type_index, state)

    return result, state


# =============================================================================
# Path Tracing Core
# =============================================================================


@ti.func
def _offset_ray_origin(point: vec3, normal: vec3, direction: vec3) -> vec3:
    """Push a new ray origin off the surface on the side it travels to.

    Medium scattering events carry a zero normal and are not moved.
    """
    offset_dir = normal
    if tm.dot(direction, normal) < 0.0:
        offset_dir = -normal
    return point + RAY_EPSILON * offset_dir


@ti.func
def trace_ray(origin: vec3, direction: vec3, max_depth: ti.i32, rng: ti.u32):
    """Estimate the radiance arriving along a ray.

    Args:
        origin: The ray origin.
        direction: The ray direction (any non-zero length).
        max_depth: Maximum number of ray segments traced.
        rng: The current random state.

    Returns:
        A tuple of (radiance, new_rng).
    """
    radiance = vec3(0.0, 0.0, 0.0)
    throughput = vec3(1.0, 1.0, 1.0)
    ray_origin = origin
    ray_direction = direction
    state = rng
    active = 1

    for _depth in range(max_depth):
        if active == 1:
            rec, state = intersect_scene(ray_origin, ray_direction, T_MIN, T_MAX, state)

            if rec.hit == 0:
                radiance += throughput * background_radiance(ray_direction)
                active = 0
            else:
                result, state = _scatter_material(
                    rec.material_id, ray_direction, rec.normal, rec.front_face, state
                )

                if result.kind == EMITTED:
                    radiance += throughput * result.attenuation
                    active = 0
                elif result.kind == ABSORBED:
                    active = 0
                else:
                    throughput *= result.attenuation
                    ray_origin = _offset_ray_origin(rec.point, rec.normal, result.direction)
                    ray_direction = result.direction

    return radiance, state


# =============================================================================
# Rendering Kernels
# =============================================================================


@ti.kernel
def _render_pass(
    width: ti.i32,
    height: ti.i32,
    first_sample: ti.i32,
    num_samples: ti.i32,
    max_depth: ti.i32,
    seed: ti.u32,
    jitter: ti.i32,
):
    """Trace num_samples paths per pixel and add them to the accumulators.

    Each pixel is owned by exactly one iteration of the parallel loop, so the
    accumulators need no synchronization; only the fault counter is shared.
    """
    for i, j in ti.ndrange(width, height):
        total = vec3(0.0, 0.0, 0.0)
        for k in range(num_samples):
            rng = seed_rng(i, j, first_sample + k, seed)

            du = 0.5
            dv = 0.5
            if jitter == 1:
                du, rng = next_float(rng)
                dv, rng = next_float(rng)

            s = (ti.cast(i, ti.f32) + du) / ti.cast(width, ti.f32)
            t = (ti.cast(j, ti.f32) + dv) / ti.cast(height, ti.f32)
            ray, rng = get_ray(s, t, rng)
            color, rng = trace_ray(ray.origin, ray.direction, max_depth, rng)

            if is_finite(color) == 0:
                ti.atomic_add(_fault_count[None], 1)
            else:
                total += color

        _color_sum[i, j] += total
        _sample_count[i, j] += num_samples


@ti.kernel
def _trace_single(
    origin: vec3,
    direction: vec3,
    max_depth: ti.i32,
    seed: ti.u32,
) -> vec3:
    rng = seed_rng(0, 0, 0, seed)
    color, rng = trace_ray(origin, direction, max_depth, rng)
    return color


# =============================================================================
# Public Rendering API
# =============================================================================


def render_image(
    num_samples: int = 1,
    max_depth: int = MAX_DEPTH,
    seed: int = 0,
    jitter: bool = True,
) -> int:
    """Accumulate more samples into the render target.

    Sample indices continue from the samples already accumulated, so
    rendering 10 + 10 samples gives the same image as rendering 20.

    Args:
        num_samples: Number of samples to add per pixel.
        max_depth: Maximum number of ray segments per path.
        seed: Global seed mixed into every per-sample stream.
        jitter: Whether to jitter primary rays inside the pixel.

    Returns:
        The total number of non-finite samples seen since the last clear.

    Raises:
        RuntimeError: If the render target has not been set up.
        ValueError: If num_samples or max_depth is not positive.
    """
    _check_render_target_initialized()
    if num_samples <= 0:
        raise ValueError(f"num_samples must be positive, got {num_samples}")
    if max_depth <= 0:
        raise ValueError(f"max_depth must be positive, got {max_depth}")

    width, height = get_image_dimensions()
    _render_pass(
        width,
        height,
        get_total_samples(),
        num_samples,
        max_depth,
        seed & 0xFFFFFFFF,
        1 if jitter else 0,
    )
    return get_fault_count()


def trace(
    origin: Sequence[float],
    direction: Sequence[float],
    max_depth: int = MAX_DEPTH,
    seed: int = 0,
) -> tuple[float, float, float]:
    """Trace one path from Python and return its radiance (for debugging)."""
    color = _trace_single(
        vec3(*[float(x) for x in origin]),
        vec3(*[float(x) for x in direction]),
        max_depth,
        seed & 0xFFFFFFFF,
    )
    return (float(color[0]), float(color[1]), float(color[2]))
