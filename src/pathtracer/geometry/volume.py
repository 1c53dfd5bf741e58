"""Constant-density participating media.

A ray entering the medium travels a random free-flight distance
-ln(xi) / density (exponentially distributed) before it scatters. If that
distance exceeds the length of the ray segment inside the boundary, the
ray passes through without interacting. The scattering event itself is
handled by the isotropic material assigned to the volume.

Two boundary shapes are supported: a sphere, and a box given by its center
and three half-span vectors (which may be rotated or sheared). The box is
stored as the inverse of its span matrix, which maps world space onto the
cube [-1, 1]^3.

Scattering records carry a zero normal: a point inside a medium has no
surface orientation, and the integrator does not offset rays leaving it.
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from pathtracer.core.sampler import next_float

from .aabb import safe_inverse_direction
from .sphere import HitRecord, Sphere, hit_sphere, make_miss_record

vec3 = tm.vec3
mat3 = tm.mat3

# Parametric range used to find boundary crossings on both sides of the origin
_BOUNDARY_T = 1e30
# Gap between the entry root and the search for the exit root
_EXIT_GAP = 1e-4
# Span matrices with a smaller |determinant| describe a flat box
MIN_BOX_DETERMINANT = 1e-12


def box_inverse_basis(
    half_i: npt.ArrayLike,
    half_j: npt.ArrayLike,
    half_k: npt.ArrayLike,
) -> npt.NDArray[np.float64]:
    """Inverse of the matrix whose columns are the three half-spans.

    Raises:
        ValueError: If the spans do not enclose any volume.
    """
    basis = np.column_stack(
        [np.asarray(v, dtype=np.float64) for v in (half_i, half_j, half_k)]
    )
    if abs(np.linalg.det(basis)) < MIN_BOX_DETERMINANT:
        raise ValueError("Box half-spans are linearly dependent; the box has no volume")
    return np.linalg.inv(basis)


@ti.func
def _sphere_span(ray_origin: vec3, ray_direction: vec3, boundary: Sphere):
    """Entry and exit parameters of a line through a sphere.

    Returns:
        A tuple (found, t_in, t_out). Either root may lie behind the origin.
    """
    found = 0
    t_in = 0.0
    t_out = 0.0
    entry = hit_sphere(ray_origin, ray_direction, boundary, -_BOUNDARY_T, _BOUNDARY_T)
    if entry.hit == 1:
        exit_rec = hit_sphere(
            ray_origin, ray_direction, boundary, entry.t + _EXIT_GAP, _BOUNDARY_T
        )
        if exit_rec.hit == 1:
            found = 1
            t_in = entry.t
            t_out = exit_rec.t
    return found, t_in, t_out


@ti.func
def _box_span(ray_origin: vec3, ray_direction: vec3, center: vec3, inv_basis: mat3):
    """Entry and exit parameters of a line through a parallelepiped.

    The line is mapped into box coordinates, where the box is [-1, 1]^3.
    The mapping is linear, so the slab parameters are world parameters.

    Returns:
        A tuple (found, t_in, t_out).
    """
    local_origin = inv_basis @ (ray_origin - center)
    local_direction = inv_basis @ ray_direction
    inv_direction = safe_inverse_direction(local_direction)

    t_in = -_BOUNDARY_T
    t_out = _BOUNDARY_T
    for axis in ti.static(range(3)):
        t0 = (-1.0 - local_origin[axis]) * inv_direction[axis]
        t1 = (1.0 - local_origin[axis]) * inv_direction[axis]
        t_in = tm.max(t_in, tm.min(t0, t1))
        t_out = tm.min(t_out, tm.max(t0, t1))

    found = 0
    if t_in < t_out:
        found = 1
    return found, t_in, t_out


@ti.func
def _scatter_in_span(
    ray_origin: vec3,
    ray_direction: vec3,
    t_in: ti.f32,
    t_out: ti.f32,
    density: ti.f32,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Place a free-flight scattering event on the in-medium segment."""
    result = make_miss_record()
    state = rng

    t_enter = tm.max(t_in, t_min)
    t_exit = tm.min(t_out, t_max)
    if density > 0.0 and t_enter < t_exit:
        ray_length = tm.length(ray_direction)
        distance_inside = (t_exit - t_enter) * ray_length
        xi, state = next_float(state)
        # 1 - xi lies in (0, 1], so the log is finite
        hit_distance = -ti.log(1.0 - xi) / density
        if hit_distance < distance_inside:
            t = t_enter + hit_distance / ray_length
            result = HitRecord(
                hit=1,
                t=t,
                point=ray_origin + t * ray_direction,
                normal=vec3(0.0, 0.0, 0.0),
                front_face=1,
                u=0.0,
                v=0.0,
            )

    return result, state


@ti.func
def hit_volume(
    ray_origin: vec3,
    ray_direction: vec3,
    boundary: Sphere,
    density: ti.f32,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Sample a scattering event inside a spherical fog volume.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray (need not be normalized).
        boundary: The sphere enclosing the medium.
        density: Extinction coefficient of the medium (per unit length).
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.
        rng: The current random state.

    Returns:
        A tuple of (record, new_rng). A hit record marks a scattering event;
        its normal is zero and front_face is always 1.
    """
    result = make_miss_record()
    state = rng
    found, t_in, t_out = _sphere_span(ray_origin, ray_direction, boundary)
    if found == 1:
        result, state = _scatter_in_span(
            ray_origin, ray_direction, t_in, t_out, density, t_min, t_max, state
        )
    return result, state


@ti.func
def hit_box_volume(
    ray_origin: vec3,
    ray_direction: vec3,
    center: vec3,
    inv_basis: mat3,
    density: ti.f32,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Sample a scattering event inside a box-shaped fog volume.

    Args:
        center: Center of the box.
        inv_basis: Inverse of the half-span matrix (see box_inverse_basis).

    Returns:
        A tuple of (record, new_rng), as for hit_volume.
    """
    result = make_miss_record()
    state = rng
    found, t_in, t_out = _box_span(ray_origin, ray_direction, center, inv_basis)
    if found == 1:
        result, state = _scatter_in_span(
            ray_origin, ray_direction, t_in, t_out, density, t_min, t_max, state
        )
    return result, state
