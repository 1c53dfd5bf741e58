"""Plane primitive: bounded parallelograms and unbounded planes.

A plane is defined by:
- corner: A point on the plane (a corner for bounded planes)
- edge_u: Edge vector from corner to an adjacent corner
- edge_v: Edge vector from corner to the other adjacent corner
- bounded: 1 if the plane is the parallelogram corner + a*u + b*v with
  a, b in [0, 1]; 0 if it extends to infinity

The geometric normal is normalize(cross(u, v)). Unbounded planes are built
from a point and a normal; their edges are an orthonormal tangent frame and
only serve to parameterize (u, v) surface coordinates.

Ray-plane intersection uses the parametric plane test:
1. Find where the ray intersects the plane containing the primitive
2. For bounded planes, check the hit lies inside the parallelogram

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.geometry.plane import Plane, hit_plane
    >>> # Floor square at y=0, spanning x=[0,1] and z=[0,1]
    >>> floor = Plane(
    ...     corner=ti.math.vec3(0, 0, 0),
    ...     edge_u=ti.math.vec3(0, 0, 1),
    ...     edge_v=ti.math.vec3(1, 0, 0),
    ...     bounded=1,
    ... )
"""

import logging
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from .aabb import AABB
from .sphere import HitRecord, make_miss_record

logger = logging.getLogger(__name__)

vec3 = tm.vec3

# |dot(normal, direction)| at or below this is treated as parallel
PARALLEL_EPSILON = 1e-8


@ti.dataclass
class Plane:
    """A plane, either a bounded parallelogram or an unbounded plane.

    Attributes:
        corner: A point on the plane; the corner of a bounded parallelogram.
        edge_u: First edge (or tangent) vector.
        edge_v: Second edge (or tangent) vector.
        bounded: 1 for a finite parallelogram, 0 for an infinite plane.
    """

    corner: vec3
    edge_u: vec3
    edge_v: vec3
    bounded: ti.i32


@ti.func
def _compute_plane_frame(plane: Plane):
    """Compute the plane's normal and the dual vectors for (alpha, beta).

    The intersection point P can be expressed as:
        P = corner + alpha * u + beta * v

    With n = u x v, the vectors w_u = (v x n) / |n|^2 and w_v = (n x u) / |n|^2
    satisfy dot(w_u, u) = 1, dot(w_u, v) = 0, dot(w_v, u) = 0, dot(w_v, v) = 1,
    so alpha = dot(w_u, P - corner) and beta = dot(w_v, P - corner).

    Args:
        plane: The plane to compute the frame for.

    Returns:
        Tuple of (normal, d, w_u, w_v, degenerate) where d is the plane
        constant dot(normal, corner) and degenerate is 1 when u and v are
        parallel (zero area).
    """
    n = tm.cross(plane.edge_u, plane.edge_v)
    n_dot_n = tm.dot(n, n)

    normal = vec3(0.0, 0.0, 0.0)
    w_u = vec3(0.0, 0.0, 0.0)
    w_v = vec3(0.0, 0.0, 0.0)
    degenerate = 1

    if n_dot_n > 1e-20:
        normal = n / ti.sqrt(n_dot_n)
        w_u = tm.cross(plane.edge_v, n) / n_dot_n
        w_v = tm.cross(n, plane.edge_u) / n_dot_n
        degenerate = 0

    d = tm.dot(normal, plane.corner)
    return normal, d, w_u, w_v, degenerate


@ti.func
def hit_plane(
    ray_origin: vec3,
    ray_direction: vec3,
    plane: Plane,
    t_min: ti.f32,
    t_max: ti.f32,
) -> HitRecord:
    """Test for ray-plane intersection.

    Solves (O + tD - P) . N = 0 for t:
        t = (d - dot(normal, ray_origin)) / dot(normal, ray_direction)

    Rays parallel to the plane (|denominator| <= PARALLEL_EPSILON), hits
    outside [t_min, t_max) and, for bounded planes, points outside the
    parallelogram are rejected. Zero-area planes never report a hit.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray (need not be normalized).
        plane: The plane to test intersection against.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A HitRecord; (u, v) are the parallelogram coordinates (alpha, beta).
    """
    normal, d, w_u, w_v, degenerate = _compute_plane_frame(plane)
    denom = tm.dot(normal, ray_direction)

    result = make_miss_record()

    if degenerate == 0 and ti.abs(denom) > PARALLEL_EPSILON:
        t = (d - tm.dot(normal, ray_origin)) / denom

        if t >= t_min and t < t_max:
            hit_point = ray_origin + t * ray_direction
            offset = hit_point - plane.corner
            alpha = tm.dot(w_u, offset)
            beta = tm.dot(w_v, offset)

            inside = 1
            if plane.bounded == 1:
                if alpha < 0.0 or alpha > 1.0 or beta < 0.0 or beta > 1.0:
                    inside = 0

            if inside == 1:
                is_front_face = 1
                hit_normal = normal
                if denom > 0.0:
                    # Ray and normal point the same way: back face
                    is_front_face = 0
                    hit_normal = -normal

                result = HitRecord(
                    hit=1,
                    t=t,
                    point=hit_point,
                    normal=hit_normal,
                    front_face=is_front_face,
                    u=alpha,
                    v=beta,
                )

    return result


# =============================================================================
# Host-side construction helpers
# =============================================================================


def tangent_frame(normal: Sequence[float]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Build two unit tangents (t, b) with cross(t, b) parallel to normal.

    Args:
        normal: The plane normal (any non-zero length).

    Returns:
        Tuple of (tangent, bitangent).

    Raises:
        ValueError: If the normal has zero length.
    """
    n = np.asarray(normal, dtype=np.float64)
    length = np.linalg.norm(n)
    if length < 1e-12:
        raise ValueError("Plane normal must be non-zero")
    n = n / length
    helper = np.array([1.0, 0.0, 0.0]) if abs(n[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    bitangent = np.cross(n, helper)
    bitangent /= np.linalg.norm(bitangent)
    tangent = np.cross(bitangent, n)
    return tangent, bitangent


def plane_from_center(
    center: Sequence[float],
    half_u: Sequence[float],
    half_v: Sequence[float],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Convert a center and two half-span vectors into corner/edge form.

    The resulting parallelogram covers center + a*half_u + b*half_v for
    a, b in [-1, 1]. A half_v that is not orthogonal to half_u is
    orthogonalized against it (with a warning) so that the region stays a
    rectangle.

    Args:
        center: Center of the rectangle.
        half_u: First half-span vector.
        half_v: Second half-span vector.

    Returns:
        Tuple of (corner, edge_u, edge_v).
    """
    c = np.asarray(center, dtype=np.float64)
    hu = np.asarray(half_u, dtype=np.float64)
    hv = np.asarray(half_v, dtype=np.float64)

    hu_sq = float(np.dot(hu, hu))
    if hu_sq > 0.0:
        overlap = float(np.dot(hu, hv))
        if abs(overlap) > 1e-9 * max(1.0, hu_sq):
            logger.warning(
                "Plane spanning vectors %s and %s are not orthogonal; "
                "orthogonalizing the second against the first",
                hu.tolist(),
                hv.tolist(),
            )
            hv = hv - (overlap / hu_sq) * hu

    corner = c - hu - hv
    return corner, 2.0 * hu, 2.0 * hv


def plane_bounds(
    corner: Sequence[float],
    edge_u: Sequence[float],
    edge_v: Sequence[float],
) -> AABB:
    """Compute the bounding box of a bounded parallelogram.

    Axis-aligned planes have zero thickness on one axis; that axis is padded
    so that slab tests stay well defined.

    Args:
        corner: The corner point.
        edge_u: First edge vector.
        edge_v: Second edge vector.

    Returns:
        The (padded) AABB of the four corners.
    """
    q = np.asarray(corner, dtype=np.float64)
    u = np.asarray(edge_u, dtype=np.float64)
    v = np.asarray(edge_v, dtype=np.float64)
    return AABB.from_points([q, q + u, q + v, q + u + v]).padded()


def plane_area(edge_u: Sequence[float], edge_v: Sequence[float]) -> float:
    """Area of the parallelogram spanned by two edges."""
    return float(np.linalg.norm(np.cross(np.asarray(edge_u, float), np.asarray(edge_v, float))))
