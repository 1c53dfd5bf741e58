"""Triangle primitive with Moller-Trumbore intersection.

Triangles are the building block of meshes. Each triangle stores its three
vertices and, optionally, per-vertex normals that are interpolated with the
barycentric coordinates of the hit to produce smooth shading.

Example:
    >>> from pathtracer.geometry.triangle import Triangle, hit_triangle
    >>> tri = Triangle(
    ...     v0=ti.math.vec3(0, 0, 0), v1=ti.math.vec3(1, 0, 0), v2=ti.math.vec3(0, 1, 0),
    ...     n0=ti.math.vec3(0), n1=ti.math.vec3(0), n2=ti.math.vec3(0), has_normals=0,
    ... )
"""

from collections.abc import Sequence

import numpy as np
import taichi as ti
import taichi.math as tm

from .aabb import AABB
from .sphere import HitRecord, make_miss_record

vec3 = tm.vec3

# |det| at or below this means the ray is parallel to the triangle plane
PARALLEL_EPSILON = 1e-9


@ti.dataclass
class Triangle:
    """A triangle with optional per-vertex normals.

    Attributes:
        v0: First vertex.
        v1: Second vertex.
        v2: Third vertex.
        n0: Normal at v0 (ignored unless has_normals == 1).
        n1: Normal at v1.
        n2: Normal at v2.
        has_normals: 1 to interpolate vertex normals, 0 for flat shading.
    """

    v0: vec3
    v1: vec3
    v2: vec3
    n0: vec3
    n1: vec3
    n2: vec3
    has_normals: ti.i32


@ti.func
def hit_triangle(
    ray_origin: vec3,
    ray_direction: vec3,
    tri: Triangle,
    t_min: ti.f32,
    t_max: ti.f32,
) -> HitRecord:
    """Test for ray-triangle intersection (Moller-Trumbore).

    Solves origin + t * direction = (1 - b1 - b2) * v0 + b1 * v1 + b2 * v2
    using Cramer's rule. A hit requires b1 >= 0, b2 >= 0, b1 + b2 <= 1 and
    t in [t_min, t_max). Rays parallel to the triangle's plane and zero-area
    triangles never hit.

    The front face is the side the geometric normal cross(v1 - v0, v2 - v0)
    points to. The returned normal always faces against the ray; with vertex
    normals it is the interpolated normal flipped consistently with the
    geometric one.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray (need not be normalized).
        tri: The triangle to test intersection against.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A HitRecord; (u, v) are the barycentric weights of v1 and v2.
    """
    edge1 = tri.v1 - tri.v0
    edge2 = tri.v2 - tri.v0
    p_vec = tm.cross(ray_direction, edge2)
    det = tm.dot(edge1, p_vec)

    result = make_miss_record()

    face = tm.cross(edge1, edge2)
    face_len_sq = tm.dot(face, face)

    if ti.abs(det) > PARALLEL_EPSILON and face_len_sq > 1e-20:
        inv_det = 1.0 / det
        t_vec = ray_origin - tri.v0
        b1 = tm.dot(t_vec, p_vec) * inv_det
        q_vec = tm.cross(t_vec, edge1)
        b2 = tm.dot(ray_direction, q_vec) * inv_det
        t = tm.dot(edge2, q_vec) * inv_det

        if b1 >= 0.0 and b2 >= 0.0 and b1 + b2 <= 1.0 and t >= t_min and t < t_max:
            geometric_normal = face / ti.sqrt(face_len_sq)

            shading_normal = geometric_normal
            if tri.has_normals == 1:
                interpolated = (1.0 - b1 - b2) * tri.n0 + b1 * tri.n1 + b2 * tri.n2
                len_sq = tm.dot(interpolated, interpolated)
                if len_sq > 1e-20:
                    shading_normal = interpolated / ti.sqrt(len_sq)
                    # Keep the shading normal on the geometric side
                    if tm.dot(shading_normal, geometric_normal) < 0.0:
                        shading_normal = -shading_normal

            is_front_face = 1
            hit_normal = shading_normal
            if tm.dot(ray_direction, geometric_normal) > 0.0:
                is_front_face = 0
                hit_normal = -shading_normal

            result = HitRecord(
                hit=1,
                t=t,
                point=ray_origin + t * ray_direction,
                normal=hit_normal,
                front_face=is_front_face,
                u=b1,
                v=b2,
            )

    return result


def triangle_bounds(v0: Sequence[float], v1: Sequence[float], v2: Sequence[float]) -> AABB:
    """Compute the (padded) bounding box of a triangle."""
    return AABB.from_points([v0, v1, v2]).padded()


def triangle_area(v0: Sequence[float], v1: Sequence[float], v2: Sequence[float]) -> float:
    """Area of a triangle."""
    a = np.asarray(v0, dtype=np.float64)
    e1 = np.asarray(v1, dtype=np.float64) - a
    e2 = np.asarray(v2, dtype=np.float64) - a
    return float(0.5 * np.linalg.norm(np.cross(e1, e2)))
