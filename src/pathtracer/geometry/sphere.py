"""Sphere primitive with robust ray-sphere intersection.

This module provides the Sphere dataclass, the shared HitRecord returned by
every primitive, and an intersection routine using the robust quadratic
formula from Ray Tracing Gems to avoid floating-point artifacts.

The robust quadratic formula avoids catastrophic cancellation when b^2 is
nearly equal to 4ac by using a reformulated calculation that maintains
numerical stability.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.geometry.sphere import Sphere, hit_sphere, sphere_bounds
    >>> sphere = Sphere(center=ti.math.vec3(0, 0, -1), radius=0.5)
    >>> box = sphere_bounds((0, 0, -1), 0.5)  # host-side bounding box
"""

from collections.abc import Sequence

import numpy as np
import taichi as ti
import taichi.math as tm

from .aabb import AABB

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3


@ti.dataclass
class Sphere:
    """A sphere defined by center point and radius.

    Attributes:
        center: The center point of the sphere (vec3).
        radius: The radius of the sphere. Non-positive radii never intersect.
    """

    center: vec3
    radius: ti.f32


@ti.dataclass
class HitRecord:
    """Record of a ray-primitive intersection.

    Attributes:
        hit: Whether the ray intersected the primitive (1 if hit, 0 if miss).
        t: The parameter value along the ray where intersection occurred,
            with t_min <= t < t_max. Only valid if hit == 1.
        point: The 3D point where the ray intersected the surface.
        normal: The unit surface normal at the intersection point, oriented
            against the incoming ray.
        front_face: 1 if the ray arrived from the outside (the stored normal
            is the outward normal), 0 if it arrived from the inside.
        u: First surface parameter (texture coordinate).
        v: Second surface parameter (texture coordinate).
    """

    hit: ti.i32
    t: ti.f32
    point: vec3
    normal: vec3
    front_face: ti.i32
    u: ti.f32
    v: ti.f32


@ti.func
def make_miss_record() -> HitRecord:
    """Create a HitRecord indicating no intersection."""
    return HitRecord(
        hit=0,
        t=0.0,
        point=vec3(0.0, 0.0, 0.0),
        normal=vec3(0.0, 0.0, 0.0),
        front_face=0,
        u=0.0,
        v=0.0,
    )


@ti.func
def _solve_quadratic_robust(h: ti.f32, a: ti.f32, c: ti.f32, sqrt_d: ti.f32):
    """Solve quadratic equation using robust formula from Ray Tracing Gems.

    Solves a*t^2 + 2*h*t + c = 0 using a numerically stable method.

    Args:
        h: Half of the linear coefficient.
        a: Quadratic coefficient.
        c: Constant term.
        sqrt_d: Square root of discriminant (h^2 - a*c).

    Returns:
        Tuple of (t0, t1) where t0 <= t1.
    """
    # q = -(h + sign(h) * sqrt(discriminant))
    sign_h = ti.select(h < 0.0, -1.0, 1.0)
    q = -(h + sign_h * sqrt_d)

    t0 = 0.0
    t1 = 0.0

    if ti.abs(q) < 1e-10:
        # Tangent ray: fall back to standard formula
        t0 = (-h - sqrt_d) / a
        t1 = (-h + sqrt_d) / a
    else:
        t0 = q / a
        t1 = c / q

    if t0 > t1:
        temp = t0
        t0 = t1
        t1 = temp

    return t0, t1


@ti.func
def sphere_uv(outward_normal: vec3):
    """Compute spherical (u, v) coordinates from an outward unit normal.

    u wraps around the y axis starting at -x; v runs from the south pole
    (v = 0) to the north pole (v = 1).

    Args:
        outward_normal: Unit vector from the sphere center to the surface point.

    Returns:
        Tuple of (u, v), both in [0, 1].
    """
    theta = ti.acos(tm.clamp(-outward_normal.y, -1.0, 1.0))
    phi = ti.atan2(-outward_normal.z, outward_normal.x) + tm.pi
    return phi / (2.0 * tm.pi), theta / tm.pi


@ti.func
def hit_sphere(
    ray_origin: vec3,
    ray_direction: vec3,
    sphere: Sphere,
    t_min: ti.f32,
    t_max: ti.f32,
) -> HitRecord:
    """Test for ray-sphere intersection using robust quadratic formula.

    The ray-sphere intersection is found by solving:
        |ray_origin + t * ray_direction - center|^2 = radius^2

    Expanding and rearranging gives the quadratic equation:
        a*t^2 + 2*h*t + c = 0

    where:
        a = dot(direction, direction)
        h = dot(direction, oc)  (half of traditional b)
        c = dot(oc, oc) - radius^2
        oc = origin - center

    The smaller root inside [t_min, t_max) wins. Zero-radius spheres and
    zero-length ray directions never report a hit.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray (need not be normalized).
        sphere: The sphere to test intersection against.
        t_min: Minimum t value to consider a valid hit (avoids self-intersection).
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A HitRecord containing intersection information. Check hit field
        to determine if intersection occurred.
    """
    oc = ray_origin - sphere.center

    a = tm.dot(ray_direction, ray_direction)
    h = tm.dot(ray_direction, oc)
    c = tm.dot(oc, oc) - sphere.radius * sphere.radius

    discriminant = h * h - a * c

    # Initialize result (Taichi requires outer-scope declaration)
    result = make_miss_record()

    if sphere.radius > 0.0 and a > 1e-20 and discriminant >= 0.0:
        sqrt_d = ti.sqrt(discriminant)
        t0, t1 = _solve_quadratic_robust(h, a, c, sqrt_d)

        t = t0
        valid = (t >= t_min) and (t < t_max)
        if not valid:
            t = t1
            valid = (t >= t_min) and (t < t_max)

        if valid:
            hit_point = ray_origin + t * ray_direction
            outward_normal = (hit_point - sphere.center) / sphere.radius
            u, v = sphere_uv(outward_normal)

            is_front_face = 1
            hit_normal = outward_normal
            if tm.dot(ray_direction, outward_normal) > 0.0:
                # Ray is inside the sphere, hitting back face
                is_front_face = 0
                hit_normal = -outward_normal

            result = HitRecord(
                hit=1,
                t=t,
                point=hit_point,
                normal=hit_normal,
                front_face=is_front_face,
                u=u,
                v=v,
            )

    return result


def sphere_bounds(center: Sequence[float], radius: float) -> AABB:
    """Compute the axis-aligned bounding box of a sphere.

    Args:
        center: The center point (x, y, z).
        radius: The sphere radius.

    Returns:
        The tight AABB [center - r, center + r].
    """
    c = np.asarray(center, dtype=np.float64)
    r = abs(float(radius))
    return AABB(c - r, c + r)
