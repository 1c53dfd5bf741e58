"""Rays and the deterministic vector helpers shared by shapes and materials.

Random sampling lives in pathtracer.core.sampler; nothing here consumes
random numbers.

Example:
    >>> ray = make_ray(tm.vec3(0.0, 1.0, 0.0), tm.vec3(0.0, 0.0, -1.0))
    >>> ray_at(ray, 2.0)  # (0, 1, -2)
"""

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

# Squared length below which a vector counts as zero
ZERO_LENGTH_SQ = 1e-20


@ti.dataclass
class Ray:
    """Half-line origin + t * direction, t >= 0.

    Attributes:
        origin: Where the ray starts.
        direction: Travel direction. Any non-zero length is accepted; hit
            distances are measured in multiples of it.
    """

    origin: vec3
    direction: vec3


@ti.func
def ray_at(ray: Ray, t: ti.f32) -> vec3:
    """Position on the ray at parameter t."""
    return ray.origin + t * ray.direction


@ti.func
def make_ray(origin: vec3, direction: vec3) -> Ray:
    return Ray(origin=origin, direction=direction)


# =============================================================================
# Vector Helpers
# =============================================================================


@ti.func
def safe_normalize(v: vec3) -> vec3:
    """Unit vector along v, or the zero vector when v has no length."""
    norm_sq = tm.dot(v, v)
    unit = vec3(0.0, 0.0, 0.0)
    if norm_sq > ZERO_LENGTH_SQ:
        unit = v / ti.sqrt(norm_sq)
    return unit


@ti.func
def near_zero(v: vec3) -> ti.i32:
    """1 when every component of v is within 1e-8 of zero."""
    return tm.max(ti.abs(v.x), tm.max(ti.abs(v.y), ti.abs(v.z))) < 1e-8


@ti.func
def is_finite(v: vec3) -> ti.i32:
    """1 when no component of v is NaN or infinite."""
    ok = 1
    for c in ti.static(range(3)):
        if tm.isnan(v[c]) or tm.isinf(v[c]):
            ok = 0
    return ok


@ti.func
def reflect(incident: vec3, normal: vec3) -> vec3:
    """Mirror a direction about a unit normal."""
    along = tm.dot(incident, normal)
    return incident - 2.0 * along * normal


@ti.func
def refract(incident: vec3, normal: vec3, eta: ti.f32) -> vec3:
    """Bend a unit direction through a boundary by Snell's law.

    Args:
        incident: Unit direction travelling toward the surface.
        normal: Unit normal on the incident side (dot(incident, normal) <= 0).
        eta: n_incident / n_transmitted.

    Returns:
        The unit transmitted direction, or the zero vector under total
        internal reflection.
    """
    cos_theta = tm.min(-tm.dot(incident, normal), 1.0)
    sin_theta_sq = tm.max(0.0, 1.0 - cos_theta * cos_theta)
    out = vec3(0.0, 0.0, 0.0)
    if eta * eta * sin_theta_sq <= 1.0:
        perpendicular = eta * (incident + cos_theta * normal)
        parallel = -ti.sqrt(tm.max(0.0, 1.0 - tm.dot(perpendicular, perpendicular))) * normal
        out = perpendicular + parallel
    return out


@ti.func
def schlick_fresnel(cosine: ti.f32, ref_idx: ti.f32) -> ti.f32:
    """Schlick's approximation of the Fresnel reflectance.

    Args:
        cosine: Cosine between the incoming ray and the surface normal.
        ref_idx: Relative index of refraction across the boundary.
    """
    r0 = (1.0 - ref_idx) / (1.0 + ref_idx)
    r0 = r0 * r0
    grazing = 1.0 - cosine
    return r0 + (1.0 - r0) * grazing * grazing * grazing * grazing * grazing


# =============================================================================
# Local Frames
# =============================================================================


@ti.func
def build_onb_from_normal(normal: vec3):
    """Orthonormal frame with the given unit normal as its z axis.

    Returns:
        A tuple (tangent, bitangent, normal), right-handed.
    """
    helper = vec3(1.0, 0.0, 0.0)
    if ti.abs(normal.x) > 0.9:
        helper = vec3(0.0, 1.0, 0.0)
    tangent = tm.normalize(tm.cross(helper, normal))
    bitangent = tm.cross(normal, tangent)
    return tangent, bitangent, normal


@ti.func
def local_to_world(local_dir: vec3, tangent: vec3, bitangent: vec3, normal: vec3) -> vec3:
    """Express a z-up local direction in the world frame (tangent, bitangent, normal)."""
    return local_dir.x * tangent + local_dir.y * bitangent + local_dir.z * normal
