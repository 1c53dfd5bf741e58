"""Dielectric (glass/water) material.

Key physics:
    - Snell's law for refraction: n1 * sin(theta1) = n2 * sin(theta2)
    - Schlick's approximation for Fresnel reflectance
    - Total internal reflection when sin(theta_t) > 1

The material randomly chooses between reflection and refraction with the
Fresnel reflectance as the probability of reflecting. Surrounding media are
assumed to be vacuum (index 1), so a material with ior == 1 is invisible:
rays pass through it without bending and without drawing a random number.

Example:
    >>> # Inside a Taichi kernel:
    >>> # result, rng = scatter_dielectric(1.5, direction, normal, front_face, rng)
"""

import math

import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import reflect, refract, safe_normalize, schlick_fresnel
from pathtracer.core.sampler import next_float

from .scatter import make_scattered

vec3 = tm.vec3

# Refraction ratios closer to 1 than this are treated as index-matched
INDEX_MATCH_EPSILON = 1e-6


@ti.dataclass
class DielectricMaterial:
    """Dielectric material properties.

    Attributes:
        ior: Index of refraction. Common values:
            - Air: 1.0
            - Water: 1.33
            - Glass: 1.5
            - Diamond: 2.4
    """

    ior: ti.f32


@ti.func
def _refraction_ratio(ior: ti.f32, front_face: ti.i32) -> ti.f32:
    # Entering: vacuum -> material; leaving: material -> vacuum
    ratio = 1.0 / ior
    if front_face == 0:
        ratio = ior
    return ratio


@ti.func
def scatter_dielectric(
    ior: ti.f32,
    incident_direction: vec3,
    normal: vec3,
    front_face: ti.i32,
    rng: ti.u32,
):
    """Reflect or refract a ray at a dielectric boundary.

    Args:
        ior: Index of refraction of the material.
        incident_direction: The incoming ray direction (any length).
        normal: The unit surface normal, facing against the incoming ray.
        front_face: 1 if the ray enters the material, 0 if it leaves.
        rng: The current random state.

    Returns:
        A tuple of (ScatterResult, new_rng). Dielectrics always scatter with
        white attenuation.
    """
    unit_direction = safe_normalize(incident_direction)
    refraction_ratio = _refraction_ratio(ior, front_face)
    state = rng

    scattered_direction = unit_direction
    if ti.abs(refraction_ratio - 1.0) >= INDEX_MATCH_EPSILON:
        cos_theta = tm.min(-tm.dot(unit_direction, normal), 1.0)
        sin_theta = ti.sqrt(tm.max(0.0, 1.0 - cos_theta * cos_theta))

        cannot_refract = refraction_ratio * sin_theta > 1.0
        reflectance = schlick_fresnel(cos_theta, refraction_ratio)

        xi, state = next_float(state)
        if cannot_refract or xi < reflectance:
            scattered_direction = reflect(unit_direction, normal)
        else:
            scattered_direction = refract(unit_direction, normal, refraction_ratio)

    return make_scattered(safe_normalize(scattered_direction), vec3(1.0, 1.0, 1.0)), state


@ti.func
def fresnel_reflectance(
    ior: ti.f32,
    incident_direction: vec3,
    normal: vec3,
    front_face: ti.i32,
) -> ti.f32:
    """Schlick reflectance for a ray meeting the boundary.

    Returns:
        The Fresnel reflectance in [0, 1]; 1 under total internal reflection.
    """
    unit_direction = safe_normalize(incident_direction)
    refraction_ratio = _refraction_ratio(ior, front_face)
    cos_theta = tm.min(-tm.dot(unit_direction, normal), 1.0)
    sin_theta = ti.sqrt(tm.max(0.0, 1.0 - cos_theta * cos_theta))
    reflectance = schlick_fresnel(cos_theta, refraction_ratio)
    if refraction_ratio * sin_theta > 1.0:
        reflectance = 1.0
    return reflectance


# =============================================================================
# Material Field Storage
# =============================================================================

MAX_DIELECTRIC_MATERIALS = 1024

dielectric_iors = ti.field(dtype=ti.f32, shape=MAX_DIELECTRIC_MATERIALS)
num_dielectric_materials = ti.field(dtype=ti.i32, shape=())


def clear_dielectric_materials() -> None:
    """Reset the dielectric registry."""
    num_dielectric_materials[None] = 0


def add_dielectric_material(ior: float = 1.5) -> int:
    """Add a dielectric material to the registry.

    Args:
        ior: Index of refraction. Default is 1.5 (typical glass). Must be
            finite and >= 1.0.

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If the IOR is less than 1.0 or not finite.
    """
    if not math.isfinite(ior) or ior < 1.0:
        raise ValueError(
            f"Index of refraction = {ior} is invalid. "
            "IOR must be finite and >= 1.0 for physically meaningful materials."
        )

    idx = num_dielectric_materials[None]
    if idx >= MAX_DIELECTRIC_MATERIALS:
        raise RuntimeError(
            f"Maximum number of dielectric materials ({MAX_DIELECTRIC_MATERIALS}) exceeded"
        )

    dielectric_iors[idx] = ior
    num_dielectric_materials[None] = idx + 1
    return idx


def get_dielectric_material_count() -> int:
    """Get the number of dielectric materials in the registry."""
    return int(num_dielectric_materials[None])


@ti.func
def get_dielectric_ior(material_idx: ti.i32) -> ti.f32:
    return dielectric_iors[material_idx]


@ti.func
def scatter_dielectric_by_id(
    material_idx: ti.i32,
    incident_direction: vec3,
    normal: vec3,
    front_face: ti.i32,
    rng: ti.u32,
):
    """Scatter using the IOR stored at a registry index."""
    return scatter_dielectric(
        get_dielectric_ior(material_idx), incident_direction, normal, front_face, rng
    )
