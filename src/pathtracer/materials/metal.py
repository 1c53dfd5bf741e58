"""Metal (specular reflective) material.

The incident direction is mirrored about the normal:
    R = I - 2(I . N)N

Rough metals perturb R by a random point in a sphere of radius roughness.
Perturbations that push the direction to or below the surface absorb the
ray, which darkens rough metals at grazing angles.
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import reflect, safe_normalize
from pathtracer.core.sampler import random_in_unit_sphere

from .scatter import make_absorbed, make_scattered, validate_color

vec3 = tm.vec3


@ti.dataclass
class MetalMaterial:
    """Metal material properties.

    Attributes:
        albedo: The reflective color (RGB, each component in [0, 1]).
        roughness: Fuzziness in [0, 1]. 0 = perfect mirror.
    """

    albedo: vec3
    roughness: ti.f32


@ti.func
def scatter_metal(
    albedo: vec3,
    roughness: ti.f32,
    incident_direction: vec3,
    normal: vec3,
    rng: ti.u32,
):
    """Reflect a ray off a metal surface.

    Args:
        albedo: The reflective color.
        roughness: The surface roughness in [0, 1].
        incident_direction: The incoming ray direction (any length).
        normal: The unit surface normal, facing against the incoming ray.
        rng: The current random state.

    Returns:
        A tuple of (ScatterResult, new_rng). The result is SCATTERED with
        attenuation = albedo, or ABSORBED if the perturbed direction does
        not leave the surface.
    """
    reflected = reflect(safe_normalize(incident_direction), normal)

    fuzz, state = random_in_unit_sphere(rng)
    scattered_direction = safe_normalize(reflected + roughness * fuzz)

    result = make_absorbed()
    if tm.dot(scattered_direction, normal) > 0.0:
        result = make_scattered(scattered_direction, albedo)

    return result, state


# =============================================================================
# Material Field Storage
# =============================================================================

MAX_METAL_MATERIALS = 1024

metal_albedos = ti.Vector.field(3, dtype=ti.f32, shape=MAX_METAL_MATERIALS)
metal_roughnesses = ti.field(dtype=ti.f32, shape=MAX_METAL_MATERIALS)
num_metal_materials = ti.field(dtype=ti.i32, shape=())


def clear_metal_materials() -> None:
    """Reset the metal registry."""
    num_metal_materials[None] = 0


def add_metal_material(
    albedo: tuple[float, float, float],
    roughness: float = 0.0,
) -> int:
    """Add a metal material to the registry.

    Args:
        albedo: The reflective color as (R, G, B), each in [0, 1].
        roughness: The surface roughness in [0, 1]. Default is 0 (mirror).

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If any albedo component or the roughness is outside [0, 1].
    """
    r, g, b = validate_color("albedo", albedo)

    if not 0.0 <= roughness <= 1.0:
        raise ValueError(
            f"Roughness = {roughness} is outside [0, 1]. "
            "Roughness must be between 0 (perfect mirror) and 1 (maximum fuzz)."
        )

    idx = num_metal_materials[None]
    if idx >= MAX_METAL_MATERIALS:
        raise RuntimeError(f"Maximum number of metal materials ({MAX_METAL_MATERIALS}) exceeded")

    metal_albedos[idx] = vec3(r, g, b)
    metal_roughnesses[idx] = roughness
    num_metal_materials[None] = idx + 1
    return idx


def get_metal_material_count() -> int:
    """Get the number of metal materials in the registry."""
    return int(num_metal_materials[None])


@ti.func
def get_metal_albedo(material_idx: ti.i32) -> vec3:
    return metal_albedos[material_idx]


@ti.func
def get_metal_roughness(material_idx: ti.i32) -> ti.f32:
    return metal_roughnesses[material_idx]


@ti.func
def scatter_metal_by_id(
    material_idx: ti.i32,
    incident_direction: vec3,
    normal: vec3,
    rng: ti.u32,
):
    """Scatter using the parameters stored at a registry index."""
    return scatter_metal(
        get_metal_albedo(material_idx),
        get_metal_roughness(material_idx),
        incident_direction,
        normal,
        rng,
    )
