"""Lambertian (ideal diffuse) material.

Incident light is scattered with a cosine-weighted distribution around the
surface normal. With cosine-weighted importance sampling the BRDF
(albedo / pi), the cosine term and the pdf (cos(theta) / pi) cancel, so the
path weight of a bounce is simply the albedo.
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import near_zero
from pathtracer.core.sampler import sample_cosine_hemisphere

from .scatter import make_scattered, validate_color

vec3 = tm.vec3


@ti.dataclass
class LambertianMaterial:
    """Lambertian material properties.

    Attributes:
        albedo: The diffuse reflectance color (RGB, each component in [0, 1]).
    """

    albedo: vec3


@ti.func
def scatter_lambertian(albedo: vec3, normal: vec3, rng: ti.u32):
    """Sample a diffuse bounce.

    Args:
        albedo: The diffuse reflectance color.
        normal: The unit surface normal, facing against the incoming ray.
        rng: The current random state.

    Returns:
        A tuple of (ScatterResult, new_rng). The result is always SCATTERED
        with attenuation equal to the albedo.
    """
    direction, _pdf, state = sample_cosine_hemisphere(normal, rng)

    # A sample exactly opposite to the normal would give a zero direction
    if near_zero(direction):
        direction = normal

    return make_scattered(tm.normalize(direction), albedo), state


# =============================================================================
# Material Field Storage
# =============================================================================

MAX_LAMBERTIAN_MATERIALS = 1024

lambertian_albedos = ti.Vector.field(3, dtype=ti.f32, shape=MAX_LAMBERTIAN_MATERIALS)
num_lambertian_materials = ti.field(dtype=ti.i32, shape=())


def clear_lambertian_materials() -> None:
    """Reset the Lambertian registry."""
    num_lambertian_materials[None] = 0


def add_lambertian_material(albedo: tuple[float, float, float]) -> int:
    """Add a Lambertian material to the registry.

    Args:
        albedo: The diffuse reflectance color as (R, G, B), each in [0, 1].

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If any albedo component is outside [0, 1].
    """
    r, g, b = validate_color("albedo", albedo)

    idx = num_lambertian_materials[None]
    if idx >= MAX_LAMBERTIAN_MATERIALS:
        raise RuntimeError(
            f"Maximum number of Lambertian materials ({MAX_LAMBERTIAN_MATERIALS}) exceeded"
        )

    lambertian_albedos[idx] = vec3(r, g, b)
    num_lambertian_materials[None] = idx + 1
    return idx


def get_lambertian_material_count() -> int:
    """Get the number of Lambertian materials in the registry."""
    return int(num_lambertian_materials[None])


@ti.func
def get_lambertian_albedo(material_idx: ti.i32) -> vec3:
    return lambertian_albedos[material_idx]


@ti.func
def scatter_lambertian_by_id(material_idx: ti.i32, normal: vec3, rng: ti.u32):
    """Scatter using the albedo stored at a registry index."""
    return scatter_lambertian(get_lambertian_albedo(material_idx), normal, rng)

