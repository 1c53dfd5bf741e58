"""Isotropic phase function for participating media.

A scattering event inside a fog volume sends the ray in a uniformly random
direction; the albedo tints the light that survives the event.
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.sampler import random_unit_vector

from .scatter import make_scattered, validate_color

vec3 = tm.vec3


@ti.func
def scatter_isotropic(albedo: vec3, rng: ti.u32):
    """Scatter uniformly over the sphere of directions.

    Args:
        albedo: The medium color.
        rng: The current random state.

    Returns:
        A tuple of (ScatterResult, new_rng); always SCATTERED.
    """
    direction, state = random_unit_vector(rng)
    return make_scattered(direction, albedo), state


MAX_ISOTROPIC_MATERIALS = 256

isotropic_albedos = ti.Vector.field(3, dtype=ti.f32, shape=MAX_ISOTROPIC_MATERIALS)
num_isotropic_materials = ti.field(dtype=ti.i32, shape=())


def clear_isotropic_materials() -> None:
    num_isotropic_materials[None] = 0


def add_isotropic_material(albedo: tuple[float, float, float]) -> int:
    """Add an isotropic medium material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If any albedo component is outside [0, 1].
    """
    r, g, b = validate_color("albedo", albedo)

    idx = num_isotropic_materials[None]
    if idx >= MAX_ISOTROPIC_MATERIALS:
        raise RuntimeError(
            f"Maximum number of isotropic materials ({MAX_ISOTROPIC_MATERIALS}) exceeded"
        )

    isotropic_albedos[idx] = vec3(r, g, b)
    num_isotropic_materials[None] = idx + 1
    return idx


def get_isotropic_material_count() -> int:
    return int(num_isotropic_materials[None])


@ti.func
def scatter_isotropic_by_id(material_idx: ti.i32, rng: ti.u32):
    return scatter_isotropic(isotropic_albedos[material_idx], rng)
