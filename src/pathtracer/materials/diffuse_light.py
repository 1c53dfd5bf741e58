"""Diffuse area light material.

An emitter ends the path: hitting it returns color * intensity as radiance
and no scattered ray. Lights are double-sided by default; a single-sided
light only emits from the side its outward normal points to and absorbs
rays arriving at its back face.
"""

import math

import taichi as ti
import taichi.math as tm

from .scatter import make_absorbed, make_emitted, validate_color

vec3 = tm.vec3


@ti.dataclass
class DiffuseLightMaterial:
    """Diffuse light properties.

    Attributes:
        color: The emission color (RGB, non-negative).
        intensity: Scale applied to the color.
        double_sided: 1 to emit from both faces, 0 for the front face only.
    """

    color: vec3
    intensity: ti.f32
    double_sided: ti.i32


@ti.func
def emit_diffuse_light(
    color: vec3,
    intensity: ti.f32,
    double_sided: ti.i32,
    front_face: ti.i32,
):
    """Terminate a path at an emitter.

    Args:
        color: The emission color.
        intensity: The emission scale.
        double_sided: 1 if both faces emit.
        front_face: 1 if the ray hit the outward-facing side.

    Returns:
        An EMITTED ScatterResult carrying color * intensity, or ABSORBED for
        the back face of a single-sided light.
    """
    result = make_absorbed()
    if double_sided == 1 or front_face == 1:
        result = make_emitted(color * intensity)
    return result


# =============================================================================
# Material Field Storage
# =============================================================================

MAX_DIFFUSE_LIGHT_MATERIALS = 256

diffuse_light_colors = ti.Vector.field(3, dtype=ti.f32, shape=MAX_DIFFUSE_LIGHT_MATERIALS)
diffuse_light_intensities = ti.field(dtype=ti.f32, shape=MAX_DIFFUSE_LIGHT_MATERIALS)
diffuse_light_double_sided = ti.field(dtype=ti.i32, shape=MAX_DIFFUSE_LIGHT_MATERIALS)
num_diffuse_light_materials = ti.field(dtype=ti.i32, shape=())


def clear_diffuse_light_materials() -> None:
    """Reset the diffuse light registry."""
    num_diffuse_light_materials[None] = 0


def add_diffuse_light_material(
    color: tuple[float, float, float],
    intensity: float = 1.0,
    double_sided: bool = True,
) -> int:
    """Add a diffuse light to the registry.

    Args:
        color: The emission color as (R, G, B). Components must be
            non-negative and may exceed 1.
        intensity: Non-negative emission scale.
        double_sided: Whether both faces emit.

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If the color or intensity is negative or not finite.
    """
    r, g, b = validate_color("color", color, upper=None)
    if not math.isfinite(intensity) or intensity < 0.0:
        raise ValueError(f"Light intensity = {intensity} must be finite and non-negative")

    idx = num_diffuse_light_materials[None]
    if idx >= MAX_DIFFUSE_LIGHT_MATERIALS:
        raise RuntimeError(
            f"Maximum number of diffuse light materials ({MAX_DIFFUSE_LIGHT_MATERIALS}) exceeded"
        )

    diffuse_light_colors[idx] = vec3(r, g, b)
    diffuse_light_intensities[idx] = intensity
    diffuse_light_double_sided[idx] = 1 if double_sided else 0
    num_diffuse_light_materials[None] = idx + 1
    return idx


def get_diffuse_light_material_count() -> int:
    """Get the number of diffuse lights in the registry."""
    return int(num_diffuse_light_materials[None])


@ti.func
def get_diffuse_light_radiance(material_idx: ti.i32) -> vec3:
    """Emitted radiance (color * intensity) of a registered light."""
    return diffuse_light_colors[material_idx] * diffuse_light_intensities[material_idx]


@ti.func
def emit_diffuse_light_by_id(material_idx: ti.i32, front_face: ti.i32):
    """Emit using the parameters stored at a registry index."""
    return emit_diffuse_light(
        diffuse_light_colors[material_idx],
        diffuse_light_intensities[material_idx],
        diffuse_light_double_sided[material_idx],
        front_face,
    )
