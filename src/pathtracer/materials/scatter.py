"""Common result type shared by all material scatter functions.

Every material answers one question at a hit point: does the path continue
(SCATTERED, with a new direction and a color weight), end at a light source
(EMITTED, with the emitted radiance) or end without contribution (ABSORBED)?
"""

import math

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

# Scatter outcomes
SCATTERED = 0
EMITTED = 1
ABSORBED = 2


@ti.dataclass
class ScatterResult:
    """Outcome of a material interaction.

    Attributes:
        kind: SCATTERED, EMITTED or ABSORBED.
        direction: The scattered direction (normalized). Only meaningful
            when kind == SCATTERED.
        attenuation: The color weight of a scattered path, or the emitted
            radiance when kind == EMITTED.
    """

    kind: ti.i32
    direction: vec3
    attenuation: vec3


@ti.func
def make_scattered(direction: vec3, attenuation: vec3) -> ScatterResult:
    return ScatterResult(kind=SCATTERED, direction=direction, attenuation=attenuation)


@ti.func
def make_emitted(radiance: vec3) -> ScatterResult:
    return ScatterResult(kind=EMITTED, direction=vec3(0.0, 0.0, 0.0), attenuation=radiance)


@ti.func
def make_absorbed() -> ScatterResult:
    return ScatterResult(
        kind=ABSORBED, direction=vec3(0.0, 0.0, 0.0), attenuation=vec3(0.0, 0.0, 0.0)
    )


def validate_color(name: str, color, upper: float | None = 1.0) -> tuple[float, float, float]:
    """Check an RGB triple and return it as floats.

    Args:
        name: Parameter name used in error messages.
        color: Sequence of three numbers.
        upper: Inclusive upper bound per component, or None for no bound.

    Returns:
        The color as a tuple of three floats.

    Raises:
        ValueError: If the color does not have three finite components
            within [0, upper].
    """
    values = tuple(float(c) for c in color)
    if len(values) != 3:
        raise ValueError(f"{name} must have 3 components, got {len(values)}")
    for i, component in enumerate(values):
        if not math.isfinite(component):
            raise ValueError(f"{name} component {i} = {component} is not finite")
        if component < 0.0 or (upper is not None and component > upper):
            bound = f"[0, {upper}]" if upper is not None else "[0, inf)"
            raise ValueError(f"{name} component {i} = {component} is outside {bound}")
    return values
