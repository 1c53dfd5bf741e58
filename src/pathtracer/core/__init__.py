"""Core rendering module.

Components:
    ray: Ray data structure and vector utilities
    sampler: Explicit-state random number generation and sampling
    integrator: Path tracing kernel and sample accumulation
    renderer: Progressive rendering, frames and animation

The integrator and renderer are NOT imported here: they depend on the scene
and camera packages, which import this package. Import them directly, e.g.
``from pathtracer.core.renderer import ProgressiveRenderer``.
"""

from .ray import (
    Ray,
    build_onb_from_normal,
    is_finite,
    local_to_world,
    make_ray,
    near_zero,
    ray_at,
    reflect,
    refract,
    safe_normalize,
    schlick_fresnel,
    vec3,
)
from .sampler import (
    hash_u32,
    next_float,
    next_u32,
    random_cosine_direction,
    random_in_unit_disk,
    random_in_unit_sphere,
    random_unit_vector,
    sample_cosine_hemisphere,
    seed_rng,
)

__all__ = [
    "Ray",
    "ray_at",
    "make_ray",
    "vec3",
    "safe_normalize",
    "reflect",
    "refract",
    "schlick_fresnel",
    "near_zero",
    "is_finite",
    "build_onb_from_normal",
    "local_to_world",
    "hash_u32",
    "seed_rng",
    "next_u32",
    "next_float",
    "random_unit_vector",
    "random_in_unit_sphere",
    "random_in_unit_disk",
    "random_cosine_direction",
    "sample_cosine_hemisphere",
]
