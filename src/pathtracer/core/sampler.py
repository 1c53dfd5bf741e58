"""Deterministic per-sample random number generation.

Every (pixel, sample) pair owns an independent random stream. The stream's
state is a 32-bit unsigned integer seeded by hashing the pixel coordinates,
the sample index and the global seed, then advanced with xorshift32. The
state is threaded explicitly through every sampling function (Taichi
functions take their arguments by value), so each function returns the
advanced state alongside its sample:

    value, rng = next_float(rng)

Because no generator state is shared between pixels, a pixel's samples do
not depend on how the parallel loop is scheduled across worker threads.

Example:
    >>> @ti.kernel
    ... def kernel():
    ...     rng = seed_rng(10, 20, 0, 1234)
    ...     u, rng = next_float(rng)
    ...     direction, rng = random_unit_vector(rng)
"""

import taichi as ti
import taichi.math as tm

from .ray import build_onb_from_normal, local_to_world

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3

# 2^-24: converts the low 24 bits of a state into a float in [0, 1)
_INV_2_24 = 1.0 / 16777216.0


@ti.func
def hash_u32(value: ti.u32) -> ti.u32:
    """Scramble a 32-bit integer (Thomas Wang's integer hash).

    Args:
        value: The integer to hash.

    Returns:
        The hashed integer.
    """
    x = value
    x = (x ^ 61) ^ (x >> 16)
    x = x * 9
    x = x ^ (x >> 4)
    x = x * 0x27D4EB2D
    x = x ^ (x >> 15)
    return x


@ti.func
def seed_rng(pixel_i: ti.i32, pixel_j: ti.i32, sample_index: ti.i32, seed: ti.u32) -> ti.u32:
    """Derive the initial random state for one sample of one pixel.

    Args:
        pixel_i: Pixel x-coordinate.
        pixel_j: Pixel y-coordinate.
        sample_index: Index of the sample within the pixel.
        seed: Global render seed.

    Returns:
        A non-zero 32-bit state.
    """
    h = hash_u32(seed)
    h = hash_u32(h ^ ti.cast(pixel_i, ti.u32))
    h = hash_u32(h ^ ti.cast(pixel_j, ti.u32))
    h = hash_u32(h ^ ti.cast(sample_index, ti.u32))
    # xorshift has a fixed point at zero
    if h == 0:
        h = ti.cast(1, ti.u32)
    return h


@ti.func
def next_u32(state: ti.u32) -> ti.u32:
    """Advance an xorshift32 state.

    Args:
        state: The current (non-zero) state.

    Returns:
        The next state.
    """
    x = state
    x ^= x << 13
    x ^= x >> 17
    x ^= x << 5
    return x


@ti.func
def next_float(state: ti.u32):
    """Draw a uniform float in [0, 1).

    Args:
        state: The current random state.

    Returns:
        A tuple of (value, new_state).
    """
    new_state = next_u32(state)
    value = ti.cast(new_state & 0xFFFFFF, ti.f32) * _INV_2_24
    return value, new_state


# =============================================================================
# Random Sampling Utilities for Monte Carlo
# =============================================================================


@ti.func
def random_unit_vector(state: ti.u32):
    """Generate a random unit vector uniformly distributed on the sphere.

    Args:
        state: The current random state.

    Returns:
        A tuple of (direction, new_state).
    """
    rng = state
    r1, rng = next_float(rng)
    r2, rng = next_float(rng)
    z = 1.0 - 2.0 * r1
    r = ti.sqrt(tm.max(0.0, 1.0 - z * z))
    phi = 2.0 * tm.pi * r2
    return vec3(r * ti.cos(phi), r * ti.sin(phi), z), rng


@ti.func
def random_in_unit_sphere(state: ti.u32):
    """Generate a random point uniformly distributed inside the unit sphere.

    Args:
        state: The current random state.

    Returns:
        A tuple of (point, new_state) with length(point) <= 1.
    """
    rng = state
    direction, rng = random_unit_vector(rng)
    r, rng = next_float(rng)
    return direction * tm.pow(r, 1.0 / 3.0), rng


@ti.func
def random_in_unit_disk(state: ti.u32):
    """Generate a random point inside the unit disk in the xy-plane.

    Used for lens sampling in the thin-lens camera.

    Args:
        state: The current random state.

    Returns:
        A tuple of (point, new_state) where point = (x, y, 0), x^2 + y^2 < 1.
    """
    rng = state
    r1, rng = next_float(rng)
    r2, rng = next_float(rng)
    r = ti.sqrt(r1)
    phi = 2.0 * tm.pi * r2
    return vec3(r * ti.cos(phi), r * ti.sin(phi), 0.0), rng


@ti.func
def random_cosine_direction(state: ti.u32):
    """Generate a random direction with cosine-weighted distribution.

    The distribution has PDF = cos(theta) / pi in the local z-up frame.

    Args:
        state: The current random state.

    Returns:
        A tuple of (local_direction, new_state).
    """
    rng = state
    r1, rng = next_float(rng)
    r2, rng = next_float(rng)
    phi = 2.0 * tm.pi * r1
    sqrt_r2 = ti.sqrt(r2)
    x = ti.cos(phi) * sqrt_r2
    y = ti.sin(phi) * sqrt_r2
    z = ti.sqrt(1.0 - r2)
    return vec3(x, y, z), rng


@ti.func
def sample_cosine_hemisphere(normal: vec3, state: ti.u32):
    """Cosine-weighted hemisphere sampling around a normal.

    Args:
        normal: The surface normal defining the hemisphere orientation.
        state: The current random state.

    Returns:
        A tuple of (direction, pdf, new_state) where pdf = cos(theta) / pi.
    """
    rng = state
    local_dir, rng = random_cosine_direction(rng)
    tangent, bitangent, n = build_onb_from_normal(normal)
    world_dir = local_to_world(local_dir, tangent, bitangent, n)
    pdf = tm.dot(world_dir, normal) / tm.pi
    return world_dir, pdf, rng
