"""Predefined scenes.

Each factory returns a ready-to-render (SceneManager, Camera, Background)
triple:

- "spheres": glass, metal and diffuse balls with a tilted card on a large
  ground plane under a sky gradient. Also used for the orbit animation.
- "cornell": the Cornell box with two rotated blocks, lit only by the
  ceiling lamp against a black background.
- "balls": a thousand randomly placed diffuse balls seen through a lens
  with a small aperture.

Scene field of view values are given horizontally and converted to the
vertical field of view the camera expects.

Example:
    >>> scene, camera, background = get_preset("cornell")
    >>> scene.build()
"""

from __future__ import annotations

import math
from collections.abc import Callable

import numpy as np

from pathtracer.camera.thin_lens import Camera
from pathtracer.config import PRESETS, resolve_preset_name
from pathtracer.core.integrator import Background
from pathtracer.scene.manager import SceneManager

Preset = tuple[SceneManager, Camera, Background]


def vfov_from_hfov(hfov_deg: float, aspect_ratio: float) -> float:
    """Convert a horizontal field of view to a vertical one (degrees)."""
    half = math.tan(math.radians(hfov_deg) / 2.0) / aspect_ratio
    return math.degrees(2.0 * math.atan(half))


def _add_ground(scene: SceneManager) -> None:
    blue = scene.add_lambertian_material((0.3, 0.5, 0.8))
    scene.add_plane_from_center((0.0, -0.5, -1.0), (100.0, 0.0, 0.0), (0.0, 0.0, 100.0), blue)


# =============================================================================
# Spheres
# =============================================================================

SPHERES_LOOKAT = (0.0, 0.0, -1.0)
SPHERES_ORBIT_DISTANCE = 3.0 * math.sqrt(2.0)
SPHERES_ORBIT_HEIGHT = 0.4


def create_spheres_scene(aspect_ratio: float = 640 / 480, orbit: bool = False) -> Preset:
    """Glass, metal and diffuse spheres with a tilted card.

    Args:
        aspect_ratio: Image width / height.
        orbit: If True the camera starts on the animation orbit
            (SPHERES_ORBIT_DISTANCE from the look-at point, raised by
            SPHERES_ORBIT_HEIGHT) instead of the still-frame position.
    """
    scene = SceneManager()

    red = scene.add_lambertian_material((0.8, 0.3, 0.4))
    gray = scene.add_lambertian_material((0.8, 0.8, 0.8))
    glass = scene.add_dielectric_material(1.52)
    green_metal = scene.add_metal_material((0.6, 0.8, 0.3), roughness=0.3)

    _add_ground(scene)
    scene.add_sphere((0.6, -0.2, -1.0), 0.3, red)
    scene.add_sphere((-0.27, -0.1, -0.8), 0.4, glass)
    scene.add_sphere((0.0, 0.0, -1.5), 0.5, green_metal)
    scene.add_plane_from_center((-0.5, 0.8, -2.5), (0.25, 0.0, -0.25), (0.25, 0.25, 0.0), gray)

    if orbit:
        lookfrom = (
            SPHERES_LOOKAT[0] + SPHERES_ORBIT_DISTANCE,
            SPHERES_LOOKAT[1] + SPHERES_ORBIT_HEIGHT,
            SPHERES_LOOKAT[2],
        )
    else:
        lookfrom = (0.7, -0.3, 3.0)

    camera = Camera(
        lookfrom=lookfrom,
        lookat=SPHERES_LOOKAT,
        vfov=vfov_from_hfov(30.0, aspect_ratio),
        aspect_ratio=aspect_ratio,
    )
    return scene, camera, Background()


# =============================================================================
# Cornell Box
# =============================================================================


def create_cornell_scene(aspect_ratio: float = 1.0) -> Preset:
    """The Cornell box (556 x 548.8 x 559.2) with its two blocks.

    The ceiling lamp sits 0.1 below the ceiling and is the only light.
    """
    scene = SceneManager()

    white = scene.add_lambertian_material((1.0, 1.0, 1.0))
    red = scene.add_lambertian_material((0.57, 0.025, 0.025))
    green = scene.add_lambertian_material((0.025, 0.236, 0.025))
    light = scene.add_diffuse_light_material((1.0, 0.67, 0.21), intensity=16.3)

    # Walls, center + two half-spans each
    scene.add_plane_from_center((278.0, 0.0, 279.6), (-278.0, 0.0, 0.0), (0.0, 0.0, 279.6), white)
    scene.add_plane_from_center((278.0, 548.8, 279.6), (278.0, 0.0, 0.0), (0.0, 0.0, 279.6), white)
    scene.add_plane_from_center((278.0, 274.4, 559.2), (-278.0, 0.0, 0.0), (0.0, 274.4, 0.0), white)
    scene.add_plane_from_center((0.0, 274.4, 279.6), (0.0, 0.0, 279.6), (0.0, -274.4, 0.0), green)
    scene.add_plane_from_center((556.0, 274.4, 279.6), (0.0, 0.0, 279.6), (0.0, 274.4, 0.0), red)

    scene.add_box(
        (185.0, 82.5, 168.5), (80.0, 0.0, 24.0), (0.0, 82.5, 0.0), (24.0, 0.0, -80.0), white
    )
    scene.add_box(
        (368.0, 165.0, 351.0), (79.0, 0.0, -24.5), (0.0, 165.0, 0.0), (24.5, 0.0, 79.0), white
    )

    scene.add_plane_from_center((278.0, 548.7, 279.5), (65.0, 0.0, 0.0), (0.0, 0.0, 52.5), light)

    camera = Camera(
        lookfrom=(278.0, 273.0, -800.0),
        lookat=(278.0, 273.0, 0.0),
        vfov=vfov_from_hfov(37.0, aspect_ratio),
        aspect_ratio=aspect_ratio,
    )
    return scene, camera, Background.black()


# =============================================================================
# Random Balls
# =============================================================================

BALL_COLORS = (
    (0.8, 0.3, 0.4),  # reddish
    (0.8, 0.6, 0.3),  # orangish
    (0.8, 0.8, 0.4),  # yellowish
    (0.5, 0.8, 0.3),  # greenish
    (0.3, 0.7, 0.8),  # bluish
    (0.4, 0.3, 0.8),  # indigoish
    (0.6, 0.3, 0.8),  # violetish
)


def create_balls_scene(
    aspect_ratio: float = 640 / 480,
    count: int = 1000,
    seed: int = 0,
) -> Preset:
    """Many diffuse balls resting on the ground, seen with depth of field.

    Args:
        aspect_ratio: Image width / height.
        count: Number of balls.
        seed: Seed for ball placement.

    Raises:
        ValueError: If count is negative.
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")

    scene = SceneManager()
    _add_ground(scene)
    palette = [scene.add_lambertian_material(color) for color in BALL_COLORS]

    rng = np.random.default_rng(seed)
    for i in range(count):
        x = 25.0 - 50.0 * rng.random()
        z = -50.0 * rng.random()
        radius = 0.5 * rng.random() + 0.3
        scene.add_sphere((x, -0.5 + radius, z), radius, palette[i % len(palette)])

    camera = Camera(
        lookfrom=(0.7, 2.0, 3.0),
        lookat=(0.0, 0.0, -10.0),
        vfov=vfov_from_hfov(30.0, aspect_ratio),
        aspect_ratio=aspect_ratio,
        aperture=0.1,
    )
    return scene, camera, Background()


_FACTORIES: dict[str, Callable[[float], Preset]] = {
    "spheres": create_spheres_scene,
    "cornell": create_cornell_scene,
    "balls": create_balls_scene,
}


def get_preset(name: str | int, aspect_ratio: float | None = None) -> Preset:
    """Create a predefined scene by name or number.

    Args:
        name: "spheres", "cornell", "balls", or 1, 2, 3.
        aspect_ratio: Image width / height. Defaults to the preset's own size.

    Raises:
        ValueError: If the preset is unknown.
    """
    key = resolve_preset_name(name)
    info = PRESETS[key]
    if aspect_ratio is None:
        aspect_ratio = info.width / info.height
    return _FACTORIES[key](aspect_ratio)
