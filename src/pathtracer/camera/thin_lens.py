"""Thin-lens camera for perspective ray generation with depth of field.

The camera builds an orthonormal basis (u, v, w) from the view parameters:
- w: points from lookat toward lookfrom (opposite view direction)
- u: points right in the image plane
- v: points up in the image plane

The viewport is placed on the focus plane, focus_dist in front of the eye.
Primary rays start at a random point on a lens disk of radius aperture / 2
around the eye and pass through the focus-plane point for the requested
image coordinates, so geometry on the focus plane stays sharp. With
aperture == 0 the camera is a pinhole and every ray starts at the eye.

Example:
    >>> camera = Camera(
    ...     lookfrom=(0.0, 0.0, 3.0),
    ...     lookat=(0.0, 0.0, 0.0),
    ...     vup=(0.0, 1.0, 0.0),
    ...     vfov=60.0,
    ...     aspect_ratio=16.0 / 9.0,
    ... )
    >>> setup_camera(camera)
    >>> # inside a kernel: ray, rng = get_ray(0.5, 0.5, rng)
"""

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import make_ray, vec3
from pathtracer.core.sampler import random_in_unit_disk

# =============================================================================
# Camera Data Structures
# =============================================================================


@dataclass(frozen=True)
class Camera:
    """Configuration for a thin-lens camera.

    Attributes:
        lookfrom: Eye position in world space.
        lookat: Point the camera looks at.
        vup: Up direction used to orient the image (typically (0, 1, 0)).
        vfov: Vertical field of view in degrees, in (0, 180).
        aspect_ratio: Width divided by height of the output image.
        aperture: Lens diameter. 0 gives a pinhole camera.
        focus_dist: Distance from the eye to the plane in focus. None
            focuses on the look-at point.
    """

    lookfrom: tuple[float, float, float]
    lookat: tuple[float, float, float]
    vup: tuple[float, float, float] = (0.0, 1.0, 0.0)
    vfov: float = 40.0
    aspect_ratio: float = 16.0 / 9.0
    aperture: float = 0.0
    focus_dist: float | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.vfov < 180.0:
            raise ValueError(f"vfov must be in (0, 180) degrees, got {self.vfov}")
        if self.aspect_ratio <= 0.0:
            raise ValueError(f"aspect_ratio must be positive, got {self.aspect_ratio}")
        if self.aperture < 0.0:
            raise ValueError(f"aperture must be non-negative, got {self.aperture}")
        if self.focus_dist is not None and self.focus_dist <= 0.0:
            raise ValueError(f"focus_dist must be positive, got {self.focus_dist}")

    @property
    def lens_radius(self) -> float:
        return self.aperture / 2.0

    def resolved_focus_dist(self) -> float:
        """The focus distance, defaulting to the eye-to-target distance."""
        if self.focus_dist is not None:
            return float(self.focus_dist)
        return float(np.linalg.norm(np.subtract(self.lookfrom, self.lookat, dtype=np.float64)))

    def basis(self) -> dict[str, npt.NDArray[np.float64]]:
        """Compute the camera frame and viewport (host side, float64).

        Returns:
            Dictionary with origin, u, v, w, horizontal, vertical and
            lower_left. The viewport lies on the focus plane.

        Raises:
            ValueError: If lookfrom equals lookat or vup is parallel to the
                view direction.
        """
        lookfrom = np.asarray(self.lookfrom, dtype=np.float64)
        lookat = np.asarray(self.lookat, dtype=np.float64)
        vup = np.asarray(self.vup, dtype=np.float64)

        w = lookfrom - lookat
        w_len = np.linalg.norm(w)
        if w_len < 1e-12:
            raise ValueError("Camera lookfrom and lookat must differ")
        w = w / w_len

        u = np.cross(vup, w)
        u_len = np.linalg.norm(u)
        if u_len < 1e-12:
            raise ValueError("Camera vup must not be parallel to the view direction")
        u = u / u_len
        v = np.cross(w, u)

        h = math.tan(math.radians(self.vfov) / 2.0)
        focus = self.resolved_focus_dist()
        viewport_height = 2.0 * h * focus
        viewport_width = self.aspect_ratio * viewport_height

        horizontal = viewport_width * u
        vertical = viewport_height * v
        lower_left = lookfrom - focus * w - horizontal / 2.0 - vertical / 2.0

        return {
            "origin": lookfrom,
            "u": u,
            "v": v,
            "w": w,
            "horizontal": horizontal,
            "vertical": vertical,
            "lower_left": lower_left,
        }

    def orbit(self, angle: float, pivot: Sequence[float] | None = None) -> "Camera":
        """Rotate the eye around the vertical axis through a pivot.

        The look-at point, up vector and optics are kept; the eye keeps its
        height and its horizontal distance to the pivot.

        Args:
            angle: Rotation angle in radians (counter-clockwise seen from +y
                in the x-z plane, from +x toward +z).
            pivot: Point the vertical axis passes through. Defaults to lookat.

        Returns:
            A new Camera.
        """
        center = np.asarray(self.lookat if pivot is None else pivot, dtype=np.float64)
        offset = np.asarray(self.lookfrom, dtype=np.float64) - center
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)
        x = offset[0] * cos_a - offset[2] * sin_a
        z = offset[0] * sin_a + offset[2] * cos_a
        eye = center + np.array([x, offset[1], z])
        return replace(self, lookfrom=(float(eye[0]), float(eye[1]), float(eye[2])))


def orbit_sequence(
    camera: Camera,
    frames: int,
    pivot: Sequence[float] | None = None,
) -> Iterator[Camera]:
    """Yield one camera per animation frame, orbiting a full turn.

    Frame i uses the angle 2 * pi * i / frames, so frame 0 is the input
    camera and the sequence closes into a loop.

    Raises:
        ValueError: If frames is not positive.
    """
    if frames <= 0:
        raise ValueError(f"frames must be positive, got {frames}")
    for i in range(frames):
        yield camera.orbit(2.0 * math.pi * i / frames, pivot)


# =============================================================================
# Taichi Fields for Camera State
# =============================================================================

_camera_origin = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_u = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_v = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_w = ti.Vector.field(3, dtype=ti.f32, shape=())
_viewport_horizontal = ti.Vector.field(3, dtype=ti.f32, shape=())
_viewport_vertical = ti.Vector.field(3, dtype=ti.f32, shape=())
_lower_left_corner = ti.Vector.field(3, dtype=ti.f32, shape=())
_lens_radius = ti.field(dtype=ti.f32, shape=())


def setup_camera(camera: Camera) -> None:
    """Write the camera frame and viewport into the device fields.

    Must be called before rendering and again whenever the camera changes.

    Raises:
        ValueError: If the camera frame is degenerate.
    """
    frame = camera.basis()
    _camera_origin[None] = frame["origin"].tolist()
    _camera_u[None] = frame["u"].tolist()
    _camera_v[None] = frame["v"].tolist()
    _camera_w[None] = frame["w"].tolist()
    _viewport_horizontal[None] = frame["horizontal"].tolist()
    _viewport_vertical[None] = frame["vertical"].tolist()
    _lower_left_corner[None] = frame["lower_left"].tolist()
    _lens_radius[None] = camera.lens_radius


# =============================================================================
# Ray Generation
# =============================================================================


@ti.func
def get_ray(s: ti.f32, t: ti.f32, rng: ti.u32):
    """Generate a primary ray through normalized image coordinates.

    Coordinates are normalized: s = 0 is the left edge and s = 1 the right
    edge; t = 0 is the bottom edge and t = 1 the top edge.

    Args:
        s: Horizontal coordinate in [0, 1].
        t: Vertical coordinate in [0, 1].
        rng: The current random state (advanced only when the lens is open).

    Returns:
        A tuple of (Ray, new_rng). The ray direction is normalized.
    """
    state = rng
    lens_offset = vec3(0.0, 0.0, 0.0)
    if _lens_radius[None] > 0.0:
        disk, state = random_in_unit_disk(state)
        lens_offset = _lens_radius[None] * (disk.x * _camera_u[None] + disk.y * _camera_v[None])

    origin = _camera_origin[None] + lens_offset
    target = _lower_left_corner[None] + s * _viewport_horizontal[None] + t * _viewport_vertical[None]
    return make_ray(origin, tm.normalize(target - origin)), state


@ti.func
def get_camera_origin() -> vec3:
    return _camera_origin[None]


def get_camera_info() -> dict[str, tuple[float, ...]]:
    """Get current camera state for debugging.

    Returns:
        Dictionary with origin, u, v, w, horizontal, vertical, lower_left
        and lens_radius as read back from the device fields.
    """

    def read(f: "ti.Field") -> tuple[float, float, float]:
        value = f[None]
        return (float(value[0]), float(value[1]), float(value[2]))

    return {
        "origin": read(_camera_origin),
        "u": read(_camera_u),
        "v": read(_camera_v),
        "w": read(_camera_w),
        "horizontal": read(_viewport_horizontal),
        "vertical": read(_viewport_vertical),
        "lower_left": read(_lower_left_corner),
        "lens_radius": (float(_lens_radius[None]),),
    }

