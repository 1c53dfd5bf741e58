"""Camera module for primary ray generation.

Components:
    thin_lens: Look-at camera with vertical field of view, optional depth of
        field and orbit helpers for turntable animations

Ray generation uses normalized image coordinates:
    s in [0, 1]: left to right across the image
    t in [0, 1]: bottom to top across the image
"""

from .thin_lens import (
    Camera,
    get_camera_info,
    get_camera_origin,
    get_ray,
    orbit_sequence,
    setup_camera,
)

__all__ = [
    "Camera",
    "setup_camera",
    "get_ray",
    "get_camera_origin",
    "get_camera_info",
    "orbit_sequence",
]
