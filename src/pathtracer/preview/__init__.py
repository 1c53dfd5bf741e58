"""Output utilities for rendered frames.

Components:
    display: Tone mapping (Reinhard, exposure) and gamma encoding
    export: PNG and PPM image sinks, frame naming for animations
"""

from pathtracer.preview.display import (
    ToneMapMethod,
    apply_gamma,
    process_image_for_display,
    tone_map_exposure,
    tone_map_reinhard,
)
from pathtracer.preview.export import (
    compute_rmse,
    frame_path,
    image_to_uint8,
    save_png,
    save_ppm,
)

__all__ = [
    # Tone mapping
    "tone_map_reinhard",
    "tone_map_exposure",
    "apply_gamma",
    "process_image_for_display",
    "ToneMapMethod",
    # Export functions
    "save_png",
    "save_ppm",
    "frame_path",
    "image_to_uint8",
    "compute_rmse",
]
