"""Scene module for primitive storage and ray-scene queries.

Components:
    intersection: Primitive fields, the unified primitive table and the
        nearest-hit query (BVH traversal plus unbounded planes)
    manager: SceneManager coordinating materials, primitives and the BVH
    presets: Predefined scenes (import pathtracer.scene.presets directly;
        it depends on the integrator, which depends on this package)

Scene data is organized for data-parallel access:
    - Structure-of-Arrays layout for geometric data
    - One material id space shared by all material types
"""

from .intersection import (
    MAX_PLANES,
    MAX_PRIMITIVES,
    MAX_SPHERES,
    MAX_TRIANGLES,
    MAX_VOLUMES,
    PRIM_PLANE,
    PRIM_SPHERE,
    PRIM_TRIANGLE,
    PRIM_VOLUME,
    SceneHitRecord,
    clear_scene,
    intersect_scene,
    intersect_scene_linear,
)
from .manager import (
    MAX_MATERIALS,
    MaterialInfo,
    MaterialType,
    PrimitiveInfo,
    SceneManager,
    get_material_type,
    get_material_type_index,
)

__all__ = [
    # Intersection module
    "SceneHitRecord",
    "clear_scene",
    "intersect_scene",
    "intersect_scene_linear",
    "PRIM_SPHERE",
    "PRIM_PLANE",
    "PRIM_TRIANGLE",
    "PRIM_VOLUME",
    "MAX_PRIMITIVES",
    "MAX_SPHERES",
    "MAX_PLANES",
    "MAX_TRIANGLES",
    "MAX_VOLUMES",
    # Manager module
    "SceneManager",
    "MaterialType",
    "MaterialInfo",
    "PrimitiveInfo",
    "MAX_MATERIALS",
    "get_material_type",
    "get_material_type_index",
]
