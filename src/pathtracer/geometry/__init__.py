"""Geometry module for shape primitives and spatial acceleration.

Components:
    sphere: Sphere primitive and the shared HitRecord
    plane: Bounded parallelograms and unbounded planes
    triangle: Triangles with optional vertex normals
    volume: Constant-density fog bounded by a sphere or a box
    aabb: Axis-aligned bounding boxes (host class and device slab test)
    bvh: Bounding Volume Hierarchy build and device storage
    shapes: Boxes, icosahedra and mesh arrays built from the primitives

All intersection routines are Taichi functions (@ti.func) that follow the
same pattern:
    record = hit_shape(ray_origin, ray_direction, shape, t_min, t_max)
"""

from .aabb import AABB, hit_aabb, safe_inverse_direction
from .bvh import FlatBVH, build_bvh, upload_bvh
from .plane import Plane, hit_plane, plane_area, plane_bounds, plane_from_center, tangent_frame
from .shapes import box_faces, icosahedron_vertices, validate_mesh
from .sphere import HitRecord, Sphere, hit_sphere, make_miss_record, sphere_bounds
from .triangle import Triangle, hit_triangle, triangle_area, triangle_bounds
from .volume import box_inverse_basis, hit_box_volume, hit_volume

__all__ = [
    "AABB",
    "hit_aabb",
    "safe_inverse_direction",
    "FlatBVH",
    "build_bvh",
    "upload_bvh",
    "Sphere",
    "HitRecord",
    "hit_sphere",
    "make_miss_record",
    "sphere_bounds",
    "Plane",
    "hit_plane",
    "plane_area",
    "plane_bounds",
    "plane_from_center",
    "tangent_frame",
    "Triangle",
    "hit_triangle",
    "triangle_area",
    "triangle_bounds",
    "hit_volume",
    "hit_box_volume",
    "box_inverse_basis",
    "box_faces",
    "icosahedron_vertices",
    "validate_mesh",
]
