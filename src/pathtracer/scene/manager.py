"""Unified scene manager for coordinating primitives and materials.

The SceneManager keeps a single material id space across all material
types and records, for every material id, which registry it lives in and
at which index. The path tracer uses that mapping to dispatch scattering.

It also owns the primitive table: every add_* call registers primitives
with a material id and remembers their bounding boxes, and build() turns
the bounded primitives into a BVH that is uploaded for rendering. The
hierarchy is rebuilt only when primitives were added since the last build.

Example:
    >>> scene = SceneManager()
    >>> red = scene.add_lambertian_material(albedo=(0.8, 0.1, 0.1))
    >>> glass = scene.add_dielectric_material(ior=1.5)
    >>> scene.add_sphere((0, 0, -1), 0.5, red)
    >>> scene.add_sphere((1, 0, -1), 0.5, glass)
    >>> scene.build()
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

import numpy as np
import numpy.typing as npt
import taichi as ti

from pathtracer.geometry.aabb import AABB
from pathtracer.geometry.bvh import FlatBVH, SplitMethod, build_bvh, upload_bvh
from pathtracer.geometry.plane import plane_bounds, plane_from_center, tangent_frame
from pathtracer.geometry.shapes import (
    ICOSAHEDRON_FACES,
    box_faces,
    icosahedron_vertices,
    validate_mesh,
)
from pathtracer.geometry.sphere import sphere_bounds
from pathtracer.geometry.triangle import triangle_bounds
from pathtracer.materials.dielectric import add_dielectric_material, clear_dielectric_materials
from pathtracer.materials.diffuse_light import (
    add_diffuse_light_material,
    clear_diffuse_light_materials,
)
from pathtracer.materials.isotropic import add_isotropic_material, clear_isotropic_materials
from pathtracer.materials.lambertian import add_lambertian_material, clear_lambertian_materials
from pathtracer.materials.metal import add_metal_material, clear_metal_materials
from pathtracer.scene import intersection

logger = logging.getLogger(__name__)


class MaterialType(IntEnum):
    """Enumeration of supported material types.

    Used for material dispatch in the path tracer to determine which
    scattering function to call.
    """

    LAMBERTIAN = 0
    METAL = 1
    DIELECTRIC = 2
    DIFFUSE_LIGHT = 3
    ISOTROPIC = 4


MAX_MATERIALS = 4096

# material_types[i] stores the MaterialType for material id i;
# material_type_indices[i] the index inside that type's registry
material_types = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
material_type_indices = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
num_materials = ti.field(dtype=ti.i32, shape=())


def _clear_material_tracking() -> None:
    num_materials[None] = 0


@ti.func
def get_material_type(material_id: ti.i32) -> ti.i32:
    """Get the material type for a material id (-1 for invalid ids)."""
    result = -1
    if 0 <= material_id < num_materials[None]:
        result = material_types[material_id]
    return result


@ti.func
def get_material_type_index(material_id: ti.i32) -> ti.i32:
    """Get the registry index for a material id (-1 for invalid ids)."""
    result = -1
    if 0 <= material_id < num_materials[None]:
        result = material_type_indices[material_id]
    return result


@dataclass
class MaterialInfo:
    """Information about a registered material.

    Attributes:
        material_id: The unified material ID.
        material_type: The type of material.
        type_index: The index within the type-specific registry.
        params: The material parameters as provided during creation.
    """

    material_id: int
    material_type: MaterialType
    type_index: int
    params: dict[str, Any]


@dataclass
class PrimitiveInfo:
    """Information about a primitive in the scene.

    Attributes:
        prim_id: The id in the unified primitive table.
        kind: "sphere", "plane", "triangle" or "volume".
        material_id: The material id assigned to the primitive.
        bounds: The bounding box, or None for unbounded primitives.
        params: The geometric parameters as provided during creation.
    """

    prim_id: int
    kind: str
    material_id: int
    bounds: AABB | None
    params: dict[str, Any] = field(default_factory=dict)


def _as_tuple(values: Sequence[float]) -> tuple[float, float, float]:
    return (float(values[0]), float(values[1]), float(values[2]))


class SceneManager:
    """Unified scene manager coordinating primitives, materials and the BVH.

    Only one scene is resident at a time: the primitive and material
    registries are module-level Taichi fields, so creating a SceneManager
    (or calling clear()) resets them.

    Attributes:
        materials: MaterialInfo for every registered material.
        primitives: PrimitiveInfo for every primitive, indexed by prim id.
        leaf_size: Maximum primitives per BVH leaf.
        split: BVH split strategy ("median" or "sah").
    """

    def __init__(self, leaf_size: int = 2, split: SplitMethod = "median") -> None:
        self.materials: list[MaterialInfo] = []
        self.primitives: list[PrimitiveInfo] = []
        self.leaf_size = leaf_size
        self.split: SplitMethod = split
        self._bvh: FlatBVH | None = None
        self._dirty = True
        self._clear_all()

    def _clear_all(self) -> None:
        intersection.clear_scene()
        clear_lambertian_materials()
        clear_metal_materials()
        clear_dielectric_materials()
        clear_diffuse_light_materials()
        clear_isotropic_materials()
        _clear_material_tracking()
        self.materials.clear()
        self.primitives.clear()
        self._bvh = None
        self._dirty = True

    def clear(self) -> None:
        """Clear the entire scene (primitives, materials and BVH)."""
        self._clear_all()

    # =========================================================================
    # Material Management
    # =========================================================================

    def _register_material(
        self, material_type: MaterialType, type_index: int, params: dict[str, Any]
    ) -> int:
        material_id = num_materials[None]
        if material_id >= MAX_MATERIALS:
            raise RuntimeError(f"Maximum number of materials ({MAX_MATERIALS}) exceeded")

        material_types[material_id] = int(material_type)
        material_type_indices[material_id] = type_index
        num_materials[None] = material_id + 1

        self.materials.append(
            MaterialInfo(
                material_id=material_id,
                material_type=material_type,
                type_index=type_index,
                params=params,
            )
        )
        return material_id

    def add_lambertian_material(self, albedo: tuple[float, float, float]) -> int:
        """Add a Lambertian (diffuse) material.

        Args:
            albedo: The diffuse reflectance color as (R, G, B), each in [0, 1].

        Returns:
            The unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If any albedo component is outside [0, 1].
        """
        type_index = add_lambertian_material(albedo)
        return self._register_material(
            MaterialType.LAMBERTIAN, type_index, {"albedo": _as_tuple(albedo)}
        )

    def add_metal_material(
        self,
        albedo: tuple[float, float, float],
        roughness: float = 0.0,
    ) -> int:
        """Add a metal material.

        Args:
            albedo: The reflective color as (R, G, B), each in [0, 1].
            roughness: The surface roughness in [0, 1]. Default is 0 (mirror).

        Returns:
            The unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If the albedo or roughness is outside [0, 1].
        """
        type_index = add_metal_material(albedo, roughness)
        return self._register_material(
            MaterialType.METAL,
            type_index,
            {"albedo": _as_tuple(albedo), "roughness": float(roughness)},
        )

    def add_dielectric_material(self, ior: float = 1.5) -> int:
        """Add a dielectric (glass/water) material.

        Args:
            ior: Index of refraction. Default is 1.5 (typical glass).

        Returns:
            The unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If the IOR is less than 1.0.
        """
        type_index = add_dielectric_material(ior)
        return self._register_material(MaterialType.DIELECTRIC, type_index, {"ior": float(ior)})

    def add_diffuse_light_material(
        self,
        color: tuple[float, float, float],
        intensity: float = 1.0,
        double_sided: bool = True,
    ) -> int:
        """Add an emissive material.

        Args:
            color: The emission color as (R, G, B), non-negative.
            intensity: Scale applied to the color.
            double_sided: Whether both faces of a surface emit.

        Returns:
            The unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If the color or intensity is invalid.
        """
        type_index = add_diffuse_light_material(color, intensity, double_sided)
        return self._register_material(
            MaterialType.DIFFUSE_LIGHT,
            type_index,
            {
                "color": _as_tuple(color),
                "intensity": float(intensity),
                "double_sided": bool(double_sided),
            },
        )

    def add_isotropic_material(self, albedo: tuple[float, float, float]) -> int:
        """Add an isotropic medium material for fog volumes.

        Returns:
            The unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If any albedo component is outside [0, 1].
        """
        type_index = add_isotropic_material(albedo)
        return self._register_material(
            MaterialType.ISOTROPIC, type_index, {"albedo": _as_tuple(albedo)}
        )

    def get_material_count(self) -> int:
        """Get the total number of materials in the scene."""
        return int(num_materials[None])

    def get_material_info(self, material_id: int) -> MaterialInfo | None:
        """Get information about a material by ID, or None if unknown."""
        if 0 <= material_id < len(self.materials):
            return self.materials[material_id]
        return None

    def get_material_type_python(self, material_id: int) -> MaterialType | None:
        """Get the material type for a material id on the host side."""
        info = self.get_material_info(material_id)
        return info.material_type if info is not None else None

    def _check_material(self, material_id: int) -> None:
        if material_id < 0 or material_id >= num_materials[None]:
            raise ValueError(f"Invalid material_id: {material_id}")

    # =========================================================================
    # Primitive Management
    # =========================================================================

    def _track(
        self,
        prim_id: int,
        kind: str,
        material_id: int,
        bounds: AABB | None,
        params: dict[str, Any],
    ) -> int:
        self.primitives.append(PrimitiveInfo(prim_id, kind, material_id, bounds, params))
        self._dirty = True
        return prim_id

    def add_sphere(
        self,
        center: tuple[float, float, float],
        radius: float,
        material_id: int,
    ) -> int:
        """Add a sphere.

        Args:
            center: The center point as (x, y, z).
            radius: The radius. A zero radius is accepted and never hit.
            material_id: The unified material ID.

        Returns:
            The primitive id.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If material_id is invalid.
        """
        self._check_material(material_id)
        prim_id = intersection.add_sphere(center, radius, material_id)
        return self._track(
            prim_id,
            "sphere",
            material_id,
            sphere_bounds(center, radius).padded(),
            {"center": _as_tuple(center), "radius": float(radius)},
        )

    def add_plane(
        self,
        corner: tuple[float, float, float],
        edge_u: tuple[float, float, float],
        edge_v: tuple[float, float, float],
        material_id: int,
    ) -> int:
        """Add a bounded parallelogram corner + a*edge_u + b*edge_v, a, b in [0, 1].

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If material_id is invalid.
        """
        self._check_material(material_id)
        prim_id = intersection.add_plane(corner, edge_u, edge_v, True, material_id)
        return self._track(
            prim_id,
            "plane",
            material_id,
            plane_bounds(corner, edge_u, edge_v),
            {"corner": _as_tuple(corner), "edge_u": _as_tuple(edge_u), "edge_v": _as_tuple(edge_v)},
        )

    def add_plane_from_center(
        self,
        center: tuple[float, float, float],
        half_u: tuple[float, float, float],
        half_v: tuple[float, float, float],
        material_id: int,
    ) -> int:
        """Add a rectangle given by its center and two half-span vectors.

        The normal of the rectangle is cross(half_u, half_v).

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If material_id is invalid.
        """
        corner, edge_u, edge_v = plane_from_center(center, half_u, half_v)
        return self.add_plane(tuple(corner), tuple(edge_u), tuple(edge_v), material_id)

    def add_infinite_plane(
        self,
        point: tuple[float, float, float],
        normal: tuple[float, float, float],
        material_id: int,
    ) -> int:
        """Add an unbounded plane through a point.

        Unbounded planes have no bounding box; they are tested after the
        BVH traversal.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If material_id is invalid or the normal is zero.
        """
        self._check_material(material_id)
        tangent, bitangent = tangent_frame(normal)
        prim_id = intersection.add_plane(point, tangent, bitangent, False, material_id)
        return self._track(
            prim_id,
            "plane",
            material_id,
            None,
            {"point": _as_tuple(point), "normal": _as_tuple(normal)},
        )

    def add_triangle(
        self,
        v0: tuple[float, float, float],
        v1: tuple[float, float, float],
        v2: tuple[float, float, float],
        material_id: int,
        normals: Sequence[Sequence[float]] | None = None,
    ) -> int:
        """Add a triangle, optionally with per-vertex normals.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If material_id is invalid or normals is not three vectors.
        """
        self._check_material(material_id)
        if normals is not None and len(normals) != 3:
            raise ValueError(f"Expected 3 vertex normals, got {len(normals)}")
        prim_id = intersection.add_triangle(v0, v1, v2, material_id, normals)
        return self._track(
            prim_id,
            "triangle",
            material_id,
            triangle_bounds(v0, v1, v2),
            {"vertices": (_as_tuple(v0), _as_tuple(v1), _as_tuple(v2))},
        )

    def add_mesh(
        self,
        vertices: npt.ArrayLike,
        faces: npt.ArrayLike,
        material_id: int,
        normals: npt.ArrayLike | None = None,
    ) -> list[int]:
        """Add a triangle mesh from vertex and face arrays.

        Args:
            vertices: Vertex positions, shape (V, 3).
            faces: Vertex indices per triangle, shape (F, 3).
            material_id: The unified material ID shared by every triangle.
            normals: Optional per-vertex normals, shape (V, 3).

        Returns:
            The primitive ids of the triangles, in face order.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If the arrays are malformed or material_id is invalid.
        """
        self._check_material(material_id)
        verts, tris, norms = validate_mesh(vertices, faces, normals)
        prim_ids = []
        for a, b, c in tris:
            tri_normals = None if norms is None else (norms[a], norms[b], norms[c])
            prim_ids.append(
                self.add_triangle(
                    tuple(verts[a]), tuple(verts[b]), tuple(verts[c]), material_id, tri_normals
                )
            )
        logger.debug("Added mesh with %d vertices and %d triangles", len(verts), len(tris))
        return prim_ids

    def add_box(
        self,
        center: tuple[float, float, float],
        half_i: tuple[float, float, float],
        half_j: tuple[float, float, float],
        half_k: tuple[float, float, float],
        material_id: int,
    ) -> list[int]:
        """Add a (possibly rotated) box as six rectangles.

        Args:
            center: Center of the box.
            half_i: First half-span vector.
            half_j: Second half-span vector.
            half_k: Third half-span vector.
            material_id: The unified material ID shared by every face.

        Returns:
            The primitive ids of the six faces.
        """
        return [
            self.add_plane_from_center(tuple(c), tuple(u), tuple(v), material_id)
            for c, u, v in box_faces(center, half_i, half_j, half_k)
        ]

    def add_icosahedron(
        self,
        center: tuple[float, float, float],
        radius: float,
        material_id: int,
    ) -> list[int]:
        """Add a regular icosahedron (20 triangles) with the given circumradius."""
        return self.add_mesh(icosahedron_vertices(center, radius), ICOSAHEDRON_FACES, material_id)

    def add_fog_sphere(
        self,
        center: tuple[float, float, float],
        radius: float,
        density: float,
        material_id: int,
    ) -> int:
        """Add a constant-density fog volume bounded by a sphere.

        The material is normally an isotropic one.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If density or radius is not positive or material_id
                is invalid.
        """
        self._check_material(material_id)
        if not density > 0.0:
            raise ValueError(f"Fog density must be positive, got {density}")
        if not radius > 0.0:
            raise ValueError(f"Fog boundary radius must be positive, got {radius}")
        prim_id = intersection.add_volume(center, radius, density, material_id)
        return self._track(
            prim_id,
            "volume",
            material_id,
            sphere_bounds(center, radius).padded(),
            {"center": _as_tuple(center), "radius": float(radius), "density": float(density)},
        )

    def add_fog_box(
        self,
        center: tuple[float, float, float],
        half_i: tuple[float, float, float],
        half_j: tuple[float, float, float],
        half_k: tuple[float, float, float],
        density: float,
        material_id: int,
    ) -> int:
        """Add a constant-density fog volume bounded by a (possibly rotated) box.

        The box uses the same center/half-span form as add_box, so a fog
        block can share the outline of a solid one.

        Raises:
            RuntimeError: If the primitive capacity is exceeded.
            ValueError: If density is not positive, the spans enclose no
                volume or material_id is invalid.
        """
        self._check_material(material_id)
        if not density > 0.0:
            raise ValueError(f"Fog density must be positive, got {density}")
        prim_id = intersection.add_box_volume(center, half_i, half_j, half_k, density, material_id)

        c = np.asarray(center, dtype=np.float64)
        spans = [np.asarray(v, dtype=np.float64) for v in (half_i, half_j, half_k)]
        corners = [
            c + si * spans[0] + sj * spans[1] + sk * spans[2]
            for si in (-1.0, 1.0)
            for sj in (-1.0, 1.0)
            for sk in (-1.0, 1.0)
        ]
        return self._track(
            prim_id,
            "volume",
            material_id,
            AABB.from_points(corners).padded(),
            {
                "center": _as_tuple(center),
                "half_spans": tuple(_as_tuple(v) for v in (half_i, half_j, half_k)),
                "density": float(density),
            },
        )

    # =========================================================================
    # Acceleration Structure
    # =========================================================================

    @property
    def is_built(self) -> bool:
        """Whether the uploaded BVH reflects every primitive added so far."""
        return not self._dirty

    @property
    def bvh(self) -> FlatBVH | None:
        """The most recently built hierarchy (None before the first build)."""
        return self._bvh

    def build(self) -> FlatBVH:
        """Build and upload the BVH over all bounded primitives.

        Calling build() again without adding primitives is a no-op.

        Returns:
            The flattened hierarchy.
        """
        if not self._dirty and self._bvh is not None:
            return self._bvh

        bounded = [p for p in self.primitives if p.bounds is not None]
        boxes = [p.bounds for p in bounded]
        prim_ids = np.array([p.prim_id for p in bounded], dtype=np.int32)

        bvh = build_bvh(boxes, leaf_size=self.leaf_size, split=self.split)
        upload_bvh(bvh, prim_ids)
        self._bvh = bvh
        self._dirty = False

        logger.info(
            "Scene built: %d primitives (%d in BVH, %d unbounded), %d materials, BVH depth %d",
            len(self.primitives),
            len(bounded),
            len(self.primitives) - len(bounded),
            self.get_material_count(),
            bvh.depth,
        )
        return bvh

    def bounds(self) -> AABB:
        """Union of the bounds of every bounded primitive (empty if none)."""
        return AABB.union_all(p.bounds for p in self.primitives if p.bounds is not None)

    # =========================================================================
    # Scene Queries
    # =========================================================================

    def get_primitive_count(self) -> int:
        """Get the total number of primitives in the scene."""
        return intersection.get_primitive_count()

    def get_sphere_count(self) -> int:
        return intersection.get_sphere_count()

    def get_plane_count(self) -> int:
        return intersection.get_plane_count()

    def get_triangle_count(self) -> int:
        return intersection.get_triangle_count()

    def get_volume_count(self) -> int:
        return intersection.get_volume_count()

    def has_emitters(self) -> bool:
        """Whether any primitive uses a diffuse light material."""
        return any(
            self.materials[p.material_id].material_type == MaterialType.DIFFUSE_LIGHT
            for p in self.primitives
        )
