"""Scene-level primitive storage and ray queries.

Primitives live in per-type Structure-of-Arrays fields. A unified primitive
table maps each primitive id to (type, type-local index, material id), so
that the BVH and the linear scan can address every primitive uniformly.

Two closest-hit queries are provided:
- intersect_scene: iterative BVH traversal followed by a linear pass over
  the unbounded primitives (infinite planes), which cannot be bounded.
- intersect_scene_linear: exhaustive scan over the whole primitive table.
  It returns the same closest hit as intersect_scene and is kept as the
  reference for tests and debugging.

Both queries take and return the caller's random state because fog volumes
draw a free-flight distance when they are tested.

Example:
    >>> from pathtracer.scene.intersection import add_sphere, clear_scene
    >>> clear_scene()
    >>> add_sphere((0, 0, -1), 0.5, material_id=0)
    >>> # upload a BVH (see SceneManager.build), then inside a kernel:
    >>> # record, rng = intersect_scene(origin, direction, 1e-4, 1e10, rng)
"""

from collections.abc import Sequence

import taichi as ti
import taichi.math as tm

from pathtracer.geometry.aabb import hit_aabb, safe_inverse_direction
from pathtracer.geometry.bvh import (
    BVH_STACK_SIZE,
    MAX_BVH_PRIMITIVES,
    bvh_axis,
    bvh_bbox_max,
    bvh_bbox_min,
    bvh_left,
    bvh_prim_count,
    bvh_prim_order,
    bvh_prim_start,
    bvh_right,
    clear_bvh,
    num_bvh_nodes,
)
from pathtracer.geometry.plane import Plane, hit_plane
from pathtracer.geometry.sphere import HitRecord, Sphere, hit_sphere, make_miss_record
from pathtracer.geometry.triangle import Triangle, hit_triangle
from pathtracer.geometry.volume import box_inverse_basis, hit_box_volume, hit_volume

vec3 = tm.vec3

# Primitive kinds stored in prim_types
PRIM_SPHERE = 0
PRIM_PLANE = 1
PRIM_TRIANGLE = 2
PRIM_VOLUME = 3

# Boundary shapes stored in volume_shapes
VOLUME_SPHERE = 0
VOLUME_BOX = 1


@ti.dataclass
class SceneHitRecord:
    """Record of a ray-scene intersection with material information.

    Attributes:
        hit: 1 if any primitive was hit, 0 otherwise.
        t: Ray parameter of the closest hit. Only valid if hit == 1.
        point: The hit point.
        normal: Unit normal facing against the incoming ray.
        front_face: 1 if the ray hit the outward-facing side.
        u: First surface coordinate of the hit.
        v: Second surface coordinate of the hit.
        material_id: Scene material id of the hit primitive (-1 on a miss).
        prim_id: Primitive table id of the hit primitive (-1 on a miss).
    """

    hit: ti.i32
    t: ti.f32
    point: vec3
    normal: vec3
    front_face: ti.i32
    u: ti.f32
    v: ti.f32
    material_id: ti.i32
    prim_id: ti.i32


# =============================================================================
# Primitive Storage
# =============================================================================

MAX_PRIMITIVES = MAX_BVH_PRIMITIVES
MAX_SPHERES = 1 << 16
MAX_PLANES = 1 << 12
MAX_TRIANGLES = 1 << 16
MAX_VOLUMES = 256

sphere_centers = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERES)
sphere_radii = ti.field(dtype=ti.f32, shape=MAX_SPHERES)
num_spheres = ti.field(dtype=ti.i32, shape=())

plane_corners = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PLANES)
plane_edge_u = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PLANES)
plane_edge_v = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PLANES)
plane_bounded = ti.field(dtype=ti.i32, shape=MAX_PLANES)
num_planes = ti.field(dtype=ti.i32, shape=())

tri_v0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_v1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_v2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_has_normals = ti.field(dtype=ti.i32, shape=MAX_TRIANGLES)
num_triangles = ti.field(dtype=ti.i32, shape=())

volume_centers = ti.Vector.field(3, dtype=ti.f32, shape=MAX_VOLUMES)
volume_radii = ti.field(dtype=ti.f32, shape=MAX_VOLUMES)
volume_densities = ti.field(dtype=ti.f32, shape=MAX_VOLUMES)
volume_shapes = ti.field(dtype=ti.i32, shape=MAX_VOLUMES)
volume_inv_basis = ti.Matrix.field(3, 3, dtype=ti.f32, shape=MAX_VOLUMES)
num_volumes = ti.field(dtype=ti.i32, shape=())

# Unified primitive table
prim_types = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
prim_indices = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
prim_materials = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
num_primitives = ti.field(dtype=ti.i32, shape=())

# Primitives tested outside the BVH
unbounded_prims = ti.field(dtype=ti.i32, shape=MAX_PLANES)
num_unbounded = ti.field(dtype=ti.i32, shape=())


def clear_scene() -> None:
    """Remove all primitives and the uploaded BVH.

    Resets the counts to zero; field contents are overwritten as new
    primitives are added.
    """
    num_spheres[None] = 0
    num_planes[None] = 0
    num_triangles[None] = 0
    num_volumes[None] = 0
    num_primitives[None] = 0
    num_unbounded[None] = 0
    clear_bvh()


def _register_primitive(kind: int, index: int, material_id: int) -> int:
    prim_id = num_primitives[None]
    if prim_id >= MAX_PRIMITIVES:
        raise RuntimeError(f"Maximum number of primitives ({MAX_PRIMITIVES}) exceeded")
    prim_types[prim_id] = kind
    prim_indices[prim_id] = index
    prim_materials[prim_id] = material_id
    num_primitives[None] = prim_id + 1
    return prim_id


def _vec(values: Sequence[float]) -> vec3:
    return vec3(float(values[0]), float(values[1]), float(values[2]))


def add_sphere(center: Sequence[float], radius: float, material_id: int = 0) -> int:
    """Add a sphere.

    Args:
        center: The center of the sphere.
        radius: The radius. Non-positive radii are stored but never hit.
        material_id: The scene material id.

    Returns:
        The primitive id.

    Raises:
        RuntimeError: If the sphere or primitive capacity is exceeded.
    """
    idx = num_spheres[None]
    if idx >= MAX_SPHERES:
        raise RuntimeError(f"Maximum number of spheres ({MAX_SPHERES}) exceeded")
    prim_id = _register_primitive(PRIM_SPHERE, idx, material_id)
    sphere_centers[idx] = _vec(center)
    sphere_radii[idx] = radius
    num_spheres[None] = idx + 1
    return prim_id


def add_plane(
    corner: Sequence[float],
    edge_u: Sequence[float],
    edge_v: Sequence[float],
    bounded: bool = True,
    material_id: int = 0,
) -> int:
    """Add a plane (a parallelogram when bounded, else an infinite plane).

    Args:
        corner: The corner point (any point on an unbounded plane).
        edge_u: First edge vector.
        edge_v: Second edge vector.
        bounded: Whether the plane is restricted to the parallelogram.
        material_id: The scene material id.

    Returns:
        The primitive id.

    Raises:
        RuntimeError: If the plane or primitive capacity is exceeded.
    """
    idx = num_planes[None]
    if idx >= MAX_PLANES:
        raise RuntimeError(f"Maximum number of planes ({MAX_PLANES}) exceeded")
    prim_id = _register_primitive(PRIM_PLANE, idx, material_id)
    plane_corners[idx] = _vec(corner)
    plane_edge_u[idx] = _vec(edge_u)
    plane_edge_v[idx] = _vec(edge_v)
    plane_bounded[idx] = 1 if bounded else 0
    num_planes[None] = idx + 1

    if not bounded:
        k = num_unbounded[None]
        unbounded_prims[k] = prim_id
        num_unbounded[None] = k + 1
    return prim_id


def add_triangle(
    v0: Sequence[float],
    v1: Sequence[float],
    v2: Sequence[float],
    material_id: int = 0,
    normals: Sequence[Sequence[float]] | None = None,
) -> int:
    """Add a triangle, optionally with per-vertex normals.

    Returns:
        The primitive id.

    Raises:
        RuntimeError: If the triangle or primitive capacity is exceeded.
    """
    idx = num_triangles[None]
    if idx >= MAX_TRIANGLES:
        raise RuntimeError(f"Maximum number of triangles ({MAX_TRIANGLES}) exceeded")
    prim_id = _register_primitive(PRIM_TRIANGLE, idx, material_id)
    tri_v0[idx] = _vec(v0)
    tri_v1[idx] = _vec(v1)
    tri_v2[idx] = _vec(v2)
    if normals is None:
        tri_has_normals[idx] = 0
    else:
        tri_n0[idx] = _vec(normals[0])
        tri_n1[idx] = _vec(normals[1])
        tri_n2[idx] = _vec(normals[2])
        tri_has_normals[idx] = 1
    num_triangles[None] = idx + 1
    return prim_id


def add_volume(center: Sequence[float], radius: float, density: float, material_id: int = 0) -> int:
    """Add a constant-density fog volume bounded by a sphere.

    Returns:
        The primitive id.

    Raises:
        RuntimeError: If the volume or primitive capacity is exceeded.
    """
    idx = num_volumes[None]
    if idx >= MAX_VOLUMES:
        raise RuntimeError(f"Maximum number of volumes ({MAX_VOLUMES}) exceeded")
    prim_id = _register_primitive(PRIM_VOLUME, idx, material_id)
    volume_shapes[idx] = VOLUME_SPHERE
    volume_centers[idx] = _vec(center)
    volume_radii[idx] = radius
    volume_densities[idx] = density
    num_volumes[None] = idx + 1
    return prim_id


def add_box_volume(
    center: Sequence[float],
    half_i: Sequence[float],
    half_j: Sequence[float],
    half_k: Sequence[float],
    density: float,
    material_id: int = 0,
) -> int:
    """Add a constant-density fog volume bounded by a box.

    The box is center + a*half_i + b*half_j + c*half_k for a, b, c in [-1, 1].

    Returns:
        The primitive id.

    Raises:
        ValueError: If the half-spans enclose no volume.
        RuntimeError: If the volume or primitive capacity is exceeded.
    """
    inverse = box_inverse_basis(half_i, half_j, half_k)
    idx = num_volumes[None]
    if idx >= MAX_VOLUMES:
        raise RuntimeError(f"Maximum number of volumes ({MAX_VOLUMES}) exceeded")
    prim_id = _register_primitive(PRIM_VOLUME, idx, material_id)
    volume_shapes[idx] = VOLUME_BOX
    volume_centers[idx] = _vec(center)
    volume_radii[idx] = 0.0
    volume_inv_basis[idx] = inverse.tolist()
    volume_densities[idx] = density
    num_volumes[None] = idx + 1
    return prim_id


def get_primitive_count() -> int:
    """Get the number of primitives in the table."""
    return int(num_primitives[None])


def get_sphere_count() -> int:
    return int(num_spheres[None])


def get_plane_count() -> int:
    return int(num_planes[None])


def get_triangle_count() -> int:
    return int(num_triangles[None])


def get_volume_count() -> int:
    return int(num_volumes[None])


def get_unbounded_count() -> int:
    """Get the number of primitives tested outside the BVH."""
    return int(num_unbounded[None])


# =============================================================================
# Device Queries
# =============================================================================


@ti.func
def _make_scene_miss() -> SceneHitRecord:
    return SceneHitRecord(
        hit=0,
        t=0.0,
        point=vec3(0.0, 0.0, 0.0),
        normal=vec3(0.0, 0.0, 0.0),
        front_face=0,
        u=0.0,
        v=0.0,
        material_id=-1,
        prim_id=-1,
    )


@ti.func
def _to_scene_record(rec: HitRecord, prim_id: ti.i32) -> SceneHitRecord:
    return SceneHitRecord(
        hit=rec.hit,
        t=rec.t,
        point=rec.point,
        normal=rec.normal,
        front_face=rec.front_face,
        u=rec.u,
        v=rec.v,
        material_id=prim_materials[prim_id],
        prim_id=prim_id,
    )


@ti.func
def hit_primitive(
    prim_id: ti.i32,
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Intersect a ray with one entry of the primitive table.

    Args:
        prim_id: The primitive id.
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.
        rng: The current random state (advanced only by volumes).

    Returns:
        A tuple of (HitRecord, new_rng).
    """
    kind = prim_types[prim_id]
    idx = prim_indices[prim_id]
    rec = make_miss_record()
    state = rng

    if kind == PRIM_SPHERE:
        sphere = Sphere(center=sphere_centers[idx], radius=sphere_radii[idx])
        rec = hit_sphere(ray_origin, ray_direction, sphere, t_min, t_max)
    elif kind == PRIM_PLANE:
        plane = Plane(
            corner=plane_corners[idx],
            edge_u=plane_edge_u[idx],
            edge_v=plane_edge_v[idx],
            bounded=plane_bounded[idx],
        )
        rec = hit_plane(ray_origin, ray_direction, plane, t_min, t_max)
    elif kind == PRIM_TRIANGLE:
        tri = Triangle(
            v0=tri_v0[idx],
            v1=tri_v1[idx],
            v2=tri_v2[idx],
            n0=tri_n0[idx],
            n1=tri_n1[idx],
            n2=tri_n2[idx],
            has_normals=tri_has_normals[idx],
        )
        rec = hit_triangle(ray_origin, ray_direction, tri, t_min, t_max)
    elif kind == PRIM_VOLUME:
        if volume_shapes[idx] == VOLUME_BOX:
            rec, state = hit_box_volume(
                ray_origin,
                ray_direction,
                volume_centers[idx],
                volume_inv_basis[idx],
                volume_densities[idx],
                t_min,
                t_max,
                state,
            )
        else:
            boundary = Sphere(center=volume_centers[idx], radius=volume_radii[idx])
            rec, state = hit_volume(
                ray_origin, ray_direction, boundary, volume_densities[idx], t_min, t_max, state
            )

    return rec, state


@ti.func
def intersect_scene_linear(
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Closest hit by testing every primitive in the table.

    Returns:
        A tuple of (SceneHitRecord, new_rng).
    """
    closest_t = t_max
    result = _make_scene_miss()
    state = rng

    for prim_id in range(num_primitives[None]):
        rec, state = hit_primitive(prim_id, ray_origin, ray_direction, t_min, closest_t, state)
        if rec.hit == 1:
            closest_t = rec.t
            result = _to_scene_record(rec, prim_id)

    return result, state


@ti.func
def intersect_scene(
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
    rng: ti.u32,
):
    """Closest hit using the uploaded BVH plus the unbounded primitives.

    Traversal is iterative with a fixed-size local stack. At each internal
    node the child on the near side of the split axis is visited first, and
    boxes are tested against the closest hit found so far, so far subtrees
    are culled once a hit is known.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.
        rng: The current random state.

    Returns:
        A tuple of (SceneHitRecord, new_rng). A scene without primitives
        always reports a miss.
    """
    closest_t = t_max
    result = _make_scene_miss()
    state = rng

    if num_bvh_nodes[None] > 0:
        inv_direction = safe_inverse_direction(ray_direction)
        stack = ti.Vector([0 for _ in range(BVH_STACK_SIZE)], dt=ti.i32)
        stack_size = 1

        while stack_size > 0:
            stack_size -= 1
            node = stack[stack_size]
            if hit_aabb(
                bvh_bbox_min[node], bvh_bbox_max[node], ray_origin, inv_direction, t_min, closest_t
            ):
                if bvh_left[node] < 0:
                    start = bvh_prim_start[node]
                    for k in range(bvh_prim_count[node]):
                        prim_id = bvh_prim_order[start + k]
                        rec, state = hit_primitive(
                            prim_id, ray_origin, ray_direction, t_min, closest_t, state
                        )
                        if rec.hit == 1:
                            closest_t = rec.t
                            result = _to_scene_record(rec, prim_id)
                else:
                    go_right_first = ray_direction[bvh_axis[node]] < 0.0
                    near_child = ti.select(go_right_first, bvh_right[node], bvh_left[node])
                    far_child = ti.select(go_right_first, bvh_left[node], bvh_right[node])
                    # Far child below near child, so the near child is popped next
                    stack[stack_size] = far_child
                    stack[stack_size + 1] = near_child
                    stack_size += 2

    for k in range(num_unbounded[None]):
        prim_id = unbounded_prims[k]
        rec, state = hit_primitive(prim_id, ray_origin, ray_direction, t_min, closest_t, state)
        if rec.hit == 1:
            closest_t = rec.t
            result = _to_scene_record(rec, prim_id)

    return result, state
