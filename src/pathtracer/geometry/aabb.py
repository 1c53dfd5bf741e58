"""Axis-aligned bounding boxes.

The host-side AABB class is used by the BVH builder (NumPy, float64); the
device-side hit_aabb() slab test is used during traversal inside kernels.

Example:
    >>> a = AABB((0, 0, 0), (1, 1, 1))
    >>> b = AABB((2, -1, 0), (3, 0, 1))
    >>> a.union(b)
    AABB(minimum=(0.0, -1.0, 0.0), maximum=(3.0, 1.0, 1.0))
"""

from collections.abc import Iterable, Sequence

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

# Smallest box thickness kept on any axis (flat primitives are padded)
MIN_EXTENT = 1e-4


class AABB:
    """Axis-aligned bounding box given by its minimum and maximum corners.

    An empty box has minimum = +inf and maximum = -inf so that it is the
    identity element of union().
    """

    __slots__ = ("minimum", "maximum")

    def __init__(self, minimum: Sequence[float], maximum: Sequence[float]) -> None:
        self.minimum: npt.NDArray[np.float64] = np.asarray(minimum, dtype=np.float64).copy()
        self.maximum: npt.NDArray[np.float64] = np.asarray(maximum, dtype=np.float64).copy()
        if self.minimum.shape != (3,) or self.maximum.shape != (3,):
            raise ValueError("AABB corners must be 3-vectors")

    @classmethod
    def empty(cls) -> "AABB":
        """Create a box containing nothing."""
        return cls(np.full(3, np.inf), np.full(3, -np.inf))

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]]) -> "AABB":
        """Create the tightest box around a set of points."""
        pts = np.asarray(list(points), dtype=np.float64).reshape(-1, 3)
        if len(pts) == 0:
            return cls.empty()
        return cls(pts.min(axis=0), pts.max(axis=0))

    @classmethod
    def union_all(cls, boxes: Iterable["AABB"]) -> "AABB":
        """Union of any number of boxes (empty box for no input)."""
        result = cls.empty()
        for box in boxes:
            result = result.union(box)
        return result

    def is_empty(self) -> bool:
        """Whether the box contains no points."""
        return bool(np.any(self.minimum > self.maximum))

    def union(self, other: "AABB") -> "AABB":
        """Smallest box containing both boxes."""
        return AABB(np.minimum(self.minimum, other.minimum), np.maximum(self.maximum, other.maximum))

    def union_point(self, point: Sequence[float]) -> "AABB":
        """Smallest box containing this box and a point."""
        p = np.asarray(point, dtype=np.float64)
        return AABB(np.minimum(self.minimum, p), np.maximum(self.maximum, p))

    def contains(self, other: "AABB", tol: float = 0.0) -> bool:
        """Whether other lies entirely inside this box (up to tol)."""
        if other.is_empty():
            return True
        return bool(
            np.all(self.minimum <= other.minimum + tol) and np.all(self.maximum >= other.maximum - tol)
        )

    def contains_point(self, point: Sequence[float], tol: float = 0.0) -> bool:
        """Whether a point lies inside this box (up to tol)."""
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(self.minimum - tol <= p) and np.all(p <= self.maximum + tol))

    def padded(self, min_extent: float = MIN_EXTENT) -> "AABB":
        """Grow any axis thinner than min_extent symmetrically to min_extent."""
        extent = self.maximum - self.minimum
        pad = np.where(extent < min_extent, (min_extent - extent) / 2.0, 0.0)
        return AABB(self.minimum - pad, self.maximum + pad)

    def centroid(self) -> npt.NDArray[np.float64]:
        """Center point of the box."""
        return (self.minimum + self.maximum) / 2.0

    def extent(self) -> npt.NDArray[np.float64]:
        """Edge lengths along x, y and z."""
        return self.maximum - self.minimum

    def largest_axis(self) -> int:
        """Index of the longest axis (0 = x, 1 = y, 2 = z)."""
        return int(np.argmax(self.extent()))

    def surface_area(self) -> float:
        """Total surface area (0 for an empty box)."""
        if self.is_empty():
            return 0.0
        dx, dy, dz = self.extent()
        return float(2.0 * (dx * dy + dy * dz + dz * dx))

    def hit(
        self,
        origin: Sequence[float],
        direction: Sequence[float],
        t_min: float,
        t_max: float,
    ) -> bool:
        """Slab test of a ray against the box.

        Args:
            origin: Ray origin.
            direction: Ray direction (need not be normalized).
            t_min: Start of the parametric interval.
            t_max: End of the parametric interval.

        Returns:
            True if the ray overlaps the box anywhere in [t_min, t_max].
        """
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        for axis in range(3):
            if abs(d[axis]) < 1e-300:
                if o[axis] < self.minimum[axis] or o[axis] > self.maximum[axis]:
                    return False
                continue
            inv = 1.0 / d[axis]
            t0 = (self.minimum[axis] - o[axis]) * inv
            t1 = (self.maximum[axis] - o[axis]) * inv
            if inv < 0.0:
                t0, t1 = t1, t0
            t_min = max(t_min, t0)
            t_max = min(t_max, t1)
            if t_max < t_min:
                return False
        return True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AABB):
            return NotImplemented
        return bool(np.array_equal(self.minimum, other.minimum) and np.array_equal(self.maximum, other.maximum))

    def __repr__(self) -> str:
        lo = tuple(float(x) for x in self.minimum)
        hi = tuple(float(x) for x in self.maximum)
        return f"AABB(minimum={lo}, maximum={hi})"


# =============================================================================
# Device-side slab test
# =============================================================================


@ti.func
def safe_inverse_direction(direction: vec3) -> vec3:
    """Component-wise reciprocal of a direction with finite results.

    Components smaller than 1e-12 in magnitude are replaced by +/-1e-12 so
    that the slab test never multiplies zero by infinity.

    Args:
        direction: The ray direction.

    Returns:
        The reciprocal direction.
    """
    inv = vec3(0.0, 0.0, 0.0)
    for c in ti.static(range(3)):
        d = direction[c]
        if ti.abs(d) < 1e-12:
            d = ti.select(d < 0.0, -1e-12, 1e-12)
        inv[c] = 1.0 / d
    return inv


@ti.func
def hit_aabb(
    box_min: vec3,
    box_max: vec3,
    ray_origin: vec3,
    inv_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
) -> ti.i32:
    """Slab test of a ray against an axis-aligned box.

    Args:
        box_min: Minimum corner of the box.
        box_max: Maximum corner of the box.
        ray_origin: The starting point of the ray.
        inv_direction: Reciprocal of the ray direction (see safe_inverse_direction).
        t_min: Start of the parametric interval.
        t_max: End of the parametric interval.

    Returns:
        1 if the ray overlaps the box within [t_min, t_max], 0 otherwise.
    """
    t0 = (box_min - ray_origin) * inv_direction
    t1 = (box_max - ray_origin) * inv_direction
    t_near = ti.min(t0, t1)
    t_far = ti.max(t0, t1)
    enter = ti.max(ti.max(t_near.x, t_near.y), ti.max(t_near.z, t_min))
    leave = ti.min(ti.min(t_far.x, t_far.y), ti.min(t_far.z, t_max))
    return enter <= leave
