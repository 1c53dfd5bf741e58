"""Bounding Volume Hierarchy construction and device storage.

The hierarchy is built on the host with NumPy and flattened into an arena of
nodes addressed by index:

    node k:  bbox_min[k], bbox_max[k]      combined bounds of the subtree
             left[k], right[k]             child node indices (-1 for leaves)
             axis[k]                       split axis of an internal node
             prim_start[k], prim_count[k]  leaf range into prim_order

Every primitive index appears in exactly one leaf range. The arena is then
uploaded into fixed-capacity Taichi fields that kernels read concurrently;
nothing writes to them while a render is running.

Construction recursively partitions the primitive set:
1. Compute the union bounds of the set.
2. Stop with a leaf when the set has at most leaf_size primitives, when
   all centroids coincide, or when the depth cap is reached.
3. Otherwise split along the axis with the greatest centroid spread,
   either at the median centroid ("median") or at the cheapest of 12
   surface-area-heuristic buckets ("sah"), and recurse.

Example:
    >>> from pathtracer.geometry.aabb import AABB
    >>> from pathtracer.geometry.bvh import build_bvh
    >>> boxes = [AABB((i, 0, 0), (i + 1, 1, 1)) for i in range(8)]
    >>> bvh = build_bvh(boxes, leaf_size=2)
    >>> bvh.node_count
    7
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
import numpy.typing as npt
import taichi as ti

from .aabb import AABB

logger = logging.getLogger(__name__)

SplitMethod = Literal["median", "sah"]

# Traversal keeps a fixed-size stack of pending nodes, so tree depth is capped
BVH_STACK_SIZE = 64
MAX_TREE_DEPTH = BVH_STACK_SIZE - 2

# Number of buckets evaluated by the SAH split
SAH_BUCKETS = 12

# Device capacities
MAX_BVH_PRIMITIVES = 1 << 17
MAX_BVH_NODES = 2 * MAX_BVH_PRIMITIVES


@dataclass
class FlatBVH:
    """A BVH flattened into index-addressed arrays.

    Attributes:
        bbox_min: Minimum corners, shape (nodes, 3).
        bbox_max: Maximum corners, shape (nodes, 3).
        left: Left child per node, -1 for leaves.
        right: Right child per node, -1 for leaves.
        axis: Split axis per internal node (0 for leaves).
        prim_start: First entry of a leaf's range in prim_order.
        prim_count: Number of primitives in a leaf (0 for internal nodes).
        prim_order: Primitive indices grouped by leaf.
        depth: Depth of the deepest leaf (root = 0).
    """

    bbox_min: npt.NDArray[np.float64]
    bbox_max: npt.NDArray[np.float64]
    left: npt.NDArray[np.int32]
    right: npt.NDArray[np.int32]
    axis: npt.NDArray[np.int32]
    prim_start: npt.NDArray[np.int32]
    prim_count: npt.NDArray[np.int32]
    prim_order: npt.NDArray[np.int32]
    depth: int

    @property
    def node_count(self) -> int:
        """Number of nodes in the arena."""
        return int(len(self.left))

    @property
    def leaf_count(self) -> int:
        """Number of leaf nodes."""
        return int(np.count_nonzero(self.left < 0))

    @property
    def primitive_count(self) -> int:
        """Number of primitives referenced by the leaves."""
        return int(len(self.prim_order))

    def node_bounds(self, node: int) -> AABB:
        """Bounds of one node."""
        return AABB(self.bbox_min[node], self.bbox_max[node])

    def is_leaf(self, node: int) -> bool:
        """Whether a node is a leaf."""
        return bool(self.left[node] < 0)

    def leaf_primitives(self, node: int) -> npt.NDArray[np.int32]:
        """Primitive indices owned by a leaf."""
        start = int(self.prim_start[node])
        return self.prim_order[start : start + int(self.prim_count[node])]

    def candidates(
        self,
        origin: Sequence[float],
        direction: Sequence[float],
        t_min: float = 0.0,
        t_max: float = np.inf,
    ) -> set[int]:
        """Primitives in every leaf whose bounds the ray overlaps.

        Host-side traversal used for diagnostics and tests.
        """
        found: set[int] = set()
        if self.node_count == 0:
            return found
        stack = [0]
        while stack:
            node = stack.pop()
            if not self.node_bounds(node).hit(origin, direction, t_min, t_max):
                continue
            if self.is_leaf(node):
                found.update(int(p) for p in self.leaf_primitives(node))
            else:
                stack.append(int(self.left[node]))
                stack.append(int(self.right[node]))
        return found


class _Builder:
    """Recursive top-down BVH builder over precomputed primitive bounds."""

    def __init__(
        self,
        mins: npt.NDArray[np.float64],
        maxs: npt.NDArray[np.float64],
        leaf_size: int,
        split: SplitMethod,
        max_depth: int,
    ) -> None:
        self.mins = mins
        self.maxs = maxs
        self.centroids = (mins + maxs) / 2.0
        self.leaf_size = leaf_size
        self.split = split
        self.max_depth = max_depth

        self.node_min: list[npt.NDArray[np.float64]] = []
        self.node_max: list[npt.NDArray[np.float64]] = []
        self.left: list[int] = []
        self.right: list[int] = []
        self.axis: list[int] = []
        self.prim_start: list[int] = []
        self.prim_count: list[int] = []
        self.prim_order: list[int] = []
        self.deepest = 0

    def build(self, indices: npt.NDArray[np.int64], depth: int) -> int:
        node = len(self.left)
        self.node_min.append(self.mins[indices].min(axis=0))
        self.node_max.append(self.maxs[indices].max(axis=0))
        self.left.append(-1)
        self.right.append(-1)
        self.axis.append(0)
        self.prim_start.append(0)
        self.prim_count.append(0)
        self.deepest = max(self.deepest, depth)

        count = len(indices)
        if count <= self.leaf_size or depth >= self.max_depth:
            self._make_leaf(node, indices)
            return node

        centroids = self.centroids[indices]
        c_min = centroids.min(axis=0)
        c_max = centroids.max(axis=0)
        axis = int(np.argmax(c_max - c_min))
        if c_max[axis] - c_min[axis] <= 0.0:
            # All centroids coincide; no split can separate them
            self._make_leaf(node, indices)
            return node

        if self.split == "sah":
            left_idx, right_idx = self._split_sah(indices, axis, c_min[axis], c_max[axis])
        else:
            left_idx, right_idx = self._split_median(indices, axis)

        self.axis[node] = axis
        left_child = self.build(left_idx, depth + 1)
        right_child = self.build(right_idx, depth + 1)
        self.left[node] = left_child
        self.right[node] = right_child
        return node

    def _make_leaf(self, node: int, indices: npt.NDArray[np.int64]) -> None:
        self.prim_start[node] = len(self.prim_order)
        self.prim_count[node] = len(indices)
        self.prim_order.extend(int(i) for i in indices)

    def _split_median(self, indices: npt.NDArray[np.int64], axis: int):
        order = indices[np.argsort(self.centroids[indices, axis], kind="stable")]
        mid = len(order) // 2
        return order[:mid], order[mid:]

    def _split_sah(self, indices: npt.NDArray[np.int64], axis: int, lo: float, hi: float):
        """Pick the cheapest bucket boundary by the surface area heuristic."""
        scale = SAH_BUCKETS / (hi - lo)
        buckets = np.minimum(
            ((self.centroids[indices, axis] - lo) * scale).astype(np.int64), SAH_BUCKETS - 1
        )

        best_cost = np.inf
        best_split = -1
        for split in range(1, SAH_BUCKETS):
            in_left = buckets < split
            n_left = int(np.count_nonzero(in_left))
            n_right = len(indices) - n_left
            if n_left == 0 or n_right == 0:
                continue
            left_box = AABB(self.mins[indices[in_left]].min(0), self.maxs[indices[in_left]].max(0))
            right_box = AABB(
                self.mins[indices[~in_left]].min(0), self.maxs[indices[~in_left]].max(0)
            )
            cost = n_left * left_box.surface_area() + n_right * right_box.surface_area()
            if cost < best_cost:
                best_cost = cost
                best_split = split

        if best_split < 0:
            return self._split_median(indices, axis)
        in_left = buckets < best_split
        return indices[in_left], indices[~in_left]

    def result(self) -> FlatBVH:
        if not self.left:
            empty_f = np.zeros((0, 3), dtype=np.float64)
            empty_i = np.zeros(0, dtype=np.int32)
            return FlatBVH(empty_f, empty_f.copy(), empty_i, empty_i.copy(), empty_i.copy(),
                           empty_i.copy(), empty_i.copy(), empty_i.copy(), 0)
        return FlatBVH(
            bbox_min=np.asarray(self.node_min, dtype=np.float64),
            bbox_max=np.asarray(self.node_max, dtype=np.float64),
            left=np.asarray(self.left, dtype=np.int32),
            right=np.asarray(self.right, dtype=np.int32),
            axis=np.asarray(self.axis, dtype=np.int32),
            prim_start=np.asarray(self.prim_start, dtype=np.int32),
            prim_count=np.asarray(self.prim_count, dtype=np.int32),
            prim_order=np.asarray(self.prim_order, dtype=np.int32),
            depth=self.deepest,
        )


def build_bvh(
    boxes: Sequence[AABB],
    leaf_size: int = 2,
    split: SplitMethod = "median",
    max_depth: int = MAX_TREE_DEPTH,
) -> FlatBVH:
    """Build a BVH over primitive bounding boxes.

    Args:
        boxes: Bounding box of each primitive; primitive i is boxes[i].
        leaf_size: Maximum number of primitives in a leaf (unless the
            centroids coincide or the depth cap is hit).
        split: Split strategy, "median" or "sah".
        max_depth: Maximum leaf depth; must fit the traversal stack.

    Returns:
        The flattened hierarchy. An empty input produces an empty arena.

    Raises:
        ValueError: If leaf_size, split or max_depth is invalid, or a box
            is empty.
    """
    if leaf_size < 1:
        raise ValueError(f"leaf_size must be at least 1, got {leaf_size}")
    if split not in ("median", "sah"):
        raise ValueError(f"Unknown split method: {split}")
    if not 0 <= max_depth <= MAX_TREE_DEPTH:
        raise ValueError(f"max_depth must be in [0, {MAX_TREE_DEPTH}], got {max_depth}")

    start = time.perf_counter()
    n = len(boxes)
    mins = np.zeros((n, 3), dtype=np.float64)
    maxs = np.zeros((n, 3), dtype=np.float64)
    for i, box in enumerate(boxes):
        if box.is_empty():
            raise ValueError(f"Primitive {i} has an empty bounding box")
        mins[i] = box.minimum
        maxs[i] = box.maximum

    builder = _Builder(mins, maxs, leaf_size, split, max_depth)
    if n > 0:
        builder.build(np.arange(n, dtype=np.int64), 0)
    bvh = builder.result()

    logger.debug(
        "Built BVH over %d primitives: %d nodes, %d leaves, depth %d (%s split, %.3fs)",
        n,
        bvh.node_count,
        bvh.leaf_count,
        bvh.depth,
        split,
        time.perf_counter() - start,
    )
    return bvh


# =============================================================================
# Device storage
# =============================================================================

bvh_bbox_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_BVH_NODES)
bvh_bbox_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_BVH_NODES)
bvh_left = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_right = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_axis = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_prim_start = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_prim_count = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_prim_order = ti.field(dtype=ti.i32, shape=MAX_BVH_PRIMITIVES)
num_bvh_nodes = ti.field(dtype=ti.i32, shape=())


def _round_outward(values: npt.NDArray[np.float64], direction: float) -> npt.NDArray[np.float32]:
    """Convert bounds to float32 without shrinking them."""
    widened = values + direction * 1e-6 * (1.0 + np.abs(values))
    as_f32 = widened.astype(np.float32)
    return np.nextafter(as_f32, np.float32(direction * np.inf)).astype(np.float32)


def clear_bvh() -> None:
    """Remove the uploaded hierarchy; traversal then reports no hits."""
    num_bvh_nodes[None] = 0


def upload_bvh(bvh: FlatBVH, primitive_ids: npt.ArrayLike | None = None) -> None:
    """Copy a flattened BVH into the device fields.

    Args:
        bvh: The hierarchy to upload.
        primitive_ids: Optional mapping from the builder's primitive indices
            to the ids stored in the leaves (e.g. scene primitive table ids).

    Raises:
        RuntimeError: If the hierarchy exceeds the device capacity.
    """
    nodes = bvh.node_count
    prims = bvh.primitive_count
    if nodes > MAX_BVH_NODES or prims > MAX_BVH_PRIMITIVES:
        raise RuntimeError(
            f"BVH with {nodes} nodes / {prims} primitives exceeds capacity "
            f"({MAX_BVH_NODES} nodes / {MAX_BVH_PRIMITIVES} primitives)"
        )

    order = bvh.prim_order
    if primitive_ids is not None:
        order = np.asarray(primitive_ids, dtype=np.int32)[order]

    def padded(values: npt.NDArray, shape: tuple[int, ...], dtype: type) -> npt.NDArray:
        out = np.zeros(shape, dtype=dtype)
        out[: len(values)] = values
        return out

    bvh_bbox_min.from_numpy(padded(_round_outward(bvh.bbox_min, -1.0), (MAX_BVH_NODES, 3), np.float32))
    bvh_bbox_max.from_numpy(padded(_round_outward(bvh.bbox_max, 1.0), (MAX_BVH_NODES, 3), np.float32))
    bvh_left.from_numpy(padded(bvh.left, (MAX_BVH_NODES,), np.int32))
    bvh_right.from_numpy(padded(bvh.right, (MAX_BVH_NODES,), np.int32))
    bvh_axis.from_numpy(padded(bvh.axis, (MAX_BVH_NODES,), np.int32))
    bvh_prim_start.from_numpy(padded(bvh.prim_start, (MAX_BVH_NODES,), np.int32))
    bvh_prim_count.from_numpy(padded(bvh.prim_count, (MAX_BVH_NODES,), np.int32))
    bvh_prim_order.from_numpy(padded(order, (MAX_BVH_PRIMITIVES,), np.int32))
    num_bvh_nodes[None] = nodes
