"""Tests for BVH construction and BVH-accelerated scene intersection.

Tests cover:
- Structural invariants of the flattened arena (ownership, nesting, depth)
- Median and SAH splits
- Parameter validation
- Agreement between BVH traversal and a linear scan on the device
"""

import numpy as np
import pytest
import taichi as ti


def _random_boxes(count, seed=0):
    from pathtracer.geometry.aabb import AABB

    rng = np.random.default_rng(seed)
    centers = rng.uniform(-10.0, 10.0, size=(count, 3))
    halves = rng.uniform(0.05, 1.0, size=(count, 3))
    return [AABB(c - h, c + h) for c, h in zip(centers, halves)]


def _check_invariants(bvh, boxes, leaf_size):
    """Assert the structural invariants of a flattened BVH."""
    from pathtracer.geometry.bvh import MAX_TREE_DEPTH

    # Every primitive appears in exactly one leaf
    owned = []
    for node in range(bvh.node_count):
        if bvh.is_leaf(node):
            owned.extend(int(p) for p in bvh.leaf_primitives(node))
        else:
            assert bvh.prim_count[node] == 0
    assert sorted(owned) == list(range(len(boxes)))

    # Node bounds enclose children and leaf primitives
    for node in range(bvh.node_count):
        bounds = bvh.node_bounds(node)
        if bvh.is_leaf(node):
            for p in bvh.leaf_primitives(node):
                assert bounds.contains(boxes[int(p)], tol=1e-9)
        else:
            assert bounds.contains(bvh.node_bounds(int(bvh.left[node])), tol=1e-9)
            assert bounds.contains(bvh.node_bounds(int(bvh.right[node])), tol=1e-9)

    assert bvh.depth <= MAX_TREE_DEPTH


class TestBuildBVH:
    """Tests for the host-side builder."""

    def test_eight_boxes_in_a_row(self):
        from pathtracer.geometry.aabb import AABB
        from pathtracer.geometry.bvh import build_bvh

        boxes = [AABB((i, 0, 0), (i + 1, 1, 1)) for i in range(8)]
        bvh = build_bvh(boxes, leaf_size=2)
        assert bvh.node_count == 7
        assert bvh.leaf_count == 4
        assert bvh.primitive_count == 8
        assert bvh.depth == 2
        assert bvh.axis[0] == 0
        _check_invariants(bvh, boxes, 2)

    def test_single_primitive(self):
        from pathtracer.geometry.aabb import AABB
        from pathtracer.geometry.bvh import build_bvh

        bvh = build_bvh([AABB((0, 0, 0), (1, 1, 1))])
        assert bvh.node_count == 1
        assert bvh.is_leaf(0)
        assert list(bvh.leaf_primitives(0)) == [0]

    def test_empty_input(self):
        from pathtracer.geometry.bvh import build_bvh

        bvh = build_bvh([])
        assert bvh.node_count == 0
        assert bvh.primitive_count == 0
        assert bvh.candidates((0, 0, 0), (0, 0, 1)) == set()

    @pytest.mark.parametrize("split", ["median", "sah"])
    @pytest.mark.parametrize("leaf_size", [1, 2, 4])
    def test_invariants_on_random_boxes(self, split, leaf_size):
        from pathtracer.geometry.bvh import build_bvh

        boxes = _random_boxes(300, seed=leaf_size)
        bvh = build_bvh(boxes, leaf_size=leaf_size, split=split)
        _check_invariants(bvh, boxes, leaf_size)
        for node in range(bvh.node_count):
            if bvh.is_leaf(node):
                assert bvh.prim_count[node] <= leaf_size

    def test_coincident_centroids_form_one_leaf(self):
        from pathtracer.geometry.aabb import AABB
        from pathtracer.geometry.bvh import build_bvh

        boxes = [AABB((-r, -r, -r), (r, r, r)) for r in (1.0, 2.0, 3.0, 4.0, 5.0)]
        bvh = build_bvh(boxes, leaf_size=1)
        assert bvh.node_count == 1
        assert bvh.prim_count[0] == 5

    def test_depth_cap(self):
        from pathtracer.geometry.bvh import build_bvh

        boxes = _random_boxes(64, seed=3)
        bvh = build_bvh(boxes, leaf_size=1, max_depth=2)
        assert bvh.depth <= 2
        _check_invariants(bvh, boxes, 1)

    def test_candidates_contain_every_hit(self):
        from pathtracer.geometry.bvh import build_bvh

        boxes = _random_boxes(200, seed=9)
        bvh = build_bvh(boxes, leaf_size=2, split="sah")
        rng = np.random.default_rng(1)
        for _ in range(50):
            origin = rng.uniform(-15.0, 15.0, size=3)
            direction = rng.normal(size=3)
            found = bvh.candidates(origin, direction)
            for i, box in enumerate(boxes):
                if box.hit(origin, direction, 0.0, np.inf):
                    assert i in found

    @pytest.mark.parametrize(
        "kwargs",
        [{"leaf_size": 0}, {"split": "middle"}, {"max_depth": -1}, {"max_depth": 63}],
    )
    def test_invalid_parameters(self, kwargs):
        from pathtracer.geometry.bvh import build_bvh

        with pytest.raises(ValueError):
            build_bvh(_random_boxes(4), **kwargs)

    def test_empty_box_rejected(self):
        from pathtracer.geometry.aabb import AABB
        from pathtracer.geometry.bvh import build_bvh

        with pytest.raises(ValueError, match="empty bounding box"):
            build_bvh([AABB((0, 0, 0), (1, 1, 1)), AABB.empty()])


class TestSceneTraversal:
    """BVH traversal must return the same closest hit as a linear scan."""

    def _compare(self, n_rays=512, seed=0):
        from pathtracer.core.sampler import seed_rng
        from pathtracer.scene.intersection import intersect_scene, intersect_scene_linear

        rng = np.random.default_rng(seed)
        origins = rng.uniform(-12.0, 12.0, size=(n_rays, 3)).astype(np.float32)
        targets = rng.uniform(-6.0, 6.0, size=(n_rays, 3)).astype(np.float32)
        directions = (targets - origins).astype(np.float32)

        o_field = ti.Vector.field(3, dtype=ti.f32, shape=n_rays)
        d_field = ti.Vector.field(3, dtype=ti.f32, shape=n_rays)
        bvh_out = ti.Vector.field(4, dtype=ti.f32, shape=n_rays)
        lin_out = ti.Vector.field(4, dtype=ti.f32, shape=n_rays)
        o_field.from_numpy(origins)
        d_field.from_numpy(directions)

        @ti.kernel
        def test_kernel():
            for i in range(n_rays):
                rng_a = seed_rng(i, 0, 0, ti.u32(1))
                rng_b = rng_a
                a, rng_a = intersect_scene(o_field[i], d_field[i], 1e-4, 1e10, rng_a)
                b, rng_b = intersect_scene_linear(o_field[i], d_field[i], 1e-4, 1e10, rng_b)
                bvh_out[i] = ti.math.vec4(a.hit, a.t, a.prim_id, a.material_id)
                lin_out[i] = ti.math.vec4(b.hit, b.t, b.prim_id, b.material_id)

        test_kernel()
        return bvh_out.to_numpy(), lin_out.to_numpy()

    def _populate(self, scene, seed=0):
        rng = np.random.default_rng(seed)
        mats = [scene.add_lambertian_material((0.5, 0.5, 0.5)) for _ in range(3)]
        for k in range(40):
            center = tuple(rng.uniform(-6.0, 6.0, size=3))
            scene.add_sphere(center, float(rng.uniform(0.2, 1.0)), mats[k % 3])
        for k in range(15):
            corner = tuple(rng.uniform(-6.0, 6.0, size=3))
            u = tuple(rng.normal(size=3))
            v = tuple(rng.normal(size=3))
            scene.add_plane(corner, u, v, mats[k % 3])
        for k in range(25):
            v0 = rng.uniform(-6.0, 6.0, size=3)
            scene.add_triangle(
                tuple(v0),
                tuple(v0 + rng.normal(size=3)),
                tuple(v0 + rng.normal(size=3)),
                mats[k % 3],
            )
        scene.add_box((1.0, 1.0, 1.0), (1.0, 0.0, 0.0), (0.0, 0.5, 0.0), (0.0, 0.0, 2.0), mats[0])

    @pytest.mark.parametrize("split", ["median", "sah"])
    def test_bvh_matches_linear_scan(self, split):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager(split=split)
        self._populate(scene, seed=4)
        scene.build()

        bvh_res, lin_res = self._compare()
        np.testing.assert_array_equal(bvh_res[:, 0], lin_res[:, 0])
        hit = lin_res[:, 0] == 1
        assert hit.sum() > 50
        np.testing.assert_allclose(bvh_res[hit, 1], lin_res[hit, 1], rtol=1e-6)
        np.testing.assert_array_equal(bvh_res[hit, 3], lin_res[hit, 3])

    def test_unbounded_plane_outside_bvh(self):
        from pathtracer.scene.intersection import get_unbounded_count
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere((0.0, 0.0, 0.0), 1.0, mat)
        scene.add_infinite_plane((0.0, -8.0, 0.0), (0.0, 1.0, 0.0), mat)
        bvh = scene.build()
        assert bvh.primitive_count == 1
        assert get_unbounded_count() == 1

        bvh_res, lin_res = self._compare(n_rays=256, seed=2)
        np.testing.assert_array_equal(bvh_res[:, 0], lin_res[:, 0])
        np.testing.assert_array_equal(bvh_res[:, 2], lin_res[:, 2])

    def test_dense_fog_box_scatters_at_entry(self):
        """Fog boxes are reached through the BVH and scatter where rays enter."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        fog = scene.add_isotropic_material((0.5, 0.5, 0.5))
        scene.add_fog_box((0.0, 0.0, 0.0), (3.0, 0.0, 0.0), (0.0, 3.0, 0.0), (0.0, 0.0, 3.0), 1e6, fog)
        scene.build()

        bvh_res, lin_res = self._compare(n_rays=256, seed=5)
        np.testing.assert_array_equal(bvh_res[:, 0], lin_res[:, 0])
        hit = lin_res[:, 0] == 1
        assert hit.sum() > 20
        np.testing.assert_allclose(bvh_res[hit, 1], lin_res[hit, 1], atol=1e-4)

        # Origins lie outside the box, so the first scatter sits on its surface
        rng = np.random.default_rng(5)
        origins = rng.uniform(-12.0, 12.0, size=(256, 3))
        targets = rng.uniform(-6.0, 6.0, size=(256, 3))
        points = origins + lin_res[:, 1:2] * (targets - origins)
        on_surface = hit & (np.abs(origins).max(axis=1) > 3.0)
        np.testing.assert_allclose(np.abs(points[on_surface]).max(axis=1), 3.0, atol=1e-2)

    def test_empty_scene_misses(self):
        from pathtracer.scene.manager import SceneManager

        SceneManager().build()
        bvh_res, lin_res = self._compare(n_rays=32)
        assert np.all(bvh_res[:, 0] == 0)
        assert np.all(lin_res[:, 0] == 0)
        assert np.all(bvh_res[:, 2] == -1)
