"""Tests for the SceneManager class.

Tests cover:
- Unified material ids and the type mapping read by kernels
- Primitive registration for every shape kind
- Composite shapes (boxes, icosahedra, meshes)
- BVH build/rebuild bookkeeping
"""

import numpy as np
import pytest
import taichi as ti


class TestMaterials:
    """Tests for material registration."""

    def test_ids_are_sequential_across_types(self):
        from pathtracer.scene.manager import MaterialType, SceneManager

        scene = SceneManager()
        ids = [
            scene.add_lambertian_material((0.5, 0.5, 0.5)),
            scene.add_metal_material((0.8, 0.8, 0.8), roughness=0.2),
            scene.add_dielectric_material(1.5),
            scene.add_diffuse_light_material((4.0, 4.0, 4.0)),
            scene.add_isotropic_material((1.0, 1.0, 1.0)),
            scene.add_lambertian_material((0.1, 0.1, 0.1)),
        ]
        assert ids == [0, 1, 2, 3, 4, 5]
        assert scene.get_material_count() == 6
        assert scene.get_material_type_python(1) == MaterialType.METAL
        assert scene.get_material_type_python(4) == MaterialType.ISOTROPIC
        assert scene.get_material_type_python(99) is None

        info = scene.get_material_info(5)
        assert info.material_type == MaterialType.LAMBERTIAN
        assert info.type_index == 1
        assert info.params == {"albedo": (0.1, 0.1, 0.1)}

    def test_device_type_mapping(self):
        from pathtracer.scene.manager import (
            MaterialType,
            SceneManager,
            get_material_type,
            get_material_type_index,
        )

        scene = SceneManager()
        scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_dielectric_material(1.3)
        scene.add_dielectric_material(2.4)

        types = ti.field(dtype=ti.i32, shape=4)
        indices = ti.field(dtype=ti.i32, shape=4)

        @ti.kernel
        def test_kernel():
            for i in range(4):
                types[i] = get_material_type(i)
                indices[i] = get_material_type_index(i)

        test_kernel()
        assert types[0] == int(MaterialType.LAMBERTIAN)
        assert types[2] == int(MaterialType.DIELECTRIC)
        assert indices[1] == 0
        assert indices[2] == 1
        # Unknown ids fall back to -1
        assert types[3] == -1
        assert indices[3] == -1

    def test_invalid_material_id(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        with pytest.raises(ValueError, match="Invalid material_id"):
            scene.add_sphere((0.0, 0.0, 0.0), 1.0, 0)
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        with pytest.raises(ValueError):
            scene.add_triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), mat + 1)
        with pytest.raises(ValueError):
            scene.add_plane((0, 0, 0), (1, 0, 0), (0, 1, 0), -1)

    def test_invalid_material_parameters_register_nothing(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        with pytest.raises(ValueError):
            scene.add_dielectric_material(0.5)
        with pytest.raises(ValueError):
            scene.add_metal_material((0.5, 0.5, 0.5), roughness=2.0)
        assert scene.get_material_count() == 0
        assert scene.materials == []


class TestPrimitives:
    """Tests for primitive registration."""

    def test_each_kind(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        fog = scene.add_isotropic_material((1.0, 1.0, 1.0))

        assert scene.add_sphere((0.0, 0.0, 0.0), 1.0, mat) == 0
        assert scene.add_plane((0, 0, 0), (1, 0, 0), (0, 1, 0), mat) == 1
        assert scene.add_infinite_plane((0.0, -1.0, 0.0), (0.0, 1.0, 0.0), mat) == 2
        assert scene.add_triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), mat) == 3
        assert scene.add_fog_sphere((0.0, 0.0, 0.0), 2.0, 0.5, fog) == 4

        assert scene.get_primitive_count() == 5
        assert scene.get_sphere_count() == 1
        assert scene.get_plane_count() == 2
        assert scene.get_triangle_count() == 1
        assert scene.get_volume_count() == 1
        assert [p.kind for p in scene.primitives] == ["sphere", "plane", "plane", "triangle", "volume"]
        assert scene.primitives[2].bounds is None

    def test_zero_radius_sphere_accepted(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere((1.0, 1.0, 1.0), 0.0, mat)
        assert not scene.primitives[0].bounds.is_empty()

    def test_plane_from_center(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_plane_from_center((0.0, 1.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 3.0), mat)
        params = scene.primitives[0].params
        assert params["corner"] == pytest.approx((-2.0, 1.0, -3.0))
        assert params["edge_u"] == pytest.approx((4.0, 0.0, 0.0))
        assert params["edge_v"] == pytest.approx((0.0, 0.0, 6.0))

    def test_box_and_icosahedron(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        faces = scene.add_box((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0), mat)
        tris = scene.add_icosahedron((5.0, 0.0, 0.0), 1.0, mat)
        assert faces == list(range(6))
        assert tris == list(range(6, 26))
        assert scene.get_plane_count() == 6
        assert scene.get_triangle_count() == 20

        bounds = scene.bounds()
        assert bounds.contains_point((-1.0, -1.0, -1.0), tol=1e-9)
        assert bounds.contains_point((5.8, 0.0, 0.0))

    def test_mesh_with_normals(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        vertices = np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=float)
        faces = np.array([[0, 1, 2], [0, 2, 3]])
        normals = np.tile([0.0, 0.0, 1.0], (4, 1))
        ids = scene.add_mesh(vertices, faces, mat, normals=normals)
        assert ids == [0, 1]
        assert scene.primitives[1].params["vertices"][2] == (0.0, 1.0, 0.0)

    def test_mesh_errors(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        with pytest.raises(ValueError):
            scene.add_mesh(np.zeros((3, 3)), [[0, 1, 5]], mat)
        with pytest.raises(ValueError):
            scene.add_triangle((0, 0, 0), (1, 0, 0), (0, 1, 0), mat, normals=[(0, 0, 1)])
        assert scene.get_primitive_count() == 0

    @pytest.mark.parametrize("radius,density", [(1.0, 0.0), (1.0, -1.0), (0.0, 1.0)])
    def test_fog_errors(self, radius, density):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        fog = scene.add_isotropic_material((1.0, 1.0, 1.0))
        with pytest.raises(ValueError):
            scene.add_fog_sphere((0.0, 0.0, 0.0), radius, density, fog)

    def test_fog_box(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        fog = scene.add_isotropic_material((0.8, 0.8, 0.8))
        s = float(np.sqrt(0.5))
        prim = scene.add_fog_box((1.0, 2.0, 3.0), (s, s, 0.0), (-s, s, 0.0), (0.0, 0.0, 0.5), 0.2, fog)

        assert prim == 0
        assert scene.get_volume_count() == 1
        info = scene.primitives[0]
        assert info.kind == "volume"
        assert info.params["density"] == pytest.approx(0.2)
        assert info.params["half_spans"][2] == (0.0, 0.0, 0.5)
        assert info.bounds.contains_point((1.0 + 2.0 * s, 2.0, 3.5), tol=1e-9)
        assert info.bounds.contains_point((1.0, 2.0 - 2.0 * s, 2.5), tol=1e-9)
        assert not info.bounds.contains_point((1.0 + 2.0 * s + 0.1, 2.0, 3.0))

    @pytest.mark.parametrize(
        "spans,density",
        [
            (((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)), 0.0),
            (((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)), -2.0),
            (((1.0, 0.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 1.0)), 1.0),
        ],
    )
    def test_fog_box_errors(self, spans, density):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        fog = scene.add_isotropic_material((1.0, 1.0, 1.0))
        with pytest.raises(ValueError):
            scene.add_fog_box((0.0, 0.0, 0.0), *spans, density, fog)
        assert scene.get_primitive_count() == 0
        assert scene.get_volume_count() == 0

    def test_infinite_plane_zero_normal(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        with pytest.raises(ValueError):
            scene.add_infinite_plane((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), mat)


class TestBuild:
    """Tests for BVH build bookkeeping."""

    def test_build_is_idempotent(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        for i in range(5):
            scene.add_sphere((float(i), 0.0, 0.0), 0.4, mat)
        assert not scene.is_built
        bvh = scene.build()
        assert scene.is_built
        assert scene.build() is bvh
        assert scene.bvh is bvh
        assert bvh.primitive_count == 5

    def test_adding_primitives_triggers_rebuild(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere((0.0, 0.0, 0.0), 1.0, mat)
        first = scene.build()
        scene.add_sphere((3.0, 0.0, 0.0), 1.0, mat)
        assert not scene.is_built
        second = scene.build()
        assert second is not first
        assert second.primitive_count == 2

    def test_has_emitters(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        light = scene.add_diffuse_light_material((1.0, 1.0, 1.0), intensity=5.0)
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere((0.0, 0.0, 0.0), 1.0, mat)
        # An unused light material does not count
        assert not scene.has_emitters()
        scene.add_plane((0, 2, 0), (1, 0, 0), (0, 0, 1), light)
        assert scene.has_emitters()

    def test_clear(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere((0.0, 0.0, 0.0), 1.0, mat)
        scene.build()
        scene.clear()
        assert scene.get_primitive_count() == 0
        assert scene.get_material_count() == 0
        assert scene.bvh is None
        assert not scene.is_built
        assert scene.bounds().is_empty()

    def test_new_manager_resets_registries(self):
        from pathtracer.scene.manager import SceneManager

        first = SceneManager()
        first.add_lambertian_material((0.5, 0.5, 0.5))
        second = SceneManager()
        assert second.get_material_count() == 0
        assert second.add_lambertian_material((0.1, 0.1, 0.1)) == 0
