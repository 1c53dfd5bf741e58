"""Tests for the path tracing integrator.

Tests cover:
- Background model (host and device agree)
- Render target setup and error handling
- Depth cap, emission and escape behavior of single paths
- Determinism and sample continuation across render calls
- Fault detection for non-finite radiance
- Index-matched glass leaves the image unchanged
- Reference buffer, sample-count independence and variance reduction
- Energy conservation of scattering materials
- Secondary ray origin offsets
"""

import numpy as np
import pytest
import taichi as ti


def _enclosing_scene(material):
    """A camera inside a large sphere so every primary ray hits it."""
    from pathtracer.scene.manager import SceneManager

    scene = SceneManager()
    mat = material(scene)
    scene.add_sphere((0.0, 0.0, 0.0), 50.0, mat)
    scene.build()
    return scene, mat


class TestBackground:
    """Tests for the background model."""

    def test_gradient_endpoints(self):
        from pathtracer.core.integrator import Background

        bg = Background()
        np.testing.assert_allclose(bg.evaluate((0.0, 1.0, 0.0)), [0.5, 0.7, 1.0])
        np.testing.assert_allclose(bg.evaluate((0.0, -2.0, 0.0)), [1.0, 1.0, 1.0])
        np.testing.assert_allclose(bg.evaluate((1.0, 0.0, 0.0)), [0.75, 0.85, 1.0])

    def test_solid(self):
        from pathtracer.core.integrator import Background

        np.testing.assert_allclose(Background.solid((0.1, 0.2, 0.3)).evaluate((0.0, 1.0, 0.0)), [0.1, 0.2, 0.3])
        np.testing.assert_allclose(Background.black().evaluate((1.0, 0.0, 0.0)), 0.0)

    def test_unknown_mode(self):
        from pathtracer.core.integrator import Background

        with pytest.raises(ValueError):
            Background(mode="hdri")

    def test_device_matches_host(self):
        from pathtracer.core.integrator import Background, background_radiance, setup_background

        bg = Background(horizon=(0.9, 0.8, 0.7), zenith=(0.1, 0.2, 0.3))
        setup_background(bg)
        dirs = np.array([[0.0, 1.0, 0.0], [0.3, -0.4, 1.0], [1.0, 0.2, -3.0]], dtype=np.float32)
        d_field = ti.Vector.field(3, dtype=ti.f32, shape=3)
        out = ti.Vector.field(3, dtype=ti.f32, shape=3)
        d_field.from_numpy(dirs)

        @ti.kernel
        def test_kernel():
            for i in range(3):
                out[i] = background_radiance(d_field[i])

        test_kernel()
        expected = np.array([bg.evaluate(d) for d in dirs])
        np.testing.assert_allclose(out.to_numpy(), expected, atol=1e-6)


class TestRenderTarget:
    """Tests for render target setup."""

    @pytest.mark.parametrize("size", [(0, 10), (10, -1), (4096, 10), (10, 2049)])
    def test_invalid_dimensions(self, size):
        from pathtracer.core.integrator import setup_render_target

        with pytest.raises(ValueError):
            setup_render_target(*size)

    def test_render_requires_target(self):
        from pathtracer.core import integrator

        integrator._render_target_initialized[None] = 0
        with pytest.raises(RuntimeError, match="setup_render_target"):
            integrator.render_image(1)
        with pytest.raises(RuntimeError):
            integrator.get_accumulated_numpy()

    def test_invalid_render_arguments(self):
        from pathtracer.core.integrator import render_image, setup_render_target

        setup_render_target(4, 4)
        with pytest.raises(ValueError):
            render_image(num_samples=0)
        with pytest.raises(ValueError):
            render_image(num_samples=1, max_depth=0)

    def test_dimensions_and_empty_image(self):
        from pathtracer.core.integrator import (
            get_accumulated_numpy,
            get_image_dimensions,
            get_total_samples,
            setup_render_target,
        )

        setup_render_target(5, 3)
        assert get_image_dimensions() == (5, 3)
        assert get_total_samples() == 0
        image = get_accumulated_numpy()
        assert image.shape == (3, 5, 3)
        assert image.dtype == np.float32
        assert np.all(image == 0.0)


class TestRendering:
    """Tests for full-image rendering."""

    def test_empty_scene_shows_background_per_pixel(self, simple_camera):
        """Each pixel center sees the gradient along its own primary ray."""
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            Background,
            get_accumulated_numpy,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        SceneManager().build()
        setup_camera(simple_camera)
        width, height = 8, 6
        setup_render_target(width, height)
        faults = render_image(num_samples=1, max_depth=4, seed=3, jitter=False)
        assert faults == 0

        image = get_accumulated_numpy()
        frame = simple_camera.basis()
        bg = Background()
        for row in range(height):
            j = height - 1 - row
            for i in range(width):
                s = (i + 0.5) / width
                t = (j + 0.5) / height
                d = frame["lower_left"] + s * frame["horizontal"] + t * frame["vertical"] - frame["origin"]
                np.testing.assert_allclose(image[row, i], bg.evaluate(d), atol=1e-5)

        # Top rows look up toward the zenith color
        assert image[0, :, 0].mean() < image[-1, :, 0].mean()

    def test_depth_one_diffuse_is_black(self, simple_camera):
        """A path that is still bouncing at the depth cap contributes nothing."""
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import get_accumulated_numpy, render_image, setup_render_target

        _enclosing_scene(lambda s: s.add_lambertian_material((0.9, 0.9, 0.9)))
        setup_camera(simple_camera)
        setup_render_target(4, 4)
        render_image(num_samples=4, max_depth=1)
        assert np.all(get_accumulated_numpy() == 0.0)

    def test_closed_diffuse_box_without_light_is_black(self, simple_camera):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import get_accumulated_numpy, render_image, setup_render_target

        _enclosing_scene(lambda s: s.add_lambertian_material((0.9, 0.9, 0.9)))
        setup_camera(simple_camera)
        setup_render_target(4, 4)
        render_image(num_samples=4, max_depth=20)
        assert np.all(get_accumulated_numpy() == 0.0)

    def test_inside_emitter_sees_emission(self, simple_camera):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import get_accumulated_numpy, render_image, setup_render_target

        _enclosing_scene(lambda s: s.add_diffuse_light_material((0.5, 1.0, 2.0), intensity=2.0))
        setup_camera(simple_camera)
        setup_render_target(4, 4)
        render_image(num_samples=2, max_depth=1)
        image = get_accumulated_numpy()
        np.testing.assert_allclose(image.reshape(-1, 3), np.tile([1.0, 2.0, 4.0], (16, 1)), atol=1e-6)

    def test_same_seed_same_image(self, simple_camera):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            clear_render_target,
            get_accumulated_numpy,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.7, 0.3, 0.3))
        scene.add_sphere((0.0, 0.0, -2.0), 0.8, mat)
        scene.add_infinite_plane((0.0, -1.0, 0.0), (0.0, 1.0, 0.0), mat)
        scene.build()
        setup_camera(simple_camera)
        setup_render_target(8, 8)

        render_image(num_samples=3, max_depth=8, seed=11)
        first = get_accumulated_numpy()
        clear_render_target()
        render_image(num_samples=3, max_depth=8, seed=11)
        second = get_accumulated_numpy()
        clear_render_target()
        render_image(num_samples=3, max_depth=8, seed=12)
        other = get_accumulated_numpy()

        np.testing.assert_array_equal(first, second)
        assert not np.array_equal(first, other)

    def test_samples_continue_across_calls(self, simple_camera):
        """2 + 2 samples give the same estimate as 4 samples at once."""
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            clear_render_target,
            get_accumulated_numpy,
            get_total_samples,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_metal_material((0.8, 0.8, 0.8), roughness=0.5)
        scene.add_sphere((0.0, 0.0, -2.0), 0.8, mat)
        scene.build()
        setup_camera(simple_camera)
        setup_render_target(8, 8)

        render_image(num_samples=2, seed=5)
        render_image(num_samples=2, seed=5)
        assert get_total_samples() == 4
        split = get_accumulated_numpy()

        clear_render_target()
        render_image(num_samples=4, seed=5)
        whole = get_accumulated_numpy()
        np.testing.assert_allclose(split, whole, atol=1e-5)

    def test_non_finite_radiance_is_counted(self, simple_camera):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import get_fault_count, render_image, setup_render_target
        from pathtracer.materials.diffuse_light import diffuse_light_colors

        _enclosing_scene(lambda s: s.add_diffuse_light_material((1.0, 1.0, 1.0)))
        diffuse_light_colors[0] = [float("nan"), 0.0, 0.0]
        setup_camera(simple_camera)
        setup_render_target(4, 4)
        faults = render_image(num_samples=2, max_depth=2)
        assert faults == 32
        assert get_fault_count() == 32

    def test_index_matched_glass_is_invisible(self, simple_camera):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import get_accumulated_numpy, render_image, setup_render_target
        from pathtracer.scene.manager import SceneManager

        def render(with_glass):
            scene = SceneManager()
            ground = scene.add_lambertian_material((0.5, 0.5, 0.5))
            glass = scene.add_dielectric_material(1.0)
            scene.add_infinite_plane((0.0, -1.0, 0.0), (0.0, 1.0, 0.0), ground)
            if with_glass:
                scene.add_sphere((0.0, -0.2, -2.0), 0.7, glass)
            scene.build()
            setup_camera(simple_camera)
            setup_render_target(16, 16)
            render_image(num_samples=4, max_depth=16, seed=2)
            return get_accumulated_numpy()

        without = render(False)
        with_glass = render(True)
        assert np.abs(with_glass - without).mean() < 5e-3

    def test_empty_scene_independent_of_sample_count(self, simple_camera):
        """Unjittered sky renders agree whatever the number of samples."""
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            clear_render_target,
            get_accumulated_numpy,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        SceneManager().build()
        setup_camera(simple_camera)
        setup_render_target(10, 7)

        render_image(num_samples=1, max_depth=4, seed=1, jitter=False)
        single = get_accumulated_numpy()
        clear_render_target()
        render_image(num_samples=9, max_depth=4, seed=77, jitter=False)
        many = get_accumulated_numpy()

        np.testing.assert_allclose(single, many, atol=1e-6)

    def test_depth_one_sphere_matches_reference_buffer(self, simple_camera):
        """20x20 diffuse sphere under the sky with a single path segment.

        With one segment every ray that meets the sphere is cut off, so the
        reference buffer is black inside the silhouette and the sky gradient
        outside it.
        """
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            Background,
            clear_render_target,
            get_accumulated_numpy,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        size = 20
        center = np.array([0.0, 0.0, -3.0])
        radius = 1.0

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.5, 0.5, 0.5))
        scene.add_sphere(tuple(center), radius, mat)
        scene.build()
        setup_camera(simple_camera)
        setup_render_target(size, size)

        faults = render_image(num_samples=4, max_depth=1, seed=2024, jitter=False)
        assert faults == 0
        image = get_accumulated_numpy()

        frame = simple_camera.basis()
        bg = Background()
        reference = np.zeros((size, size, 3))
        near_edge = np.zeros((size, size), dtype=bool)
        for row in range(size):
            j = size - 1 - row
            for i in range(size):
                d = (
                    frame["lower_left"]
                    + (i + 0.5) / size * frame["horizontal"]
                    + (j + 0.5) / size * frame["vertical"]
                    - frame["origin"]
                )
                miss_distance = np.linalg.norm(np.cross(center - frame["origin"], d)) / np.linalg.norm(d)
                near_edge[row, i] = abs(miss_distance - radius) < 1e-3
                if miss_distance > radius:
                    reference[row, i] = bg.evaluate(d)

        assert (reference.sum(axis=-1) == 0.0).sum() > 20
        keep = ~near_edge
        np.testing.assert_allclose(image[keep], reference[keep], atol=1e-5)

        # Jittered renders of the same scene replay exactly from the seed
        clear_render_target()
        render_image(num_samples=4, max_depth=1, seed=2024)
        first = get_accumulated_numpy()
        clear_render_target()
        render_image(num_samples=4, max_depth=1, seed=2024)
        np.testing.assert_array_equal(first, get_accumulated_numpy())

    def test_pixel_variance_falls_with_samples(self, simple_camera):
        """Independent estimates spread less when each uses more samples."""
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            clear_render_target,
            get_accumulated_numpy,
            render_image,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_lambertian_material((0.7, 0.6, 0.5))
        scene.add_sphere((0.0, 0.0, -2.0), 0.8, mat)
        scene.add_infinite_plane((0.0, -1.0, 0.0), (0.0, 1.0, 0.0), mat)
        scene.build()
        setup_camera(simple_camera)
        setup_render_target(8, 8)

        def spread(num_samples):
            estimates = []
            for seed in range(12):
                clear_render_target()
                render_image(num_samples=num_samples, max_depth=6, seed=seed)
                estimates.append(get_accumulated_numpy())
            return np.var(np.stack(estimates), axis=0).mean()

        coarse = spread(1)
        fine = spread(16)
        assert coarse > 0.0
        assert fine < 0.5 * coarse


class TestEnergy:
    """Scattering materials never return more light than they receive.

    The scenes sit under a uniform white sky, so the incoming radiance is 1
    from every direction and a pixel estimate is bounded by the albedo.
    """

    @staticmethod
    def _render_under_white_sky(simple_camera, build, jitter=True):
        from pathtracer.camera.thin_lens import setup_camera
        from pathtracer.core.integrator import (
            Background,
            get_accumulated_numpy,
            render_image,
            setup_background,
            setup_render_target,
        )
        from pathtracer.scene.manager import SceneManager

        setup_background(Background.solid((1.0, 1.0, 1.0)))
        scene = SceneManager()
        build(scene)
        scene.build()
        setup_camera(simple_camera)
        setup_render_target(16, 16)
        faults = render_image(num_samples=32, max_depth=16, seed=8, jitter=jitter)
        assert faults == 0
        return get_accumulated_numpy()

    def test_lambertian(self, simple_camera):
        albedo = np.array([0.6, 0.4, 0.2])

        def build(scene):
            mat = scene.add_lambertian_material(tuple(albedo))
            scene.add_infinite_plane((0.0, 0.0, -2.0), (0.0, 0.0, 1.0), mat)

        image = self._render_under_white_sky(simple_camera, build)
        assert np.all(image <= albedo + 1e-5)
        # Every bounce leaves the plane toward the sky, so nothing is lost either
        np.testing.assert_allclose(image.reshape(-1, 3).mean(axis=0), albedo, atol=1e-4)

    def test_metal(self, simple_camera):
        albedo = np.array([0.9, 0.5, 0.3])

        def build(scene):
            mat = scene.add_metal_material(tuple(albedo), roughness=0.6)
            scene.add_infinite_plane((0.0, 0.0, -2.0), (0.0, 0.0, 1.0), mat)

        image = self._render_under_white_sky(simple_camera, build)
        assert np.all(image <= albedo + 1e-5)
        mean = image.reshape(-1, 3).mean(axis=0)
        assert np.all(mean > 0.0)
        assert np.all(mean <= albedo + 1e-5)

    def test_isotropic(self, simple_camera):
        """Pixels looking into dense fog see at most one albedo of the sky."""
        albedo = np.array([0.7, 0.5, 0.3])
        center = np.array([0.0, 0.0, -3.0])

        def build(scene):
            mat = scene.add_isotropic_material(tuple(albedo))
            scene.add_fog_sphere(tuple(center), 1.0, 1e4, mat)

        image = self._render_under_white_sky(simple_camera, build, jitter=False)

        frame = simple_camera.basis()
        inside = np.zeros(image.shape[:2], dtype=bool)
        size = image.shape[0]
        for row in range(size):
            j = size - 1 - row
            for i in range(size):
                d = (
                    frame["lower_left"]
                    + (i + 0.5) / size * frame["horizontal"]
                    + (j + 0.5) / size * frame["vertical"]
                    - frame["origin"]
                )
                miss_distance = np.linalg.norm(np.cross(center, d)) / np.linalg.norm(d)
                inside[row, i] = miss_distance < 0.9

        assert inside.sum() > 10
        foggy = image[inside]
        assert np.all(foggy <= albedo + 1e-5)
        assert np.all(foggy.mean(axis=0) > 0.0)


class TestRayOffset:
    """Tests for moving secondary ray origins off the hit point."""

    @staticmethod
    def _offset(point, normal, direction):
        from pathtracer.core.integrator import _offset_ray_origin

        out = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def run():
            out[None] = _offset_ray_origin(
                ti.Vector(point, dt=ti.f32), ti.Vector(normal, dt=ti.f32), ti.Vector(direction, dt=ti.f32)
            )

        run()
        return out.to_numpy()

    def test_moves_to_the_outgoing_side(self):
        from pathtracer.core.integrator import RAY_EPSILON

        up = self._offset([1.0, 2.0, 3.0], [0.0, 1.0, 0.0], [0.3, 0.5, 0.0])
        down = self._offset([1.0, 2.0, 3.0], [0.0, 1.0, 0.0], [0.3, -0.5, 0.0])
        np.testing.assert_allclose(up, [1.0, 2.0 + RAY_EPSILON, 3.0], atol=1e-6)
        np.testing.assert_allclose(down, [1.0, 2.0 - RAY_EPSILON, 3.0], atol=1e-6)

    def test_zero_normal_keeps_the_point(self):
        """Scattering inside a medium restarts the ray where it scattered."""
        out = self._offset([1.0, 2.0, 3.0], [0.0, 0.0, 0.0], [-0.6, 0.0, 0.8])
        np.testing.assert_array_equal(out, [1.0, 2.0, 3.0])


class TestTrace:
    """Tests for single-path tracing from Python."""

    def test_escaping_ray_returns_background(self):
        from pathtracer.core.integrator import trace
        from pathtracer.scene.manager import SceneManager

        SceneManager().build()
        assert trace((0.0, 0.0, 0.0), (0.0, 1.0, 0.0)) == pytest.approx((0.5, 0.7, 1.0))

    def test_ray_hitting_light(self):
        from pathtracer.core.integrator import trace
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        light = scene.add_diffuse_light_material((2.0, 3.0, 4.0))
        scene.add_sphere((0.0, 0.0, -5.0), 1.0, light)
        scene.build()
        assert trace((0.0, 0.0, 0.0), (0.0, 0.0, -1.0)) == pytest.approx((2.0, 3.0, 4.0))

    def test_mirror_reflects_sky(self):
        """A mirror facing up shows the zenith color times the albedo."""
        from pathtracer.core.integrator import trace
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mirror = scene.add_metal_material((0.5, 0.5, 0.5), roughness=0.0)
        scene.add_infinite_plane((0.0, 0.0, 0.0), (0.0, 1.0, 0.0), mirror)
        scene.build()
        color = trace((0.0, 1.0, 0.0), (0.0, -1.0, 0.0))
        assert color == pytest.approx((0.25, 0.35, 0.5), abs=1e-5)
        # With a single segment the reflected path is cut off
        assert trace((0.0, 1.0, 0.0), (0.0, -1.0, 0.0), max_depth=1) == (0.0, 0.0, 0.0)
