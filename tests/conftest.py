"""Pytest configuration for path tracer tests.

This module provides shared fixtures for all test modules, including
Taichi initialization which must happen once per session.
"""

import pytest
import taichi as ti


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Using session scope prevents multiple ti.init() calls which can cause
    segmentation faults due to Taichi runtime conflicts. fast_math is off so
    that NaN checks inside kernels are not optimized away.
    """
    ti.init(arch=ti.cpu, random_seed=42, fast_math=False)
    yield


@pytest.fixture(autouse=True)
def clear_all_scene_data():
    """Clear every registry and the render target around each test.

    Modules holding Taichi fields are imported here, after ti.init().
    """
    from pathtracer.core.integrator import Background, clear_render_target, setup_background
    from pathtracer.materials.dielectric import clear_dielectric_materials
    from pathtracer.materials.diffuse_light import clear_diffuse_light_materials
    from pathtracer.materials.isotropic import clear_isotropic_materials
    from pathtracer.materials.lambertian import clear_lambertian_materials
    from pathtracer.materials.metal import clear_metal_materials
    from pathtracer.scene.intersection import clear_scene
    from pathtracer.scene.manager import _clear_material_tracking

    def _clear_all():
        clear_scene()
        clear_lambertian_materials()
        clear_metal_materials()
        clear_dielectric_materials()
        clear_diffuse_light_materials()
        clear_isotropic_materials()
        _clear_material_tracking()
        clear_render_target()
        setup_background(Background())

    _clear_all()
    yield
    _clear_all()


@pytest.fixture
def simple_camera():
    """A pinhole camera at the origin looking down -z with a square image."""
    from pathtracer.camera.thin_lens import Camera

    return Camera(
        lookfrom=(0.0, 0.0, 0.0),
        lookat=(0.0, 0.0, -1.0),
        vup=(0.0, 1.0, 0.0),
        vfov=90.0,
        aspect_ratio=1.0,
    )
