"""Taichi-based Monte Carlo path tracer.

This package renders 3-D scenes by stochastic path tracing on the CPU (or any
Taichi backend), with support for:
- Spheres, planes, triangles, meshes and constant-density fog volumes
- A bounding volume hierarchy for nearest-hit queries
- Lambertian, metal, dielectric, emissive and isotropic materials
- Thin-lens camera with depth of field and orbit animation
- Deterministic, per-pixel parallel sample accumulation

Subpackages:
    core: Ray math, sampling, the path integrator and the render scheduler
    geometry: Shape primitives, bounding boxes and the BVH
    materials: Scattering models and their registries
    scene: Primitive storage, scene manager and preset scenes
    camera: Thin-lens camera with orbit support
    preview: Tone mapping and image sinks
"""

__version__ = "0.1.0"
