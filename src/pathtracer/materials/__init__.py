"""Material models for light scattering.

Components:
    lambertian: Ideal diffuse reflection
    metal: Specular reflection with optional roughness
    dielectric: Glass-like refraction with Fresnel reflectance
    diffuse_light: Area light emission (terminates paths)
    isotropic: Uniform scattering inside participating media
    scatter: The ScatterResult shared by all materials

Each material keeps its parameters in a fixed-capacity registry of Taichi
fields and exposes a device scatter function that threads the caller's
random state.
"""

from .dielectric import (
    DielectricMaterial,
    add_dielectric_material,
    clear_dielectric_materials,
    fresnel_reflectance,
    get_dielectric_ior,
    get_dielectric_material_count,
    scatter_dielectric,
    scatter_dielectric_by_id,
)
from .diffuse_light import (
    DiffuseLightMaterial,
    add_diffuse_light_material,
    clear_diffuse_light_materials,
    emit_diffuse_light,
    emit_diffuse_light_by_id,
    get_diffuse_light_material_count,
    get_diffuse_light_radiance,
)
from .isotropic import (
    add_isotropic_material,
    clear_isotropic_materials,
    get_isotropic_material_count,
    scatter_isotropic,
    scatter_isotropic_by_id,
)
from .lambertian import (
    LambertianMaterial,
    add_lambertian_material,
    clear_lambertian_materials,
    get_lambertian_albedo,
    get_lambertian_material_count,
    scatter_lambertian,
    scatter_lambertian_by_id,
)
from .metal import (
    MetalMaterial,
    add_metal_material,
    clear_metal_materials,
    get_metal_albedo,
    get_metal_material_count,
    get_metal_roughness,
    scatter_metal,
    scatter_metal_by_id,
)
from .scatter import ABSORBED, EMITTED, SCATTERED, ScatterResult

__all__ = [
    # Shared
    "ScatterResult",
    "SCATTERED",
    "EMITTED",
    "ABSORBED",
    # Lambertian
    "LambertianMaterial",
    "scatter_lambertian",
    "scatter_lambertian_by_id",
    "add_lambertian_material",
    "clear_lambertian_materials",
    "get_lambertian_material_count",
    "get_lambertian_albedo",
    # Metal
    "MetalMaterial",
    "scatter_metal",
    "scatter_metal_by_id",
    "add_metal_material",
    "clear_metal_materials",
    "get_metal_material_count",
    "get_metal_albedo",
    "get_metal_roughness",
    # Dielectric
    "DielectricMaterial",
    "scatter_dielectric",
    "scatter_dielectric_by_id",
    "add_dielectric_material",
    "clear_dielectric_materials",
    "get_dielectric_material_count",
    "get_dielectric_ior",
    "fresnel_reflectance",
    # Diffuse light
    "DiffuseLightMaterial",
    "emit_diffuse_light",
    "emit_diffuse_light_by_id",
    "add_diffuse_light_material",
    "clear_diffuse_light_materials",
    "get_diffuse_light_material_count",
    "get_diffuse_light_radiance",
    # Isotropic
    "scatter_isotropic",
    "scatter_isotropic_by_id",
    "add_isotropic_material",
    "clear_isotropic_materials",
    "get_isotropic_material_count",
]
