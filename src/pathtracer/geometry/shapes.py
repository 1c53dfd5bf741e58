"""Composite shapes assembled from planes and triangles.

These helpers only produce geometry (host-side NumPy arrays); the scene
manager turns the pieces into primitives that share one material.
"""

from collections.abc import Sequence

import numpy as np
import numpy.typing as npt

# Golden ratio, used for the icosahedron vertex layout
PHI = (1.0 + np.sqrt(5.0)) / 2.0

# Vertex indices of the 20 icosahedron faces, wound counter-clockwise
# when seen from outside
ICOSAHEDRON_FACES = np.array(
    [
        [1, 2, 6], [1, 7, 2], [3, 4, 5], [4, 3, 8], [6, 5, 11],
        [5, 6, 10], [9, 10, 2], [10, 9, 3], [7, 8, 9], [8, 7, 0],
        [11, 0, 1], [0, 11, 4], [6, 2, 10], [1, 6, 11], [3, 5, 10],
        [5, 4, 11], [2, 7, 9], [7, 1, 0], [3, 9, 8], [4, 8, 0],
    ],
    dtype=np.int32,
)


def box_faces(
    center: Sequence[float],
    half_i: Sequence[float],
    half_j: Sequence[float],
    half_k: Sequence[float],
) -> list[tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]]:
    """Faces of a box given by its center and three half-span vectors.

    The spans need not be axis-aligned, which allows rotated boxes. Each
    face is returned as (face_center, half_u, half_v) with cross(half_u,
    half_v) pointing out of the box when the spans form a right-handed set.

    Args:
        center: Center of the box.
        half_i: First half-span vector.
        half_j: Second half-span vector.
        half_k: Third half-span vector.

    Returns:
        Six (face_center, half_u, half_v) tuples: front, top, left, bottom,
        right, back.
    """
    c = np.asarray(center, dtype=np.float64)
    i = np.asarray(half_i, dtype=np.float64)
    j = np.asarray(half_j, dtype=np.float64)
    k = np.asarray(half_k, dtype=np.float64)
    return [
        (c - k, j, i),
        (c + j, k, i),
        (c - i, k, j),
        (c - j, i, k),
        (c + i, j, k),
        (c + k, i, j),
    ]


def icosahedron_vertices(center: Sequence[float], radius: float) -> npt.NDArray[np.float64]:
    """The 12 vertices of a regular icosahedron inscribed in a sphere.

    Args:
        center: Center of the circumscribed sphere.
        radius: Circumradius (distance from center to each vertex).

    Returns:
        Array of shape (12, 3).

    Raises:
        ValueError: If the radius is not positive.
    """
    if radius <= 0.0:
        raise ValueError(f"Icosahedron radius must be positive, got {radius}")
    unit = np.array(
        [
            [0.0, -1.0, PHI],
            [PHI, 0.0, 1.0],
            [PHI, 0.0, -1.0],
            [-PHI, 0.0, -1.0],
            [-PHI, 0.0, 1.0],
            [-1.0, PHI, 0.0],
            [1.0, PHI, 0.0],
            [1.0, -PHI, 0.0],
            [-1.0, -PHI, 0.0],
            [0.0, -1.0, -PHI],
            [0.0, 1.0, -PHI],
            [0.0, 1.0, PHI],
        ]
    )
    # Every row has length sqrt(PHI + 2)
    scale = radius / np.sqrt(PHI + 2.0)
    return np.asarray(center, dtype=np.float64) + scale * unit


def validate_mesh(
    vertices: npt.ArrayLike,
    faces: npt.ArrayLike,
    normals: npt.ArrayLike | None = None,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.int64], npt.NDArray[np.float64] | None]:
    """Check and normalize triangle mesh arrays.

    Args:
        vertices: Vertex positions, shape (V, 3).
        faces: Vertex indices per triangle, shape (F, 3).
        normals: Optional per-vertex normals, shape (V, 3).

    Returns:
        Tuple of (vertices, faces, normals) as float64/int64 arrays.

    Raises:
        ValueError: If any array has the wrong shape, a face index is out of
            range, or a coordinate is not finite.
    """
    verts = np.asarray(vertices, dtype=np.float64)
    tris = np.asarray(faces)
    if verts.ndim != 2 or verts.shape[1] != 3:
        raise ValueError(f"Mesh vertices must have shape (V, 3), got {verts.shape}")
    if tris.ndim != 2 or tris.shape[1] != 3:
        raise ValueError(f"Mesh faces must have shape (F, 3), got {tris.shape}")
    if not np.issubdtype(tris.dtype, np.integer):
        raise ValueError("Mesh face indices must be integers")
    tris = tris.astype(np.int64)
    if not np.all(np.isfinite(verts)):
        raise ValueError("Mesh vertices must be finite")
    if len(tris) and (tris.min() < 0 or tris.max() >= len(verts)):
        raise ValueError(f"Mesh face index out of range [0, {len(verts)})")

    norms = None
    if normals is not None:
        norms = np.asarray(normals, dtype=np.float64)
        if norms.shape != verts.shape:
            raise ValueError(
                f"Mesh normals must match the vertex array shape {verts.shape}, got {norms.shape}"
            )
    return verts, tris, norms
