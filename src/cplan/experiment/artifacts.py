"""
Mesh and plot dumps of a planning run.

PLY files are written with trimesh. Polylines and graph edges have no faces
of their own, so each edge (a, b) is stored as the degenerate triangle
(a, b, b), which mesh viewers render as a line.
"""

from pathlib import Path
from typing import List, Sequence

import matplotlib.pyplot as plt
import numpy as np
import trimesh

from cplan.core.logging import logger
from cplan.planning.planners import PlannerData

__all__ = [
    "write_path_ply",
    "write_atlas_ply",
    "write_graph_ply",
    "plot_path",
]


def _edge_faces(edges: np.ndarray) -> np.ndarray:
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    return np.column_stack([edges[:, 0], edges[:, 1], edges[:, 1]])


def _export(vertices: np.ndarray, faces: np.ndarray, path: Path) -> Path:
    mesh = trimesh.Trimesh(vertices=vertices, faces=faces.reshape(-1, 3), process=False, validate=False)
    mesh.export(str(path), file_type="ply", encoding="ascii")
    logger.debug(f"Wrote {path.name}: {len(vertices)} vertices, {len(faces)} faces")
    return path


def write_path_ply(points: np.ndarray, path: Path) -> Path:
    """Polyline through ``points`` (m, 3)."""
    points = np.asarray(points, dtype=np.float64)
    idx = np.arange(len(points))
    edges = np.column_stack([idx[:-1], idx[1:]])
    return _export(points, _edge_faces(edges), Path(path))


def write_atlas_ply(polygons: Sequence[np.ndarray], path: Path) -> Path:
    """
    Chart boundary polygons, each triangulated as a fan. Two-point polygons
    (charts of a curve) become a single edge.
    """
    vertices: List[np.ndarray] = []
    faces: List[List[int]] = []
    offset = 0
    for poly in polygons:
        m = len(poly)
        if m == 2:
            faces.append([offset, offset + 1, offset + 1])
        else:
            faces.extend([offset, offset + i, offset + i + 1] for i in range(1, m - 1))
        vertices.append(poly)
        offset += m
    if not vertices:
        return _export(np.empty((0, 3)), np.empty((0, 3), dtype=np.int64), Path(path))
    return _export(np.vstack(vertices), np.array(faces, dtype=np.int64), Path(path))


def write_graph_ply(data: PlannerData, path: Path) -> Path:
    """Planner vertices and edges."""
    return _export(data.vertices, _edge_faces(data.edges), Path(path))


def plot_path(points: np.ndarray, out_path: Path, title: str = "Constrained path") -> Path:
    """Line plot of a dense path; 3D axes when the ambient space is 3D."""
    points = np.asarray(points)
    fig = plt.figure(figsize=(8, 8))
    if points.shape[1] >= 3:
        ax = fig.add_subplot(projection="3d")
        ax.plot(points[:, 0], points[:, 1], points[:, 2], lw=1.5)
        ax.scatter(*points[0, :3], color="green", label="start")
        ax.scatter(*points[-1, :3], color="red", label="goal")
        ax.set_zlabel("x3")
    else:
        ax = fig.add_subplot()
        ax.plot(points[:, 0], points[:, 1], lw=1.5)
        ax.scatter(*points[0, :2], color="green", label="start", zorder=3)
        ax.scatter(*points[-1, :2], color="red", label="goal", zorder=3)
        ax.set_aspect("equal")
        ax.grid(True, linestyle="--", alpha=0.6)
    ax.set_xlabel("x1")
    ax.set_ylabel("x2")
    ax.set_title(title)
    ax.legend()
    out_path = Path(out_path)
    fig.savefig(out_path, dpi=150, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return out_path
