"""Sample meshes on axis-aligned planes through the simulation box."""
from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..errors import ConfigurationError, RequestError
from ..schema import SimulationDomain

logger = logging.getLogger(__name__)

MAX_MESH_POINTS = 5_000_000

# normal axis -> (outer loop axis, inner loop axis)
_PLANE_AXES = {2: (0, 1), 0: (1, 2), 1: (0, 2)}


def basic_cell_size(domain: SimulationDomain) -> float:
    """Cell size of the unrefined grid.

    ``domain.cell_size`` holds the finest cell; an adaptive structure such as
    ``"Adaptive 3"`` means three refinement levels below the basic grid.
    """

    structure = domain.grid_structure.strip()
    finest = float(domain.cell_size[0])
    if structure == "Constant":
        return finest
    parts = structure.replace(",", " ").split()
    try:
        levels = int(parts[1])
    except (IndexError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read refinement levels from grid structure '{structure}'") from exc
    return (2 ** levels) * finest


def normal_axis(normal: Sequence[float]) -> int:
    """Index of the coordinate axis ``normal`` is parallel to."""

    if len(normal) != 3:
        raise RequestError(f"PlaneNormalVector is not 3 component vector: {list(normal)}")
    vector = np.asarray(normal, dtype=float)
    length = float(np.linalg.norm(vector))
    if length == 0.0 or not math.isfinite(length):
        raise RequestError("PlaneNormalVector cannot be zero length")
    nonzero = np.flatnonzero(vector / length)
    if nonzero.size != 1:
        raise RequestError("PlaneNormalVector must be parallel to any of the three coordinate axis")
    return int(nonzero[0])


def _axis_values(low: float, high: float, step: float) -> np.ndarray:
    count = int(math.floor((high - low) / step + 1e-9)) + 1
    return low + step * np.arange(count, dtype=float)


def plane_mesh(
    domain: SimulationDomain,
    normal: Sequence[float],
    point: Sequence[float],
    resolution: Optional[float] = None,
) -> Tuple[np.ndarray, float]:
    """Return ``(positions, resolution)`` of a square mesh covering the box.

    The coordinate along ``normal`` is fixed to the matching component of
    ``point``; the other two run from ``valid_min`` to ``valid_max``
    inclusive in steps of ``resolution`` (default: basic cell size).
    """

    axis = normal_axis(normal)
    step = float(resolution) if resolution is not None else basic_cell_size(domain)
    if step <= 0.0:
        raise RequestError(f"Illegal input parameter value: Resolution={step}")
    outer, inner = _PLANE_AXES[axis]
    outer_values = _axis_values(domain.valid_min[outer], domain.valid_max[outer], step)
    inner_values = _axis_values(domain.valid_min[inner], domain.valid_max[inner], step)
    total = outer_values.size * inner_values.size
    if total > MAX_MESH_POINTS:
        raise RequestError(f"Resolution {step} gives {total} mesh points; the limit is {MAX_MESH_POINTS}")

    grid_outer, grid_inner = np.meshgrid(outer_values, inner_values, indexing="ij")
    positions = np.empty((total, 3), dtype=float)
    positions[:, outer] = grid_outer.ravel()
    positions[:, inner] = grid_inner.ravel()
    positions[:, axis] = float(point[axis])
    logger.info("Plane mesh normal to axis %d: %d points at resolution %g m", axis, total, step)
    return positions, step


__all__ = ["MAX_MESH_POINTS", "basic_cell_size", "normal_axis", "plane_mesh"]
