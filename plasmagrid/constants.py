"""Physical constants and fixed values shared by the interpolation pipeline.

Values are provided in SI units.
"""
from __future__ import annotations

# Value written by the engine (and by this package) where no data exists
MISSING_SENTINEL: float = -999.0

# Proton mass (kg) and elementary charge (C); test particle masses and
# charges are expressed in these units for the particle tracer
PROTON_MASS: float = 1.67262178e-27
PROTON_CHARGE: float = 1.602177e-19

# Method names accepted by the interpolation engine adapter
INTERPOLATION_LINEAR: str = "Linear"
INTERPOLATION_NEAREST: str = "NearestGridPoint"

# Default search window (s) when looking for a snapshot by its identifier
SNAPSHOT_SEARCH_WINDOW_S: int = 180

__all__ = [
    "MISSING_SENTINEL",
    "PROTON_MASS",
    "PROTON_CHARGE",
    "INTERPOLATION_LINEAR",
    "INTERPOLATION_NEAREST",
    "SNAPSHOT_SEARCH_WINDOW_S",
]
