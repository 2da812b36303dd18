"""Structured warning classes for the :mod:`plasmagrid` package."""
from __future__ import annotations


class PlasmaGridWarning(UserWarning):
    """Base warning class for plasmagrid."""


class UnitWarning(PlasmaGridWarning):
    """Unit string could not be recognised; values pass through unscaled."""


class TemporalCoverageWarning(PlasmaGridWarning):
    """Samples fall outside the time coverage of a dynamic run."""


__all__ = [
    "PlasmaGridWarning",
    "UnitWarning",
    "TemporalCoverageWarning",
]
