"""Interpolation service core for precomputed space-plasma simulation runs."""
from . import constants
from .errors import PlasmaGridError

__all__ = ["constants", "PlasmaGridError"]
