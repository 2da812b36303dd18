"""Custom exceptions for the :mod:`plasmagrid` package.

Every error carries a ``fault`` category: ``"Client"`` when the request
itself is at fault, ``"Server"`` when the service or one of its external
tools failed.
"""
from __future__ import annotations

CLIENT_FAULT = "Client"
SERVER_FAULT = "Server"


class PlasmaGridError(Exception):
    """Base exception for interpolation service errors."""

    fault: str = SERVER_FAULT


class InputFormatError(PlasmaGridError, ValueError):
    """Sample point file could not be parsed."""

    fault = CLIENT_FAULT


class MissingField(InputFormatError):
    """A required field is absent from the sample point table."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Missing field in input table: {field}")
        self.field = field


class UnknownVariable(PlasmaGridError, ValueError):
    """Requested variable is not provided by the simulation run."""

    fault = CLIENT_FAULT

    def __init__(self, name: str, detail: str | None = None) -> None:
        message = f"Undefined variable: {name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.name = name


class RequestError(PlasmaGridError, ValueError):
    """Request parameters are inconsistent with the simulation run."""

    fault = CLIENT_FAULT


class RetrievalError(PlasmaGridError, OSError):
    """Remote input file could not be fetched."""

    fault = CLIENT_FAULT


class EngineFailure(PlasmaGridError, RuntimeError):
    """The external interpolation engine failed or produced unusable output."""


class TracerFailure(EngineFailure):
    """The external field line or particle tracer failed."""


class FormatCompilerFailure(EngineFailure):
    """The external binary format compiler failed."""


class OrbitSourceError(PlasmaGridError, RuntimeError):
    """Spacecraft orbit data could not be fetched or does not match the run."""


class ScratchIOError(PlasmaGridError, OSError):
    """Scratch or output files could not be written or read."""


class ConfigurationError(PlasmaGridError, ValueError):
    """Service configuration or simulation metadata is invalid."""


__all__ = [
    "CLIENT_FAULT",
    "SERVER_FAULT",
    "PlasmaGridError",
    "InputFormatError",
    "MissingField",
    "UnknownVariable",
    "RequestError",
    "RetrievalError",
    "EngineFailure",
    "TracerFailure",
    "FormatCompilerFailure",
    "ScratchIOError",
    "OrbitSourceError",
    "ConfigurationError",
]
