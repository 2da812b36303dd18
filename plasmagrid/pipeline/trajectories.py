"""Test particle trajectories through the external ion tracer.

The tracer is driven by a keyword configuration file that ends with the
start states of the particles, one per line::

    x y z ux uy uz <mass in proton masses> <charge in elementary charges>

It writes ``<config>_trace_0.m`` next to the configuration with one
``x y z parID`` row per step.  Every start point gets two IDs: odd ones are
traced forward in time, even ones backward, so points A, B, C traced
forward only come back as 1, 3, 5.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..constants import INTERPOLATION_LINEAR, PROTON_CHARGE, PROTON_MASS
from ..errors import InputFormatError, RequestError, TracerFailure
from ..io.pointset import FORMAT_VOTABLE, PointSet, PointSetReader
from ..schema import (
    IonTracerConfig,
    ParticleTrajectoryRequest,
    SimulationDomain,
    SimulationRun,
    StopRegion,
)
from ..scratch import ScratchSpace
from ..table import Table, format_value
from .interpolation import run_tool

logger = logging.getLogger(__name__)

PARTICLE_FIELDS = ("X", "Y", "Z", "Ux", "Uy", "Uz", "Mass", "Charge")
TIME_COLUMN = "Seconds"
PARTICLE_COLUMN = "Particle_no"

_SPLIT_RE = re.compile(r"[\s,]+")
_BOX_LIMITS = ("XMIN", "XMAX", "YMIN", "YMAX", "ZMIN", "ZMAX")


@dataclass
class ParticleSet:
    """Start states of identical test particles (SI units)."""

    positions: np.ndarray
    velocities: np.ndarray
    mass: float
    charge: float

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    @property
    def relative_mass(self) -> float:
        return self.mass / PROTON_MASS

    @property
    def relative_charge(self) -> float:
        return self.charge / PROTON_CHARGE


def particles_from(point_set: PointSet, reader: Optional[PointSetReader] = None) -> ParticleSet:
    """Collect positions, velocities, mass and charge from a VOTable point set.

    All particles must share one mass and one charge.
    """

    if point_set.source_format != FORMAT_VOTABLE:
        raise InputFormatError(
            "Particle start states must be a VOTable with fields " + ", ".join(PARTICLE_FIELDS)
        )
    reader = reader if reader is not None else PointSetReader()
    velocities = np.column_stack([reader.field_values(point_set, key) for key in ("Ux", "Uy", "Uz")])
    masses = reader.field_values(point_set, "Mass")
    charges = reader.field_values(point_set, "Charge")
    if len(point_set) == 0:
        raise InputFormatError("No particles in the input table")
    if not (np.all(masses == masses[0]) and np.all(charges == charges[0])):
        raise RequestError("Masses and charges must be same for all particles")
    if charges[0] == 0.0:
        raise RequestError("Particle charge must not be zero")
    return ParticleSet(
        positions=np.asarray(point_set.positions, dtype=float),
        velocities=velocities.reshape(-1, 3),
        mass=float(masses[0]),
        charge=float(charges[0]),
    )


def trajectory_step_size(run: SimulationRun, request: ParticleTrajectoryRequest, particles: ParticleSet) -> float:
    """Tracer step [s]: the run's time step scaled by mass over charge.

    Runs without a time step use the step size of the request.
    """

    if run.time_step_s is not None:
        return float(run.time_step_s) * particles.relative_mass / particles.relative_charge
    if request.step_size is not None:
        return float(request.step_size)
    raise RequestError("StepSize must be given for runs without a simulation time step")


def stop_region_for(request: ParticleTrajectoryRequest, domain: Optional[SimulationDomain]) -> StopRegion:
    """``xmin xmax ymin ymax zmin zmax`` of the request, else the run's valid box."""

    if request.stop_region is not None:
        return request.stop_region
    if domain is None:
        raise RequestError("StopCondition_Region must be given for runs without a simulation domain")
    low, high = domain.valid_min, domain.valid_max
    return (low[0], high[0], low[1], high[1], low[2], high[2])


def points_inside(positions: np.ndarray, region: Sequence[float]) -> np.ndarray:
    """Boolean mask of the positions strictly inside ``region``."""

    positions = np.atleast_2d(np.asarray(positions, dtype=float))
    lower = np.array(region[0::2], dtype=float)
    upper = np.array(region[1::2], dtype=float)
    return np.all((positions > lower) & (positions < upper), axis=1)


def render_config(
    snapshot_file: Path,
    particles: ParticleSet,
    request: ParticleTrajectoryRequest,
    step_size: float,
    region: Sequence[float],
) -> str:
    """Keyword configuration plus the start states inside ``region``."""

    inside = points_inside(particles.positions, region)
    if not inside.any():
        raise RequestError("All initial points are outside of the simulation box")
    mass_units = int(round(particles.relative_mass))
    charge_units = int(round(particles.relative_charge))
    lines = [
        f"HCF {snapshot_file} {mass_units} {charge_units}",
        "FORMATS matlab",
        "OUT_DIR /",
        "TRACEVARS parID",
        "BUNEMANVERSION U",
        f"DIRECTION {request.direction.lower()}",
        f"MAXSTEPS {request.max_steps}",
        f"STEPSIZE {format_value(step_size)}",
        f"INTPOLORDER {1 if request.interpolation_method == INTERPOLATION_LINEAR else 0}",
        "VERBOSE 0",
        "OVERWRITE 1",
        "ENDPOINTSONLY 0",
        f"PLANETARY_BOUNDARY {format_value(float(request.stop_radius))}",
    ]
    lines += [f"{name} {format_value(float(value))}" for name, value in zip(_BOX_LIMITS, region)]
    lines.append("EOC")
    lines.append("########### INITIAL POINTS SECTION ###########")
    for position, velocity in zip(particles.positions[inside], particles.velocities[inside]):
        state = " ".join(f"{value:.12e}" for value in (*position, *velocity))
        lines.append(f"{state} {mass_units} {charge_units}")
    skipped = len(particles) - int(inside.sum())
    if skipped:
        logger.info("Skipped %d start points outside the stop region", skipped)
    return "\n".join(lines) + "\n"


def parse_trajectory_output(text: str, step_size: float) -> Table:
    """Turn ``x y z parID`` rows into ``x y z Seconds Particle_no`` rows.

    Forward and backward halves of a particle share one particle number;
    the start point, written at the head of both halves, is kept once.
    """

    points: Dict[int, List[List[float]]] = {}
    previous_id = 0
    elapsed = 0.0
    for line in text.splitlines():
        tokens = [token for token in _SPLIT_RE.split(line.strip()) if token]
        if len(tokens) < 4:
            continue
        try:
            x, y, z = (float(token) for token in tokens[:3])
            parid = int(float(tokens[3]))
        except ValueError:
            # matlab headers and array brackets
            continue
        particle = (parid + 1) // 2
        backward = parid % 2 == 0
        if parid == previous_id:
            elapsed += -step_size if backward else step_size
        else:
            elapsed = 0.0
            previous_id = parid
            if backward and particle in points:
                continue
        points.setdefault(particle, []).append([x, y, z, elapsed])

    rows = [[*point, particle] for particle, steps in points.items() for point in steps]
    table = Table.from_rows(["x", "y", "z", TIME_COLUMN, PARTICLE_COLUMN], rows)
    table.frame[PARTICLE_COLUMN] = table.frame[PARTICLE_COLUMN].astype("int64")
    return table


class IonTracer:
    """Run the external ion tracer for one set of test particles."""

    def __init__(self, config: Optional[IonTracerConfig] = None) -> None:
        self.config = config if config is not None else IonTracerConfig()

    def trace(
        self,
        particles: ParticleSet,
        snapshot_file: Path,
        request: ParticleTrajectoryRequest,
        step_size: float,
        region: Sequence[float],
        scratch: ScratchSpace,
    ) -> Table:
        if not Path(snapshot_file).is_file():
            raise TracerFailure(f"Error in reading local data file: {Path(snapshot_file).name}")
        config_path = scratch.new_path(".cfg")
        try:
            config_path.write_text(render_config(snapshot_file, particles, request, step_size, region), encoding="utf-8")
        except OSError as exc:
            raise TracerFailure(f"Could not write particle tracer configuration: {exc}") from exc
        trace_file = scratch.track(Path(f"{config_path}_trace_0.m"))
        scratch.track(Path(f"{config_path}_trace_0.cfg"))

        run_tool(
            [*self.config.command, str(config_path)],
            timeout=self.config.timeout_s,
            error=TracerFailure,
            label="particle tracer",
            status_messages={self.config.outside_status: "All initial points are outside of the simulation box"},
        )
        if not trace_file.is_file():
            raise TracerFailure(f"particle tracer did not produce {trace_file.name}")
        table = parse_trajectory_output(trace_file.read_text(encoding="utf-8"), step_size)
        logger.info(
            "Traced %d trajectory points for %d particles (%s)",
            len(table),
            int(np.unique(table.frame[PARTICLE_COLUMN]).size),
            request.direction,
        )
        return table


__all__ = [
    "PARTICLE_FIELDS",
    "TIME_COLUMN",
    "PARTICLE_COLUMN",
    "ParticleSet",
    "particles_from",
    "trajectory_step_size",
    "stop_region_for",
    "points_inside",
    "render_config",
    "parse_trajectory_output",
    "IonTracer",
]
