"""Service entry points.

The four pipeline handlers (:meth:`InterpolationService.interpolate_static`,
:meth:`~InterpolationService.interpolate_dynamic`,
:meth:`~InterpolationService.mask_boundary` and
:meth:`~InterpolationService.assemble_output`) are composed by the
request-level methods, one per service method.  Every request-level method
returns the URL of the finished file or raises a
:class:`~plasmagrid.errors.PlasmaGridError`; :func:`to_fault` turns any
exception into the ``(category, message)`` pair reported to callers.
"""
from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from .errors import (
    SERVER_FAULT,
    EngineFailure,
    PlasmaGridError,
    RequestError,
    UnknownVariable,
)
from .io.orbit import fetch_orbit
from .io.pointset import PointSet, PointSetReader
from .io.retrieval import fetch_url
from .io.writer import OutputAssembler, OutputContext
from .names import DEFAULT_TRANSLATOR, NameTranslator
from .pipeline.boundary import BoundaryMasker, inner_radius_m
from .pipeline.interpolation import InterpolationInvoker
from .pipeline.spectra import (
    SPECTRAL_SYMBOL,
    channels_of,
    energy_range_param,
    restrict_channels,
    select_bands,
)
from .pipeline.surface import plane_mesh
from .pipeline.temporal import RunTimeIndex, SnapshotResolver, TemporalRunSelector
from .pipeline.tracing import FieldLineTracer, default_step_size, field_kind, line_number_last
from .pipeline.trajectories import (
    PARTICLE_FIELDS,
    IonTracer,
    particles_from,
    stop_region_for,
    trajectory_step_size,
)
from .schema import (
    DataPointValueRequest,
    FieldLineRequest,
    ParticleTrajectoryRequest,
    ServiceConfig,
    SimulationRun,
    SpacecraftRequest,
    SpectraRequest,
    SurfaceRequest,
)
from .scratch import ScratchSpace, purge_stale
from .table import Table

logger = logging.getLogger(__name__)

_SNAPSHOT_SUFFIX_RE = re.compile(r"(\d{8}_\d{6})/?$")

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class Fault:
    """Error report returned to callers."""

    category: str
    message: str


def to_fault(exc: BaseException) -> Fault:
    if isinstance(exc, PlasmaGridError):
        return Fault(exc.fault, str(exc))
    return Fault(SERVER_FAULT, f"Internal error: {exc}")


def _logged(method_name: str) -> Callable[[F], F]:
    """Log a request-level method's parameters, result and failures."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: "InterpolationService", request: Any, run: SimulationRun) -> str:
            logger.info("%s called with %s", method_name, request.model_dump(mode="json", exclude_none=True))
            try:
                url = func(self, request, run)
            except PlasmaGridError as exc:
                logger.error("%s failed (%s): %s", method_name, exc.fault, exc)
                raise
            logger.info("%s returned %s", method_name, url)
            return url

        return wrapper  # type: ignore[return-value]

    return decorator


class InterpolationService:
    """Compose reader, engine, selector, masker and assembler per request."""

    def __init__(self, config: Optional[ServiceConfig] = None, translator: Optional[NameTranslator] = None) -> None:
        self.config = config if config is not None else ServiceConfig()
        self.translator = translator if translator is not None else DEFAULT_TRANSLATOR
        self.catalog = self.translator.catalog
        self.reader = PointSetReader(self.catalog)
        self.invoker = InterpolationInvoker(self.config.engine)
        self.masker = BoundaryMasker()
        self.tracer = FieldLineTracer(self.config.tracer)
        self.ion_tracer = IonTracer(self.config.iontracer)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def is_alive(self) -> bool:
        return True

    def housekeeping(self) -> None:
        """Purge expired scratch and result files."""

        scratch = self.config.scratch
        purge_stale(scratch.dir, scratch.prefix, scratch.max_age_s)
        if self.config.output.max_age_s is not None:
            purge_stale(self.config.output.data_dir, scratch.prefix, self.config.output.max_age_s)

    def public_url(self, path: Path) -> str:
        base = self.config.output.url_base
        if not base:
            return str(path)
        return f"{base.rstrip('/')}/{Path(path).name}"

    def _is_scalar_key(self, key: str) -> bool:
        try:
            return self.translator.symbol(key) != SPECTRAL_SYMBOL
        except UnknownVariable:
            logger.debug("Skipping run variable %s without an engine symbol", key)
            return False

    def resolve_variables(self, run: SimulationRun, keys: Sequence[str]) -> List[str]:
        """Validate parameter keys against the run; empty means all declared keys.

        Returned keys use the run's spelling, in caller order.
        """

        declared = {key.lower(): key for key in run.variables}
        if not keys:
            resolved = [key for key in run.variables if self._is_scalar_key(key)]
            if not resolved:
                raise RequestError(f"Simulation run {run.resource_id} declares no variables")
            return resolved
        resolved = []
        for key in keys:
            self.translator.symbol(key)
            name = declared.get(key.strip().lower())
            if name is None:
                raise UnknownVariable(key, "not provided by this simulation run")
            resolved.append(name)
        return resolved

    def snapshot_for(self, run: SimulationRun, resource_id: str) -> Path:
        """Snapshot file for methods that work on a single snapshot.

        Dynamic runs select the snapshot by the ``YYYYMMDD_HHMMSS`` suffix of
        the requested ResourceID.
        """

        if run.temporal is None:
            return Path(run.snapshot_file)  # type: ignore[arg-type]
        match = _SNAPSHOT_SUFFIX_RE.search(resource_id)
        if match is None:
            raise RequestError(
                "In dynamical runs the NumericalOutput ResourceID must end with a datetime extension YYYYMMDD_HHMMSS"
            )
        return SnapshotResolver.from_coverage(run.temporal).locate(match.group(1))

    # ------------------------------------------------------------------
    # pipeline handlers
    # ------------------------------------------------------------------

    def interpolate_static(
        self,
        point_set: PointSet,
        snapshot_file: Path,
        symbols: Sequence[str],
        method: str,
        scratch: ScratchSpace,
    ) -> Table:
        """Interpolate every sample in one snapshot."""

        sample_file = point_set.write_engine_input(scratch.new_path(".txt"))
        table = self.invoker.invoke(sample_file, snapshot_file, symbols, method)
        if len(table) != len(point_set):
            raise EngineFailure(f"engine returned {len(table)} rows for {len(point_set)} samples")
        return table

    def interpolate_dynamic(
        self,
        point_set: PointSet,
        run: SimulationRun,
        symbols: Sequence[str],
        method: str,
        scratch: ScratchSpace,
    ) -> Table:
        """Interpolate every sample in the snapshot nearest to its time."""

        if run.temporal is None:
            raise RequestError(f"Simulation run {run.resource_id} is not time dependent")
        run_index = RunTimeIndex.from_file(run.temporal.time_index)
        resolver = SnapshotResolver.from_coverage(run.temporal)
        selector = TemporalRunSelector(
            self.invoker,
            lambda: scratch.new_path(".txt"),
            batch_consecutive=self.config.engine.batch_consecutive,
        )
        return selector.select(point_set, run_index, resolver, symbols, method)

    def mask_boundary(
        self,
        table: Table,
        run: SimulationRun,
        remove_rows: bool = False,
        skip_leading_columns: int = 0,
    ) -> Table:
        return self.masker.mask(table, inner_radius_m(run.inner_boundary, self.catalog), remove_rows, skip_leading_columns)

    def assemble_output(
        self,
        table: Table,
        point_set: Optional[PointSet],
        output_format: str,
        context: OutputContext,
        scratch: ScratchSpace,
    ) -> Path:
        assembler = OutputAssembler(
            scratch,
            self.config.output,
            self.config.format_compiler,
            translator=self.translator,
        )
        return assembler.assemble(table, point_set, output_format, context)

    # ------------------------------------------------------------------
    # request-level methods
    # ------------------------------------------------------------------

    def _point_values(
        self,
        point_set: PointSet,
        request: Any,
        run: SimulationRun,
        keys: Sequence[str],
        method_name: str,
        scratch: ScratchSpace,
    ) -> Path:
        """Interpolate, mask and assemble values at the samples of ``point_set``."""

        symbols = self.translator.to_canonical_list(keys)
        if run.is_dynamic:
            table = self.interpolate_dynamic(point_set, run, symbols, request.interpolation_method, scratch)
        else:
            snapshot = self.snapshot_for(run, request.resource_id)
            table = self.interpolate_static(point_set, snapshot, symbols, request.interpolation_method, scratch)
        self.mask_boundary(table, run)
        context = OutputContext(
            run=run,
            variables=list(keys),
            description_header=f"Interpolated values of a {run.title} simulation run computed by {method_name}",
            request=request,
            interpolation_method=request.interpolation_method,
        )
        return self.assemble_output(table, point_set, request.output_format, context, scratch)

    @_logged("getDataPointValue")
    def get_data_point_value(self, request: DataPointValueRequest, run: SimulationRun) -> str:
        self.housekeeping()
        keys = self.resolve_variables(run, request.variables)
        with ScratchSpace(self.config.scratch) as scratch:
            local = fetch_url(request.url_xyz, scratch)
            point_set = self.reader.read(local, position_coefficient=request.position_coefficient)
            path = self._point_values(point_set, request, run, keys, "getDataPointValue", scratch)
        return self.public_url(path)

    @_logged("getDataPointValueSpacecraft")
    def get_data_point_value_spacecraft(self, request: SpacecraftRequest, run: SimulationRun) -> str:
        self.housekeeping()
        keys = self.resolve_variables(run, request.variables)
        with ScratchSpace(self.config.scratch) as scratch:
            local = fetch_orbit(request, run, self.config.orbits, scratch, self.catalog)
            point_set = self.reader.read(local)
            path = self._point_values(point_set, request, run, keys, "getDataPointValueSpacecraft", scratch)
        return self.public_url(path)

    @_logged("getSurface")
    def get_surface(self, request: SurfaceRequest, run: SimulationRun) -> str:
        self.housekeeping()
        if run.domain is None:
            raise RequestError(f"Simulation run {run.resource_id} has no simulation domain")
        keys = self.resolve_variables(run, request.variables)
        symbols = self.translator.to_canonical_list(keys)
        positions, resolution = plane_mesh(run.domain, request.plane_normal, request.plane_point, request.resolution)
        point_set = PointSet.from_positions(positions)
        with ScratchSpace(self.config.scratch) as scratch:
            snapshot = self.snapshot_for(run, request.resource_id)
            table = self.interpolate_static(point_set, snapshot, symbols, request.interpolation_method, scratch)
            self.mask_boundary(table, run)
            context = OutputContext(
                run=run,
                variables=keys,
                description_header=f"Plane surface values of a {run.title} simulation run computed by getSurface",
                request=request,
                interpolation_method=request.interpolation_method,
                extra_description={"Resolution": f"{resolution:g} m"},
            )
            path = self.assemble_output(table, point_set, request.output_format, context, scratch)
        return self.public_url(path)

    @_logged("getFieldLine")
    def get_field_line(self, request: FieldLineRequest, run: SimulationRun) -> str:
        self.housekeeping()
        keys = self.resolve_variables(run, request.variables)
        kind = field_kind(keys, self.translator)
        step_size = request.step_size if request.step_size is not None else default_step_size(run.domain)
        with ScratchSpace(self.config.scratch) as scratch:
            local = fetch_url(request.url_xyz, scratch)
            point_set = self.reader.read(local)
            start_file = point_set.write_engine_input(scratch.new_path(".txt"))
            snapshot = self.snapshot_for(run, request.resource_id)
            table = self.tracer.trace(start_file, snapshot, kind, request, step_size)
            self.mask_boundary(table, run, remove_rows=True, skip_leading_columns=1)
            context = OutputContext(
                run=run,
                variables=keys,
                description_header=f"Field lines for a {run.title} simulation run computed by getFieldLine",
                request=request,
                extra_description={"StepSize": f"{step_size:g}"},
            )
            path = self.assemble_output(line_number_last(table), None, request.output_format, context, scratch)
        return self.public_url(path)

    @_logged("getDataPointSpectra")
    def get_data_point_spectra(self, request: SpectraRequest, run: SimulationRun) -> str:
        self.housekeeping()
        channels = channels_of(run)
        indices = select_bands(channels, request.energy_channels)
        with ScratchSpace(self.config.scratch) as scratch:
            local = fetch_url(request.url_xyz, scratch)
            point_set = self.reader.read(local)
            snapshot = self.snapshot_for(run, request.resource_id)
            table = self.interpolate_static(point_set, snapshot, [SPECTRAL_SYMBOL], request.interpolation_method, scratch)
            self.mask_boundary(table, run)
            table = restrict_channels(table, channels, indices)
            context = OutputContext(
                run=run,
                variables=[],
                description_header=f"Particle spectra of a {run.title} simulation run computed by getDataPointSpectra",
                request=request,
                interpolation_method=request.interpolation_method,
                params=[energy_range_param(channels, indices)],
            )
            path = self.assemble_output(table, point_set, request.output_format, context, scratch)
        return self.public_url(path)

    @_logged("getParticleTrajectory")
    def get_particle_trajectory(self, request: ParticleTrajectoryRequest, run: SimulationRun) -> str:
        self.housekeeping()
        region = stop_region_for(request, run.domain)
        with ScratchSpace(self.config.scratch) as scratch:
            local = fetch_url(request.url_xyz, scratch)
            point_set = self.reader.read(local, required_fields=PARTICLE_FIELDS)
            particles = particles_from(point_set, self.reader)
            step_size = trajectory_step_size(run, request, particles)
            snapshot = self.snapshot_for(run, request.resource_id)
            table = self.ion_tracer.trace(particles, snapshot, request, step_size, region, scratch)
            self.mask_boundary(table, run, remove_rows=True)
            context = OutputContext(
                run=run,
                variables=[],
                description_header=f"Particle trajectories for a {run.title} simulation run computed by getParticleTrajectory",
                request=request,
                interpolation_method=request.interpolation_method,
                extra_description={"StepSize": f"{step_size:g} s"},
            )
            path = self.assemble_output(table, None, request.output_format, context, scratch)
        return self.public_url(path)

    def handle(self, request: Any, run: SimulationRun) -> str:
        """Dispatch a validated request model to its method."""

        handlers = {
            "getDataPointValue": self.get_data_point_value,
            "getSurface": self.get_surface,
            "getFieldLine": self.get_field_line,
            "getDataPointSpectra": self.get_data_point_spectra,
            "getParticleTrajectory": self.get_particle_trajectory,
            "getDataPointValueSpacecraft": self.get_data_point_value_spacecraft,
        }
        try:
            handler = handlers[request.method]
        except (AttributeError, KeyError):
            raise RequestError(f"Method not implemented: {getattr(request, 'method', request)!r}") from None
        return handler(request, run)


__all__ = ["Fault", "to_fault", "InterpolationService"]
