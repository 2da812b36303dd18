"""Configuration, simulation metadata and request schemas.

This module defines Pydantic models that mirror the YAML files read by
:mod:`plasmagrid.config_utils` (service configuration and simulation run
metadata) as well as one explicit request model per service method.
Requests are validated once at the boundary; the pipeline only ever sees
fully-typed values.
"""
from __future__ import annotations

import datetime as dt
import shlex
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ConfigurationError

Vector3 = Tuple[float, float, float]

InterpolationMethod = Literal["Linear", "NearestGridPoint"]
OutputFormat = Literal["VOTable", "netCDF", "ASCII"]
Direction = Literal["Forward", "Backward", "Both"]
StopRegion = Tuple[float, float, float, float, float, float]

# spacecraft name -> ephemeris parameter id of the orbit service
DEFAULT_SPACECRAFT: Dict[str, str] = {
    "MESSENGER": "mes_xyz_orbmso",
    "VEX": "vex_xyz",
    "CLUSTER1": "c1_xyz",
    "CLUSTER2": "c2_xyz",
    "CLUSTER3": "c3_xyz",
    "CLUSTER4": "c4_xyz",
    "GEOTAIL": "gtl_xyz",
    "IMP-8": "imp8_xyz",
    "POLAR": "plr_xyz",
    "MEX": "mex_xyz",
    "MGS": "xyz_mgs_mso",
    "MAVEN": "mav_xyz_mso",
}


def _split_command(value: Any) -> Any:
    if isinstance(value, str):
        return shlex.split(value)
    return value


def normalise_resource_id(resource_id: str) -> str:
    """Rewrite legacy ``impex://`` identifiers to the ``spase://`` form."""

    text = resource_id.strip()
    if text.startswith("spase"):
        return text
    if "HWA" in text:
        return text.replace("impex://FMI/HWA", "spase://IMPEX/NumericalOutput/FMI")
    if "NumericalOutput" in text:
        return text.replace("impex://FMI/NumericalOutput", "spase://IMPEX/NumericalOutput/FMI")
    return text


# ---------------------------------------------------------------------------
# Service configuration
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """External interpolation engine invocation."""

    command: List[str] = Field(default_factory=lambda: ["hcintpol"], description="Engine executable and fixed leading arguments")
    variables_flag: str = Field("-v", description="Flag introducing the comma separated symbol list")
    nearest_flag: str = Field("-z", description="Flag selecting nearest grid point interpolation")
    timeout_s: Optional[float] = Field(None, gt=0.0, description="Per-invocation timeout [s]")
    batch_consecutive: bool = Field(
        False,
        description="Send consecutive samples sharing a snapshot in one invocation (dynamic runs)",
    )

    @field_validator("command", mode="before")
    @classmethod
    def _split_command_line(cls, value: Any) -> Any:
        return _split_command(value)


class TracerConfig(BaseModel):
    """External field line tracer invocation."""

    command: List[str] = Field(default_factory=lambda: ["ft"])
    backward_flag: str = "-b"
    timeout_s: Optional[float] = Field(None, gt=0.0)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command_line(cls, value: Any) -> Any:
        return _split_command(value)


class IonTracerConfig(BaseModel):
    """External test particle tracer invocation."""

    command: List[str] = Field(default_factory=lambda: ["iontracer"])
    timeout_s: Optional[float] = Field(None, gt=0.0)
    outside_status: int = Field(255, description="Exit status reporting that every start point is outside the box")

    @field_validator("command", mode="before")
    @classmethod
    def _split_command_line(cls, value: Any) -> Any:
        return _split_command(value)


class OrbitSourceConfig(BaseModel):
    """Remote ephemeris service used by the spacecraft method."""

    url_template: str = Field(
        "http://amda.irap.omp.eu/php/rest/getParameter.php?startTime={start}&stopTime={stop}"
        "&parameterID={parameter_id}&sampling={sampling}&outputFormat=ASCII",
        description="Orbit request URL; {start}, {stop}, {sampling} and {parameter_id} are filled in",
    )
    spacecraft: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_SPACECRAFT),
        description="Spacecraft name -> ephemeris parameter id",
    )


class FormatCompilerConfig(BaseModel):
    """Compiler turning staged CDL text into binary netCDF."""

    command: List[str] = Field(default_factory=lambda: ["ncgen"])
    timeout_s: Optional[float] = Field(None, gt=0.0)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command_line(cls, value: Any) -> Any:
        return _split_command(value)


class ScratchConfig(BaseModel):
    """Per-request scratch files."""

    dir: Path = Field(Path("/tmp/plasmagrid"), description="Directory for intermediate files")
    prefix: str = Field("hwa_", description="File name prefix of every generated file")
    suffix_length: int = Field(10, ge=4, le=64, description="Length of the random file name suffix")
    max_age_s: float = Field(3600.0, gt=0.0, description="Scratch files older than this are purged")


class OutputConfig(BaseModel):
    """Where finished result files land and how they are published."""

    data_dir: Path = Field(Path("/tmp/plasmagrid/data"), description="Directory served to callers")
    url_base: str = Field("", description="URL prefix under which data_dir is published")
    max_age_s: Optional[float] = Field(None, gt=0.0, description="Result files older than this are purged")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    quiet: bool = False


class ServiceConfig(BaseModel):
    """Top-level service configuration."""

    engine: EngineConfig = Field(default_factory=EngineConfig)
    tracer: TracerConfig = Field(default_factory=TracerConfig)
    iontracer: IonTracerConfig = Field(default_factory=IonTracerConfig)
    format_compiler: FormatCompilerConfig = Field(default_factory=FormatCompilerConfig)
    scratch: ScratchConfig = Field(default_factory=ScratchConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    orbits: OrbitSourceConfig = Field(default_factory=OrbitSourceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Simulation run metadata
# ---------------------------------------------------------------------------


class InnerBoundary(BaseModel):
    """Spherical region around the planet where results are not valid."""

    radius: float = Field(..., gt=0.0, description="Radius of the excluded region")
    units: str = Field("m", description="Unit of ``radius``")


class TemporalCoverage(BaseModel):
    """Time-varying runs: snapshot times and snapshot file layout."""

    time_index: Path = Field(..., description="Text file with one snapshot time (unix seconds) per line")
    snapshot_dir: Path = Field(..., description="Root directory of the snapshot files")
    snapshot_template: str = Field(
        "{date}/mstate{snapshot_id}.hc",
        description="Snapshot path relative to snapshot_dir; {date} is YYYYMMDD, {snapshot_id} YYYYMMDD_HHMMSS",
    )


class SimulationDomain(BaseModel):
    """Grid and validity box of the simulation."""

    cell_size: Vector3 = Field(..., description="Basic grid cell size [m]")
    grid_structure: str = Field("Constant", description="'Constant' or '<kind> <refinement levels>'")
    valid_min: Vector3 = Field(..., description="Lower corner of the valid box [m]")
    valid_max: Vector3 = Field(..., description="Upper corner of the valid box [m]")

    @model_validator(mode="after")
    def _check_box(self) -> "SimulationDomain":
        for low, high in zip(self.valid_min, self.valid_max):
            if low > high:
                raise ConfigurationError(f"domain valid_min {self.valid_min} exceeds valid_max {self.valid_max}")
        if min(self.cell_size) <= 0.0:
            raise ConfigurationError("domain cell_size must be positive")
        return self


class EnergyBand(BaseModel):
    name: str
    low: float
    high: float


class EnergyChannels(BaseModel):
    """Energy channels of spectral outputs."""

    units: str = "eV"
    low: float
    high: float
    bands: List[EnergyBand] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_bands(self) -> "EnergyChannels":
        if not self.bands:
            raise ConfigurationError("energy_channels.bands must not be empty")
        return self


class SimulationRun(BaseModel):
    """Metadata of one numerical output of a simulation run."""

    title: str = Field(..., description="Simulation model title, e.g. 'GUMICS'")
    model_resource_id: str = ""
    run_resource_id: str = ""
    resource_id: str = Field(..., description="NumericalOutput ResourceID")
    output_description: str = ""
    directory_name: str = Field("", description="Run label used in result table names")
    planet_name: str = "Earth"
    planet_radius: float = Field(6371.0, gt=0.0)
    planet_radius_units: str = "km"
    coordinate_system: str = "GSE"
    time_step_s: Optional[float] = Field(None, gt=0.0, description="Simulation time step [s]")
    variables: Dict[str, str] = Field(
        default_factory=dict,
        description="Parameter keys provided by the output, mapped to their descriptions",
    )
    snapshot_file: Optional[Path] = Field(None, description="Snapshot file of a static run")
    inner_boundary: Optional[InnerBoundary] = None
    temporal: Optional[TemporalCoverage] = None
    domain: Optional[SimulationDomain] = None
    energy_channels: Optional[EnergyChannels] = None

    @field_validator("resource_id", "run_resource_id")
    @classmethod
    def _normalise_ids(cls, value: str) -> str:
        return normalise_resource_id(value) if value else value

    @model_validator(mode="after")
    def _check_source(self) -> "SimulationRun":
        if self.snapshot_file is None and self.temporal is None:
            raise ConfigurationError(
                f"simulation run {self.resource_id} needs either snapshot_file or temporal"
            )
        return self

    @property
    def is_dynamic(self) -> bool:
        return self.temporal is not None

    @property
    def table_name(self) -> str:
        label = self.directory_name or self.resource_id.rstrip("/").split("/")[-1]
        return f"{self.planet_name}_{label}"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RequestBase(BaseModel):
    """Fields shared by every service method."""

    resource_id: str
    variables: List[str] = Field(default_factory=list, description="Parameter keys; empty means all")

    @field_validator("resource_id")
    @classmethod
    def _normalise_id(cls, value: str) -> str:
        return normalise_resource_id(value)

    @field_validator("variables", mode="before")
    @classmethod
    def _split_variables(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [item for item in (part.strip() for part in value.split(",")) if item]
        return value


class DataPointValueRequest(RequestBase):
    method: Literal["getDataPointValue"] = "getDataPointValue"
    url_xyz: str
    interpolation_method: InterpolationMethod = "Linear"
    output_format: OutputFormat = "VOTable"
    position_coefficient: float = Field(1.0, gt=0.0, description="Multiplier applied to X, Y and Z")


class SurfaceRequest(RequestBase):
    method: Literal["getSurface"] = "getSurface"
    plane_normal: Vector3
    plane_point: Vector3
    resolution: Optional[float] = Field(None, gt=0.0)
    interpolation_method: InterpolationMethod = "Linear"
    output_format: OutputFormat = "VOTable"


class FieldLineRequest(RequestBase):
    method: Literal["getFieldLine"] = "getFieldLine"
    url_xyz: str
    direction: Direction = "Forward"
    step_size: Optional[float] = Field(None, gt=0.0)
    max_steps: int = Field(100, gt=0)
    stop_radius: Optional[float] = Field(None, gt=0.0)
    stop_region: Optional[StopRegion] = None
    output_format: Literal["VOTable"] = "VOTable"


class SpectraRequest(RequestBase):
    method: Literal["getDataPointSpectra"] = "getDataPointSpectra"
    url_xyz: str
    energy_channels: List[str] = Field(default_factory=list, description="Band names; empty means all")
    interpolation_method: InterpolationMethod = "Linear"
    output_format: Literal["VOTable"] = "VOTable"


class ParticleTrajectoryRequest(RequestBase):
    method: Literal["getParticleTrajectory"] = "getParticleTrajectory"
    url_xyz: str
    direction: Direction = "Forward"
    step_size: Optional[float] = Field(None, gt=0.0, description="Tracer step [s] for runs without a time step")
    max_steps: int = Field(100, gt=0)
    stop_radius: float = Field(0.0, ge=0.0, description="Planetary boundary radius of the tracer")
    stop_region: Optional[StopRegion] = None
    interpolation_method: InterpolationMethod = "Linear"
    output_format: Literal["VOTable"] = "VOTable"


class SpacecraftRequest(RequestBase):
    """Interpolate along a spacecraft orbit fetched from the ephemeris service."""

    method: Literal["getDataPointValueSpacecraft"] = "getDataPointValueSpacecraft"
    spacecraft_name: str
    start_time: dt.datetime
    stop_time: dt.datetime
    sampling: dt.timedelta = Field(..., description="ISO 8601 duration or seconds")
    interpolation_method: InterpolationMethod = "Linear"
    output_format: OutputFormat = "VOTable"

    @field_validator("spacecraft_name")
    @classmethod
    def _normalise_name(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("start_time", "stop_time")
    @classmethod
    def _as_utc(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    @model_validator(mode="after")
    def _check_interval(self) -> "SpacecraftRequest":
        if self.sampling.total_seconds() <= 0.0:
            raise ValueError("Sampling must be a positive duration")
        if self.stop_time <= self.start_time:
            raise ValueError("StopTime must be later than StartTime")
        return self


ServiceRequest = Annotated[
    Union[
        DataPointValueRequest,
        SurfaceRequest,
        FieldLineRequest,
        SpectraRequest,
        ParticleTrajectoryRequest,
        SpacecraftRequest,
    ],
    Field(discriminator="method"),
]


class RequestEnvelope(BaseModel):
    """Wrapper used to validate a request of any method from plain data."""

    request: ServiceRequest


__all__ = [
    "Vector3",
    "InterpolationMethod",
    "OutputFormat",
    "Direction",
    "StopRegion",
    "DEFAULT_SPACECRAFT",
    "normalise_resource_id",
    "EngineConfig",
    "TracerConfig",
    "IonTracerConfig",
    "OrbitSourceConfig",
    "FormatCompilerConfig",
    "ScratchConfig",
    "OutputConfig",
    "LoggingConfig",
    "ServiceConfig",
    "InnerBoundary",
    "TemporalCoverage",
    "SimulationDomain",
    "EnergyBand",
    "EnergyChannels",
    "SimulationRun",
    "RequestBase",
    "DataPointValueRequest",
    "SurfaceRequest",
    "FieldLineRequest",
    "SpectraRequest",
    "ParticleTrajectoryRequest",
    "SpacecraftRequest",
    "ServiceRequest",
    "RequestEnvelope",
]
