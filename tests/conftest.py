from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from plasmagrid.schema import (  # noqa: E402
    EngineConfig,
    EnergyBand,
    EnergyChannels,
    FormatCompilerConfig,
    InnerBoundary,
    IonTracerConfig,
    OutputConfig,
    ScratchConfig,
    ServiceConfig,
    SimulationDomain,
    SimulationRun,
    TemporalCoverage,
    TracerConfig,
)

# 2010-01-01T00:00:00Z
T0 = 1262304000.0

# Stand-in for the interpolation engine.  The snapshot file is JSON:
#   values   symbol -> constant value (default: "default", else 1.0)
#   channels number of Ebin columns returned for the Ebin0 symbol
#   reverse  write the symbol columns in reverse order
#   comment  extra annotation line after the header
#   fail     exit non-zero
# Every invocation appends "<rows> <method> <symbols> <first x>" to <snapshot>.calls.
FAKE_ENGINE = r'''
import json
import sys
from pathlib import Path

args = sys.argv[1:]
symbols = []
nearest = False
positional = []
i = 0
while i < len(args):
    if args[i] == "-v":
        symbols = args[i + 1].split(",")
        i += 2
        continue
    if args[i] == "-z":
        nearest = True
        i += 1
        continue
    positional.append(args[i])
    i += 1
snapshot = Path(positional[-1])
contents = json.loads(snapshot.read_text())
if contents.get("fail"):
    sys.stderr.write("engine exploded\n")
    sys.exit(3)
rows = [line.split() for line in sys.stdin if line.strip()]
with open(str(snapshot) + ".calls", "a") as fh:
    first = rows[0][0] if rows else "-"
    fh.write(f"{len(rows)} {'nearest' if nearest else 'linear'} {','.join(symbols)} {first}\n")
values = contents.get("values", {})
default = contents.get("default", 1.0)
columns = []
for symbol in symbols:
    if symbol == "Ebin0":
        columns.extend(f"Ebin{k}" for k in range(contents.get("channels", 1)))
    else:
        columns.append(symbol)
if contents.get("reverse"):
    columns = columns[::-1]
print("# x y z " + " ".join(columns))
if contents.get("comment"):
    print("% " + contents["comment"])
for row in rows:
    x, y, z = (float(v) for v in row[:3])
    cells = [x, y, z] + [values.get(name, default) for name in columns]
    print(" ".join(repr(float(c)) for c in cells))
'''

# Stand-in for the field line tracer: every start point gives `steps` points
# along +x (or -x with -b) with field (1, 2, 2).
FAKE_TRACER = r'''
import json
import sys
from pathlib import Path

args = sys.argv[1:]
backward = "-b" in args
step = float(args[args.index("-ss") + 1])
max_steps = int(args[args.index("-ms") + 1])
start = Path(args[args.index("-i") + 1])
snapshot = Path(args[args.index("-i") - 1])
contents = json.loads(snapshot.read_text())
if contents.get("fail"):
    sys.exit(4)
sign = -1.0 if backward else 1.0
steps = min(max_steps, contents.get("steps", 3))
print("# field line trace")
for number, line in enumerate((l for l in start.read_text().splitlines() if l.strip()), start=1):
    x, y, z = (float(v) for v in line.split()[:3])
    for k in range(steps):
        print(number, x + sign * k * step, y, z, 1.0, 2.0, 2.0)
'''

# Stand-in for the particle tracer.  Reads the keyword configuration named on
# the command line, copies it to <snapshot>.iontracer.cfg and writes
# <config>_trace_0.m with `steps` points per particle (id 2i+1 forward along
# +ux, id 2i+2 backward).  "outside" in the snapshot exits with 255.
FAKE_IONTRACER = r'''
import json
import shutil
import sys
from pathlib import Path

config = Path(sys.argv[-1])
keys = {}
points = []
in_points = False
for line in config.read_text().splitlines():
    if in_points:
        if line.strip():
            points.append([float(v) for v in line.split()[:6]])
        continue
    if line.startswith("#"):
        in_points = True
        continue
    name, _, value = line.partition(" ")
    keys[name] = value
snapshot = Path(keys["HCF"].split()[0])
contents = json.loads(snapshot.read_text())
shutil.copyfile(config, str(snapshot) + ".iontracer.cfg")
if contents.get("outside"):
    sys.exit(255)
if contents.get("fail"):
    sys.exit(5)
step = float(keys["STEPSIZE"])
steps = min(int(keys["MAXSTEPS"]), contents.get("steps", 3))
direction = keys["DIRECTION"]
rows = []
for sign, offset, wanted in ((1.0, 1, ("forward", "both")), (-1.0, 2, ("backward", "both"))):
    if direction not in wanted:
        continue
    for index, (x, y, z, ux, uy, uz) in enumerate(points):
        for k in range(steps):
            t = sign * k * step
            rows.append((x + ux * t, y + uy * t, z + uz * t, 2 * index + offset))
Path(str(config) + "_trace_0.cfg").write_text(config.read_text())
with open(str(config) + "_trace_0.m", "w") as fh:
    fh.write("% x y z parID\ntrace = [\n")
    for x, y, z, parid in rows:
        fh.write(f"{x!r} {y!r} {z!r} {parid}\n")
    fh.write("];\n")
'''

# Stand-in for ncgen: "-o out.nc in.cdl" copies the CDL text.
FAKE_NCGEN = r'''
import shutil
import sys

args = sys.argv[1:]
shutil.copyfile(args[-1], args[args.index("-o") + 1])
'''


@dataclass
class FakeTools:
    engine: List[str]
    tracer: List[str]
    iontracer: List[str]
    ncgen: List[str]


def _script(directory: Path, name: str, text: str) -> List[str]:
    path = directory / name
    path.write_text(text.lstrip(), encoding="utf-8")
    return [sys.executable, str(path)]


def _read_calls(snapshot: Path) -> List[List[str]]:
    calls = Path(str(snapshot) + ".calls")
    if not calls.exists():
        return []
    return [line.split() for line in calls.read_text().splitlines() if line.strip()]


@pytest.fixture
def engine_calls() -> Callable[[Path], List[List[str]]]:
    """Invocations recorded by the fake engine for a snapshot file."""

    return _read_calls


@pytest.fixture
def fake_tools(tmp_path: Path) -> FakeTools:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return FakeTools(
        engine=_script(bin_dir, "fake_engine.py", FAKE_ENGINE),
        tracer=_script(bin_dir, "fake_tracer.py", FAKE_TRACER),
        iontracer=_script(bin_dir, "fake_iontracer.py", FAKE_IONTRACER),
        ncgen=_script(bin_dir, "fake_ncgen.py", FAKE_NCGEN),
    )


@pytest.fixture
def service_config(tmp_path: Path, fake_tools: FakeTools) -> ServiceConfig:
    return ServiceConfig(
        engine=EngineConfig(command=fake_tools.engine, timeout_s=60.0),
        tracer=TracerConfig(command=fake_tools.tracer, timeout_s=60.0),
        iontracer=IonTracerConfig(command=fake_tools.iontracer, timeout_s=60.0),
        format_compiler=FormatCompilerConfig(command=fake_tools.ncgen, timeout_s=60.0),
        scratch=ScratchConfig(dir=tmp_path / "scratch"),
        output=OutputConfig(data_dir=tmp_path / "data"),
    )


@pytest.fixture
def make_snapshot(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str = "snapshot.hc", **contents: Any) -> Path:
        path = tmp_path / "snapshots" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(contents), encoding="utf-8")
        return path

    return _make


@pytest.fixture
def write_points(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(text: str, name: str = "points.txt") -> Path:
        path = tmp_path / "input" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


RUN_VARIABLES: Dict[str, str] = {
    "Bx": "Magnetic field, x component",
    "Btot": "Magnetic field magnitude",
    "Density": "Plasma number density",
    "Ux": "Plasma velocity, x component",
    "Utot": "Plasma speed",
}


@pytest.fixture
def domain() -> SimulationDomain:
    return SimulationDomain(
        cell_size=(1.0e6, 1.0e6, 1.0e6),
        valid_min=(-2.0e6, -2.0e6, -2.0e6),
        valid_max=(2.0e6, 2.0e6, 2.0e6),
    )


@pytest.fixture
def static_run(make_snapshot: Callable[..., Path], domain: SimulationDomain) -> SimulationRun:
    snapshot = make_snapshot(values={"Bx": 1.0e-9, "B": 5.0e-9, "n": 1.0e6, "vx": -4.0e5, "v": 4.0e5})
    return SimulationRun(
        title="GUMICS",
        model_resource_id="spase://IMPEX/SimulationModel/FMI/GUMICS",
        run_resource_id="spase://IMPEX/SimulationRun/FMI/GUMICS/synth_stationary_solarwind",
        resource_id="spase://IMPEX/NumericalOutput/FMI/GUMICS/synth_stationary_solarwind/tilt0_3d",
        output_description="Stationary solar wind, zero dipole tilt",
        directory_name="synth_stationary_solarwind",
        variables=dict(RUN_VARIABLES),
        snapshot_file=snapshot,
        domain=domain,
    )


@pytest.fixture
def dynamic_run(tmp_path: Path, domain: SimulationDomain) -> SimulationRun:
    """Three snapshots ten minutes apart with Bx = Btot = 1, 2, 3 nT."""

    snapshot_dir = tmp_path / "dynamic"
    for index, snapshot_id in enumerate(("20100101_000000", "20100101_001000", "20100101_002000")):
        path = snapshot_dir / "20100101" / f"mstate{snapshot_id}.hc"
        path.parent.mkdir(parents=True, exist_ok=True)
        value = (index + 1) * 1.0e-9
        path.write_text(json.dumps({"values": {"Bx": value, "B": value}}), encoding="utf-8")
    time_index = snapshot_dir / "times.txt"
    time_index.write_text("# snapshot times\n%d\n%d\n%d\n" % (T0, T0 + 600, T0 + 1200), encoding="utf-8")
    return SimulationRun(
        title="GUMICS",
        resource_id="spase://IMPEX/NumericalOutput/FMI/GUMICS/EARTH/Dynamic/20100101_000000",
        directory_name="dynamic_2010",
        variables=dict(RUN_VARIABLES),
        temporal=TemporalCoverage(time_index=time_index, snapshot_dir=snapshot_dir),
        domain=domain,
    )


@pytest.fixture
def spectral_run(make_snapshot: Callable[..., Path]) -> SimulationRun:
    snapshot = make_snapshot(
        "spectra.hc",
        channels=3,
        values={"Ebin0": 10.0, "Ebin1": 20.0, "Ebin2": 30.0},
    )
    return SimulationRun(
        title="HYB",
        resource_id="spase://IMPEX/NumericalOutput/FMI/HYB/mars/spectra",
        planet_name="Mars",
        planet_radius=3390.0,
        variables={"ParticleFlux": "Differential proton flux"},
        snapshot_file=snapshot,
        inner_boundary=InnerBoundary(radius=1.0, units="km"),
        energy_channels=EnergyChannels(
            low=10.0,
            high=10000.0,
            bands=[
                EnergyBand(name="E0", low=10.0, high=100.0),
                EnergyBand(name="E1", low=100.0, high=1000.0),
                EnergyBand(name="E2", low=1000.0, high=10000.0),
            ],
        ),
    )
