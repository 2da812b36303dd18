import numpy as np
import pytest

from plasmagrid.constants import PROTON_CHARGE, PROTON_MASS
from plasmagrid.errors import InputFormatError, MissingField, RequestError, TracerFailure
from plasmagrid.io.pointset import PointSet, PointSetReader
from plasmagrid.pipeline.trajectories import (
    PARTICLE_COLUMN,
    PARTICLE_FIELDS,
    TIME_COLUMN,
    IonTracer,
    ParticleSet,
    parse_trajectory_output,
    particles_from,
    points_inside,
    render_config,
    stop_region_for,
    trajectory_step_size,
)
from plasmagrid.schema import ParticleTrajectoryRequest
from plasmagrid.scratch import ScratchSpace

PARTICLES = """<?xml version="1.0"?>
<VOTABLE version="1.2" xmlns="http://www.ivoa.net/xml/VOTable/v1.2">
  <RESOURCE>
    <TABLE name="particles">
      <FIELD name="X" datatype="float" unit="m"/>
      <FIELD name="Y" datatype="float" unit="m"/>
      <FIELD name="Z" datatype="float" unit="m"/>
      <FIELD name="Ux" datatype="float" unit="km/s"/>
      <FIELD name="Uy" datatype="float" unit="km/s"/>
      <FIELD name="Uz" datatype="float" unit="km/s"/>
      <FIELD name="Mass" datatype="float" unit="kg"/>
      <FIELD name="Charge" datatype="float" unit="C"/>
      <DATA><TABLEDATA>
{rows}
      </TABLEDATA></DATA>
    </TABLE>
  </RESOURCE>
</VOTABLE>
"""


def _particle_rows(*rows):
    return "\n".join("        <TR>" + "".join(f"<TD>{v}</TD>" for v in row) + "</TR>" for row in rows)


def _proton(x, ux=100.0, mass=PROTON_MASS, charge=PROTON_CHARGE):
    return (x, 0.0, 0.0, ux, 0.0, 0.0, mass, charge)


def _request(**kwargs):
    payload = {"resource_id": "spase://IMPEX/NumericalOutput/FMI/GUMICS/run", "url_xyz": "particles.vot"}
    payload.update(kwargs)
    return ParticleTrajectoryRequest(**payload)


def _particles(positions, velocities=None, mass=PROTON_MASS, charge=PROTON_CHARGE):
    positions = np.asarray(positions, dtype=float)
    if velocities is None:
        velocities = np.tile([1.0e5, 0.0, 0.0], (len(positions), 1))
    return ParticleSet(positions, np.asarray(velocities, dtype=float), mass, charge)


def test_particles_from_votable(write_points):
    path = write_points(PARTICLES.format(rows=_particle_rows(_proton(0.0), _proton(1.0e6, ux=-50.0))), "particles.vot")
    point_set = PointSetReader().read(path, required_fields=PARTICLE_FIELDS)
    particles = particles_from(point_set)
    assert len(particles) == 2
    np.testing.assert_allclose(particles.velocities[:, 0], [1.0e5, -5.0e4])
    assert particles.relative_mass == pytest.approx(1.0)
    assert particles.relative_charge == pytest.approx(1.0)


def test_particles_must_share_mass_and_charge(write_points):
    rows = _particle_rows(_proton(0.0), _proton(1.0e6, mass=4 * PROTON_MASS))
    point_set = PointSetReader().read(write_points(PARTICLES.format(rows=rows), "particles.vot"))
    with pytest.raises(RequestError, match="Masses and charges must be same"):
        particles_from(point_set)


def test_particle_input_requires_votable_fields(write_points):
    plain = PointSetReader().read(write_points("0 0 0\n1 0 0\n"))
    with pytest.raises(InputFormatError, match="must be a VOTable"):
        particles_from(plain)

    text = PARTICLES.format(rows=_particle_rows(_proton(0.0))).replace('<FIELD name="Charge" datatype="float" unit="C"/>', "")
    text = text.replace(f"<TD>{PROTON_CHARGE}</TD>", "")
    with pytest.raises(MissingField, match="CHARGE"):
        PointSetReader().read(write_points(text, "particles.vot"), required_fields=PARTICLE_FIELDS)


def test_step_size_scales_with_mass_over_charge(static_run):
    alphas = _particles([[0.0, 0.0, 0.0]], mass=4 * PROTON_MASS, charge=2 * PROTON_CHARGE)
    timed_run = static_run.model_copy(update={"time_step_s": 0.5})
    assert trajectory_step_size(timed_run, _request(step_size=7.0), alphas) == pytest.approx(1.0)
    assert trajectory_step_size(static_run, _request(step_size=7.0), alphas) == 7.0
    with pytest.raises(RequestError, match="StepSize"):
        trajectory_step_size(static_run, _request(), alphas)


def test_stop_region_defaults_to_the_valid_box(domain):
    assert stop_region_for(_request(), domain) == (-2.0e6, 2.0e6, -2.0e6, 2.0e6, -2.0e6, 2.0e6)
    custom = (-1.0, 1.0, -2.0, 2.0, -3.0, 3.0)
    assert stop_region_for(_request(stop_region=custom), None) == custom
    with pytest.raises(RequestError, match="StopCondition_Region"):
        stop_region_for(_request(), None)


def test_points_inside_is_strict():
    region = (-1.0, 1.0, -1.0, 1.0, -1.0, 1.0)
    inside = points_inside([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.5, -0.99, 0.2]], region)
    assert inside.tolist() == [True, False, True]


def test_render_config(tmp_path):
    particles = _particles([[0.0, 0.0, 0.0], [5.0e6, 0.0, 0.0]])
    region = (-2.0e6, 2.0e6, -2.0e6, 2.0e6, -2.0e6, 2.0e6)
    text = render_config(tmp_path / "run.hc", particles, _request(direction="Both", stop_radius=1.5e6), 0.25, region)
    lines = text.splitlines()
    assert lines[0] == f"HCF {tmp_path / 'run.hc'} 1 1"
    assert [line.split()[0] for line in lines[1:13]] == [
        "FORMATS",
        "OUT_DIR",
        "TRACEVARS",
        "BUNEMANVERSION",
        "DIRECTION",
        "MAXSTEPS",
        "STEPSIZE",
        "INTPOLORDER",
        "VERBOSE",
        "OVERWRITE",
        "ENDPOINTSONLY",
        "PLANETARY_BOUNDARY",
    ]
    assert "DIRECTION both" in lines
    assert "STEPSIZE 0.25" in lines
    assert "PLANETARY_BOUNDARY 1500000" in lines
    assert lines[13:19] == ["XMIN -2000000", "XMAX 2000000", "YMIN -2000000", "YMAX 2000000", "ZMIN -2000000", "ZMAX 2000000"]
    assert lines[19] == "EOC"
    assert "INITIAL POINTS" in lines[20]
    # the start point outside the box is left out
    assert len(lines) == 22
    assert lines[21].split()[-2:] == ["1", "1"]


def test_render_config_without_points_inside(tmp_path):
    particles = _particles([[5.0e6, 0.0, 0.0]])
    with pytest.raises(RequestError, match="All initial points are outside"):
        render_config(tmp_path / "run.hc", particles, _request(), 1.0, (-1.0, 1.0, -1.0, 1.0, -1.0, 1.0))


def test_parse_trajectory_output_merges_directions():
    text = "\n".join(
        [
            "% x y z parID",
            "trace = [",
            "0 0 0 1",
            "1 0 0 1",
            "2 0 0 1",
            "5 0 0 3",
            "0 0 0 2",
            "-1 0 0 2",
            "5 0 0 4",
            "4 0 0 4",
            "];",
        ]
    )
    table = parse_trajectory_output(text, 0.5)
    assert table.columns == ["x", "y", "z", TIME_COLUMN, PARTICLE_COLUMN]
    assert table.column(PARTICLE_COLUMN).tolist() == [1, 1, 1, 1, 2, 2]
    assert table.column(TIME_COLUMN).tolist() == [0.0, 0.5, 1.0, -0.5, 0.0, -0.5]
    assert table.column("x").tolist() == [0.0, 1.0, 2.0, -1.0, 5.0, 4.0]
    assert table.frame[PARTICLE_COLUMN].dtype == np.int64


def test_ion_tracer_runs_the_external_tool(service_config, make_snapshot):
    snapshot = make_snapshot("ions.hc", steps=3)
    particles = _particles([[0.0, 0.0, 0.0], [1.0e6, 0.0, 0.0]])
    region = (-2.0e6, 2.0e6, -2.0e6, 2.0e6, -2.0e6, 2.0e6)
    with ScratchSpace(service_config.scratch) as scratch:
        table = IonTracer(service_config.iontracer).trace(particles, snapshot, _request(direction="Both"), 0.5, region, scratch)
    assert len(table) == 10
    first = table.frame[table.frame[PARTICLE_COLUMN] == 1]
    assert first[TIME_COLUMN].tolist() == [0.0, 0.5, 1.0, -0.5, -1.0]
    assert first["x"].tolist() == [0.0, 5.0e4, 1.0e5, -5.0e4, -1.0e5]
    assert list(service_config.scratch.dir.iterdir()) == []


def test_ion_tracer_failures(service_config, make_snapshot):
    particles = _particles([[0.0, 0.0, 0.0]])
    region = (-1.0, 1.0, -1.0, 1.0, -1.0, 1.0)
    tracer = IonTracer(service_config.iontracer)
    with ScratchSpace(service_config.scratch) as scratch:
        with pytest.raises(TracerFailure, match="All initial points are outside"):
            tracer.trace(particles, make_snapshot("outside.hc", outside=True), _request(), 1.0, region, scratch)
        with pytest.raises(TracerFailure, match="exit status 5"):
            tracer.trace(particles, make_snapshot("broken.hc", fail=True), _request(), 1.0, region, scratch)
        with pytest.raises(TracerFailure, match="local data file"):
            tracer.trace(particles, make_snapshot().parent / "missing.hc", _request(), 1.0, region, scratch)


def test_generated_point_sets_are_not_particles():
    with pytest.raises(InputFormatError):
        particles_from(PointSet.from_positions(np.zeros((1, 3))))
