import json

import pytest

from plasmagrid.errors import OrbitSourceError, RequestError
from plasmagrid.io.orbit import fetch_orbit, header_fields, orbit_lines, orbit_url
from plasmagrid.schema import OrbitSourceConfig, SpacecraftRequest
from plasmagrid.scratch import ScratchSpace

HEADER = "#mex_xyz - Type : Local Parameter @ CDPP/AMDA - Name : xyz_mso - Units : Rm - Frame : MSO - Mission : MEX"


def _request(**kwargs):
    payload = {
        "resource_id": "spase://IMPEX/NumericalOutput/FMI/HYB/mars/run",
        "spacecraft_name": " mex ",
        "start_time": "2011-01-10T12:00:00Z",
        "stop_time": "2011-01-10T16:00:00+02:00",
        "sampling": "PT10M",
    }
    payload.update(kwargs)
    return SpacecraftRequest(**payload)


def test_spacecraft_request_normalisation():
    request = _request()
    assert request.spacecraft_name == "MEX"
    assert request.stop_time.isoformat() == "2011-01-10T14:00:00+00:00"
    with pytest.raises(ValueError):
        _request(stop_time="2011-01-10T11:00:00Z")
    with pytest.raises(ValueError):
        _request(sampling=0)


def test_orbit_url():
    config = OrbitSourceConfig(url_template="http://orbits/{parameter_id}?from={start}&to={stop}&dt={sampling}")
    request = _request(stop_time="2011-01-10T13:00:00Z")
    assert orbit_url(config, request) == "http://orbits/mex_xyz?from=2011-01-10T12:00:00&to=2011-01-10T13:00:00&dt=600"
    with pytest.raises(RequestError, match="Unknown spacecraft: ROSETTA"):
        orbit_url(config, _request(spacecraft_name="rosetta", stop_time="2011-01-10T13:00:00Z"))


def test_header_fields():
    fields = header_fields(HEADER)
    assert fields["Frame"] == "MSO"
    assert fields["Units"] == "Rm"


def test_orbit_lines_scale_to_meters(spectral_run):
    run = spectral_run.model_copy(update={"coordinate_system": "MSO"})
    text = HEADER + "\n2011-01-10T12:05:00.000      2.00000     -1.00000      0.50000\n\n"
    assert orbit_lines(text, run, 3.39e6) == ["2011-01-10T12:05:00.000 6.780000e+06 -3.390000e+06 1.695000e+06"]


def test_orbit_lines_reject_other_frames_and_empty_answers(spectral_run):
    with pytest.raises(OrbitSourceError, match="GSE vs. MSO"):
        orbit_lines(HEADER + "\n2011-01-10T12:05:00 1 2 3\n", spectral_run, 1.0)
    with pytest.raises(OrbitSourceError, match="no data"):
        orbit_lines(HEADER.replace("MSO", "GSE") + "\n", spectral_run, 1.0)
    with pytest.raises(OrbitSourceError, match="Unexpected orbit data line"):
        orbit_lines("2011-01-10T12:05:00 1 two 3\n", spectral_run, 1.0)


def test_fetch_orbit_follows_data_file_urls(service_config, spectral_run, tmp_path):
    run = spectral_run.model_copy(update={"coordinate_system": "MSO"})
    data = tmp_path / "mex.txt"
    data.write_text(HEADER + "\n2011-01-10T12:00:00.000 1 0 0\n2011-01-10T12:10:00.000 0 1 0\n", encoding="utf-8")
    answer = tmp_path / "answer.json"
    answer.write_text(json.dumps({"success": True, "dataFileURLs": str(data)}), encoding="utf-8")
    config = OrbitSourceConfig(url_template=str(answer))

    with ScratchSpace(service_config.scratch) as scratch:
        path = fetch_orbit(_request(), run, config, scratch)
        lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "2011-01-10T12:00:00.000 3.390000e+06 0.000000e+00 0.000000e+00",
        "2011-01-10T12:10:00.000 0.000000e+00 3.390000e+06 0.000000e+00",
    ]
    assert not path.exists()


def test_fetch_orbit_failures(service_config, spectral_run, tmp_path):
    missing = OrbitSourceConfig(url_template=str(tmp_path / "absent" / "{parameter_id}.txt"))
    empty = tmp_path / "empty.json"
    empty.write_text('{"success": false}', encoding="utf-8")
    with ScratchSpace(service_config.scratch) as scratch:
        with pytest.raises(OrbitSourceError, match="Could not fetch"):
            fetch_orbit(_request(), spectral_run, missing, scratch)
        with pytest.raises(OrbitSourceError, match="no data file"):
            fetch_orbit(_request(), spectral_run, OrbitSourceConfig(url_template=str(empty)), scratch)
