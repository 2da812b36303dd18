import pytest

from plasmagrid.errors import EngineFailure, RequestError
from plasmagrid.pipeline.spectra import channels_of, energy_range_param, restrict_channels, select_bands
from plasmagrid.table import Table


def test_channels_of(spectral_run, static_run):
    assert len(channels_of(spectral_run).bands) == 3
    with pytest.raises(RequestError, match="spectral"):
        channels_of(static_run)


def test_select_bands(spectral_run):
    channels = spectral_run.energy_channels
    assert select_bands(channels, []) == [0, 1, 2]
    assert select_bands(channels, ["E2", "E0", "E2"]) == [0, 2]
    with pytest.raises(RequestError, match="E9"):
        select_bands(channels, ["E9"])


def test_energy_range_param(spectral_run):
    channels = spectral_run.energy_channels
    param = energy_range_param(channels)
    assert param.name == "EnergyRange"
    assert param.value == "10 100 1000 10000"
    assert param.arraysize == "4"
    assert param.unit == "eV"
    assert energy_range_param(channels, [0, 1]).value == "10 100 10000"
    assert energy_range_param(channels, [1]).arraysize == "2"


def test_restrict_channels(spectral_run):
    channels = spectral_run.energy_channels
    table = Table.from_rows(
        ["x", "y", "z", "Ebin0", "Ebin1", "Ebin2"],
        [[1.0, 2.0, 3.0, 10.0, 20.0, 30.0]],
    )
    restricted = restrict_channels(table, channels, [0, 2])
    assert restricted.columns == ["x", "y", "z", "Ebin0", "Ebin2"]
    assert restricted.column("Ebin2").tolist() == [30.0]
    with pytest.raises(EngineFailure):
        restrict_channels(Table.from_rows(["x", "y", "z", "Ebin0"], [[0.0, 0.0, 0.0, 1.0]]), channels, [0])
