from plasmagrid.provenance import describe_parameter, description_block
from plasmagrid.schema import DataPointValueRequest


def test_describe_parameter_expands_mappings():
    text = describe_parameter("extra", {"a": 1, "b": {"c": [1, 2]}})
    lines = text.splitlines()
    assert lines[0].strip() == "extra => ["
    assert lines[1].strip() == "a => 1"
    assert lines[3].strip() == "c => [1, 2]"
    assert lines[-1].strip() == "]"


def test_description_block_lists_run_and_request(static_run):
    request = DataPointValueRequest(
        resource_id=static_run.resource_id,
        url_xyz="http://example.org/orbit.vot",
        variables="Bx,Btot",
    )
    text = description_block("Interpolated values", static_run, request, {"Resolution": "1e+06 m"})
    assert text.splitlines()[0] == "Interpolated values"
    assert "  NumericalOutput_ResourceID : " + static_run.resource_id in text
    assert "  Object                     : Earth" in text
    assert "Resolution" in text
    assert "url_xyz => http://example.org/orbit.vot" in text
    assert "variables => [Bx, Btot]" in text
    assert "Generated by plasmagrid" in text
