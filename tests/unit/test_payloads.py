from __future__ import annotations

import pytest

from provenance.core.exceptions import ValidationError
from provenance.core.payloads import validate_payload
from provenance.core.stages import parse_stage


def test_unknown_fields_pass_through() -> None:
    out = validate_payload(parse_stage("harvested"), {"quantity_kg": 500, "field_notes": "north plot"}, max_bytes=4096)
    assert out == {"field_notes": "north plot", "quantity_kg": 500}


def test_none_payload_is_empty_object() -> None:
    assert validate_payload(parse_stage("delivered"), None, max_bytes=4096) == {}


def test_payload_must_be_an_object() -> None:
    with pytest.raises(ValidationError):
        validate_payload(parse_stage("harvested"), ["not", "an", "object"], max_bytes=4096)


def test_payload_must_be_json_serializable() -> None:
    with pytest.raises(ValidationError):
        validate_payload(parse_stage("harvested"), {"when": object()}, max_bytes=4096)


def test_payload_size_cap() -> None:
    with pytest.raises(ValidationError) as ei:
        validate_payload(parse_stage("harvested"), {"blob": "x" * 200}, max_bytes=64)
    assert ei.value.extra["max_bytes"] == 64


def test_harvest_coordinates_are_checked() -> None:
    with pytest.raises(ValidationError) as ei:
        validate_payload(
            parse_stage("harvested"),
            {"coordinates": {"latitude": 123.0, "longitude": 10.0}},
            max_bytes=4096,
        )
    assert ei.value.extra["errors"][0]["loc"] == "coordinates.latitude"


def test_rejection_reason_is_optional_but_not_blank() -> None:
    assert validate_payload(parse_stage("rejected"), {}, max_bytes=4096) == {}
    with pytest.raises(ValidationError):
        validate_payload(parse_stage("rejected"), {"reason": ""}, max_bytes=4096)
    out = validate_payload(parse_stage("rejected"), {"reason": "aflatoxin above limit"}, max_bytes=4096)
    assert out["reason"] == "aflatoxin above limit"


def test_release_requires_passing_result() -> None:
    assert validate_payload(parse_stage("distribution"), {}, max_bytes=4096) == {}
    with pytest.raises(ValidationError):
        validate_payload(parse_stage("distribution"), {"result": "fail"}, max_bytes=4096)


def test_sub_stage_payload_model() -> None:
    with pytest.raises(ValidationError):
        validate_payload(parse_stage("dna"), {"result": "maybe"}, max_bytes=4096)
    assert validate_payload(parse_stage("drying"), {"temperature_c": 45.5}, max_bytes=4096) == {"temperature_c": 45.5}
