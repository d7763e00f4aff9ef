import json
from datetime import date

import pytest

from target_manager.enginelib import codec
from target_manager.enginelib.marker_record import Marker, create_marker


def markers():
    return [
        create_marker(35.6812, 139.7671, region="Tokyo"),
        create_marker(34.6937, 135.5023, name=None, note="quote \" and , comma", rank=3),
        Marker(id="fixed", lat=0.0, lng=0.0, captured_at="t", name="Null Island", rank=4, region="Sea"),
    ]


def test_structured_round_trip_preserves_every_field_and_order():
    original = markers()
    decoded = codec.decode(codec.encode(original, codec.STRUCTURED), codec.STRUCTURED)
    assert decoded.markers == original
    assert decoded.skipped == 0


def test_wire_shape_uses_camel_case_timestamp():
    payload = json.loads(codec.encode_structured(markers()))
    assert set(payload[0]) == {"id", "name", "lat", "lng", "capturedAt", "note", "rank", "region"}


@pytest.mark.parametrize("text", ["{}", '"text"', "42", "null", "not json"])
def test_non_list_payload_decodes_to_empty_batch(text):
    decoded = codec.decode_structured(text)
    assert decoded.markers == []
    assert decoded.total == 0


def test_malformed_entries_are_skipped():
    payload = [
        1,
        "string",
        ["nested"],
        {"name": "no coordinates"},
        {"lat": "35", "lng": 139},
        {"id": "ok", "lat": 35, "lng": 139},
    ]
    decoded = codec.decode_structured(json.dumps(payload))
    assert [marker.id for marker in decoded.markers] == ["ok"]
    assert decoded.total == 6
    assert decoded.skipped == 5


def test_missing_fields_are_backfilled():
    decoded = codec.decode_structured(json.dumps([{"lat": 1, "lng": 2, "rank": "2"}]))
    marker = decoded.markers[0]
    assert marker.id
    assert marker.captured_at
    assert marker.rank == 2
    assert marker.region == "Unknown"
    assert marker.note == ""


def test_legacy_keys_are_mapped():
    entry = {"id": "x", "lat": 1, "lng": 2, "timestamp": "12:00:00", "prefecture": "Hokkaido"}
    marker = codec.decode_structured(json.dumps([entry])).markers[0]
    assert marker.captured_at == "12:00:00"
    assert marker.region == "Hokkaido"


def test_format_helpers():
    assert codec.format_from_filename("targets.JSON") == codec.STRUCTURED
    assert codec.format_from_filename("/tmp/targets.csv") == codec.TABULAR
    with pytest.raises(ValueError):
        codec.format_from_filename("targets.txt")
    assert codec.export_filename(codec.TABULAR, date(2026, 10, 19)) == "gps-targets-2026-10-19.csv"
    assert codec.export_filename(codec.STRUCTURED, date(2026, 1, 2)) == "gps-targets-2026-01-02.json"
    assert codec.MIME_TYPES[codec.TABULAR] == "text/csv"
    with pytest.raises(ValueError):
        codec.encode([], "xml")


def test_integral_float_rank_is_kept():
    decoded = codec.decode_structured(json.dumps([{"lat": 1, "lng": 2, "rank": 2.0}, {"lat": 1, "lng": 2, "rank": 2.5}]))
    assert [marker.rank for marker in decoded.markers] == [2, 1]
