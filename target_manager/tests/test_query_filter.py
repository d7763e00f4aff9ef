from target_manager.enginelib.marker_record import Marker
from target_manager.enginelib.query_filter import filter_markers, unique_regions


def sample():
    return [
        Marker(id="1", lat=0, lng=0, captured_at="t", rank=2, region="Tokyo"),
        Marker(id="2", lat=0, lng=0, captured_at="t", rank=1, region="Tokyo"),
        Marker(id="3", lat=0, lng=0, captured_at="t", rank=2, region="Osaka"),
        Marker(id="4", lat=0, lng=0, captured_at="t", rank=2, region="Tokyo"),
        Marker(id="5", lat=0, lng=0, captured_at="t", rank=0, region=""),
    ]


def ids(markers):
    return [marker.id for marker in markers]


def test_predicates_combine_with_and_and_keep_order():
    assert ids(filter_markers(sample(), rank=2, region="Tokyo")) == ["1", "4"]


def test_no_predicates_returns_everything_in_order():
    markers = sample()
    assert filter_markers(markers) == markers


def test_effective_defaults_are_used_for_matching():
    assert ids(filter_markers(sample(), rank=1)) == ["2", "5"]
    assert ids(filter_markers(sample(), region="Unknown")) == ["5"]


def test_no_match_yields_empty_list():
    assert filter_markers(sample(), rank=3) == []


def test_unique_regions_are_sorted_and_defaulted():
    assert unique_regions(sample()) == ["Osaka", "Tokyo", "Unknown"]
