from target_manager.enginelib import codec
from target_manager.enginelib.marker_record import Marker, create_marker


HEADER = "id,name,lat,lng,capturedAt,note,rank,region"


def sample_markers():
    return [
        Marker(
            id="a1",
            lat=35.658034,
            lng=139.701636,
            captured_at="2026-10-19 09:00:00",
            name='Shibuya, Station "A"',
            note="meet at\nexit 8",
            rank=2,
            region="Tokyo",
        ),
        Marker(
            id="b2",
            lat=-33.8688,
            lng=151.2093,
            captured_at="2026-10-19 09:05:00",
            name=None,
            note="",
            rank=4,
            region="New South Wales",
        ),
    ]


def test_encode_quotes_only_when_needed():
    text = codec.encode_tabular(sample_markers())
    lines = text.split("\n")
    assert lines[0] == HEADER
    assert lines[1].startswith('a1,"Shibuya, Station ""A""",35.658034,139.701636,')
    assert lines[-1] == "b2,,-33.8688,151.2093,2026-10-19 09:05:00,,4,New South Wales"


def test_quoted_delimiter_quote_and_newline_survive():
    markers = sample_markers()
    decoded = codec.decode_tabular(codec.encode_tabular(markers))
    assert decoded.skipped == 0
    assert decoded.markers == markers
    assert decoded.markers[0].name == 'Shibuya, Station "A"'
    assert decoded.markers[0].note == "meet at\nexit 8"


def test_malformed_row_is_skipped_not_fatal():
    rows = [
        "r1,One,35.1,139.1,t,,1,Tokyo",
        "r2,Two,35.2,139.2,t,,2,Tokyo",
        "r3,Bad,abc,139.3,t,,1,Tokyo",
        "r4,Four,35.4,139.4,t,,3,Osaka",
        "r5,Five,35.5,139.5,t,,4,Osaka",
    ]
    decoded = codec.decode_tabular("\n".join([HEADER] + rows))
    assert [marker.id for marker in decoded.markers] == ["r1", "r2", "r4", "r5"]
    assert decoded.total == 5
    assert decoded.skipped == 1
    assert decoded.errors and decoded.errors[0].startswith("3:")


def test_missing_or_non_finite_coordinates_drop_row():
    text = "\n".join([HEADER, "x1,Missing,,139.0,t,,1,", "x2,Inf,inf,139.0,t,,1,", "x3,Nan,35,nan,t,,1,"])
    decoded = codec.decode_tabular(text)
    assert decoded.markers == []
    assert decoded.skipped == 3


def test_missing_columns_take_defaults_and_backfill():
    decoded = codec.decode_tabular("lat,lng\n35.0,139.0\n36.0,140.0\n")
    first, second = decoded.markers
    assert first.id and second.id and first.id != second.id
    assert first.captured_at
    assert first.name is None
    assert first.note == ""
    assert first.rank == 1
    assert first.region == "Unknown"


def test_rank_falls_back_to_one():
    text = "\n".join([HEADER, "a,,1,2,t,,abc,", "b,,1,2,t,,9,", "c,,1,2,t,,3,"])
    ranks = [marker.rank for marker in codec.decode_tabular(text).markers]
    assert ranks == [1, 1, 3]


def test_crlf_and_blank_lines_are_tolerated():
    text = HEADER + "\r\n\r\na,Alpha,1.5,2.5,t,n,2,R\r\n\r\n"
    decoded = codec.decode_tabular(text)
    assert decoded.total == 1
    assert decoded.markers[0].name == "Alpha"
    assert decoded.markers[0].region == "R"


def test_unterminated_quote_drops_only_that_row():
    text = "\n".join([HEADER, "a,Alpha,1,2,t,,1,R", 'b,"Broken,1,2,t,,1,R'])
    decoded = codec.decode_tabular(text)
    assert [marker.id for marker in decoded.markers] == ["a"]
    assert decoded.skipped == 1


def test_legacy_headers_are_accepted():
    text = 'id,name,lat,lng,timestamp,note,rank,prefecture\nold,"Old",35,139,"10:00:00","",2,"Kyoto"'
    marker = codec.decode_tabular(text).markers[0]
    assert marker.captured_at == "10:00:00"
    assert marker.region == "Kyoto"
    assert marker.rank == 2


def test_scanner_keeps_delimiters_inside_quotes():
    rows = list(codec.scan_rows('a,"b,c",d\n"x\ny",z'))
    assert rows == [(["a", "b,c", "d"], True), (["x\ny", "z"], True)]


def test_empty_input_decodes_to_empty_batch():
    assert codec.decode_tabular("").markers == []
    assert codec.decode_tabular(HEADER).total == 0


def test_numbers_are_emitted_unquoted():
    marker = create_marker(10.25, -20.5, name="n", rank=3)
    row = codec.encode_tabular([marker]).split("\n")[1]
    assert ",10.25,-20.5," in row
    assert row.split(",")[6] == "3"


def test_unterminated_quote_mid_file_keeps_following_rows():
    text = "\n".join(
        [
            HEADER,
            "r1,One,1,2,t,,1,R",
            'r2,"Broken,1,2,t,,1,R',
            "r3,Three,3,4,t,,2,R",
            "r4,Four,5,6,t,,3,R",
            "r5,Five,7,8,t,,4,R",
        ]
    )
    decoded = codec.decode_tabular(text)
    assert [marker.id for marker in decoded.markers] == ["r1", "r3", "r4", "r5"]
    assert decoded.total == 5
    assert decoded.skipped == 1
