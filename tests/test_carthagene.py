import pytest

from linkmap_pipeline.adapters import backcross, carthagene
from linkmap_pipeline.errors import InvalidMapOrder, UnknownLocusReference, UnknownSymbolAlias, UnparsableRecord
from linkmap_pipeline.maps import MarkerInfo
from linkmap_pipeline.segregation import SymbolAliases

MARKER_LISTING = """\
Num    Names : Sets Merges
    1       m1 :    1
    2       m2 :    1
    3       m3 :    1
    4       m4 :    1
"""


@pytest.fixture
def marker_info():
    return carthagene.parse_marker_info(MARKER_LISTING)


def test_raw_data_set_round_trip(segregation_table):
    calls = backcross.testcross_calls(segregation_table, 2)
    text = carthagene.encode_raw(calls)
    lines = text.splitlines()
    assert lines[0] == carthagene.RAW_HEADER
    assert lines[1] == "6 4 0 0"
    assert lines[2] == "*m2 HHAAHA"

    decoded = carthagene.read_raw(text, calls.individuals)
    assert list(decoded.index) == calls.markers
    assert decoded.to_numpy().tolist() == calls.calls.to_numpy().tolist()


def test_raw_data_set_resymbolised(segregation_table):
    calls = backcross.testcross_calls(segregation_table, 1, include_inverted=False)
    text = carthagene.encode_raw(calls, SymbolAliases(homozygous="a", heterozygous="h", missing="?"))
    assert "*m1 ahah?h" in text.splitlines()


def test_raw_data_set_needs_single_characters(segregation_table):
    calls = backcross.testcross_calls(segregation_table, 1)
    with pytest.raises(UnknownSymbolAlias):
        carthagene.encode_raw(calls, SymbolAliases(homozygous="AA"))


def test_raw_data_set_count_mismatch():
    text = "data type f2 backcross\n3 2 0 0\n*x1 AHA\n"
    with pytest.raises(UnparsableRecord, match="declares 2 markers"):
        carthagene.read_raw(text, ["a", "b", "c"])


def test_marker_info(marker_info):
    assert len(marker_info) == 4
    assert marker_info.loci == ["m1", "m2", "m3", "m4"]
    assert marker_info.locus_at(3) == "m3"
    assert marker_info.resolve("2") == "m2"
    assert marker_info.resolve("m4") == "m4"
    with pytest.raises(UnknownLocusReference):
        marker_info.resolve("9")


def test_marker_info_field_count():
    with pytest.raises(UnparsableRecord) as excinfo:
        carthagene.parse_marker_info("Num Names : Sets\n 1 m1 : 1\n 2 m2 : 1 extra\n")
    assert excinfo.value.line_no == 3


def test_upper_triangle_is_expanded(marker_info):
    text = """\
Marker 1 2 3 4
1 10.0 20.0 -
2 5.0 6.0
3 7.0
4
"""
    matrix = carthagene.parse_pairwise(text, marker_info, "lod", "upper")
    assert matrix.is_symmetric()
    assert matrix.value("m1", "m2") == 10.0
    assert matrix.value("m2", "m1") == 10.0
    assert matrix.value("m3", "m4") == 7.0
    assert matrix.value("m1", "m4") is None
    assert matrix.value("m2", "m2") is None
    assert matrix.missing_pairs() == 1

    long = matrix.to_long()
    assert len(long) == 6
    assert list(long.columns) == ["locus_a", "locus_b", "lod"]


def test_lower_triangle_matches_upper(marker_info):
    upper = carthagene.parse_pairwise("1 10 20 -\n2 5 6\n3 7\n4\n", marker_info)
    lower = carthagene.parse_pairwise("1\n2 10\n3 20 5\n4 - 6 7\n", marker_info, layout="lower")
    assert upper.values.equals(lower.values)


def test_pairwise_row_length_is_checked(marker_info):
    with pytest.raises(UnparsableRecord) as excinfo:
        carthagene.parse_pairwise("header\n1 0.1\n", marker_info, "rf")
    assert excinfo.value.line_no == 2


def test_pairwise_rejects_asymmetric_full_matrix(marker_info):
    text = "1 0 10 20 -\n2 11 0 5 6\n"
    with pytest.raises(UnparsableRecord, match="Asymmetric"):
        carthagene.parse_pairwise(text, marker_info, layout="full")


def test_recombination_fraction_range(marker_info):
    with pytest.raises(UnparsableRecord, match="out of range"):
        carthagene.parse_pairwise("1 0.2 1.5 0.1\n", marker_info, "rf")


def test_groups(marker_info):
    text = """\
Linkage Groups :
 Group Id -- Marker(s) Id(s)
    1     -- 1 2
    2     -- 3 m4
"""
    groups = carthagene.parse_groups(text, marker_info)
    assert groups.groups() == [1, 2]
    assert groups.members(1) == ["m1", "m2"]
    assert groups.group_of("m4") == 2


def test_groups_with_unknown_marker(marker_info):
    with pytest.raises(UnknownLocusReference) as excinfo:
        carthagene.parse_groups("1 -- 1 9\n", marker_info)
    assert excinfo.value.loci == ("9",)


def test_ordered_map(marker_info):
    text = """\
Map 3 : log10-likelihood = -20.10
Marker Cumulative
m1 0.0 cM
2 4.5cM
m3 4.5
"""
    (ordered,) = carthagene.parse_ordered_map(text, marker_info)
    assert ordered.group == "3"
    assert ordered.loci == ["m1", "m2", "m3"]
    assert ordered.length == 4.5


def test_ordered_map_must_not_decrease(marker_info):
    text = "m1 0\nm2 5\nm3 3\nm4 10\n"
    with pytest.raises(InvalidMapOrder) as excinfo:
        carthagene.parse_ordered_map(text, marker_info)
    assert excinfo.value.record == 3


def test_ordered_map_rejects_non_finite_distance(marker_info):
    text = "m1 0\nm2 10\nm3 nan\nm4 3\n"
    with pytest.raises(InvalidMapOrder, match="non-finite") as excinfo:
        carthagene.parse_ordered_map(text, marker_info)
    assert excinfo.value.record == 3


def test_locus_named_like_a_header_is_a_record():
    (ordered,) = carthagene.parse_ordered_map("Map 1\nmap-1 0.0\nm2 4.0\n")
    assert ordered.group == "1"
    assert ordered.loci == ["map-1", "m2"]


def test_commands():
    commands = carthagene.CarthaGeneCommands(dataset="/data/parent1.cg", lod_threshold=4.0)
    assert commands.load() == "dsload /data/parent1.cg"
    assert commands.group() == "group 0.3 4.0"
    assert commands.pairwise("rf") == "mrkfr2p"
    assert commands.order_group(2) == ["mrkselset [groupget 2]", "nicemapd", "bestprintd"]
    with pytest.raises(ValueError):
        commands.pairwise("theta")


def test_marker_info_without_records():
    assert len(MarkerInfo([])) == 0
