import pandas as pd
import pytest

from linkmap_pipeline.adapters import asmap
from linkmap_pipeline.adapters.backcross import TestcrossCalls
from linkmap_pipeline.errors import InvalidMapOrder, UnknownLocusReference, UnparsableRecord

MSTMAP_OUTPUT = """\
;Number of linkage groups: 2
;The size of the linkage groups are: 2	1
;BEGINOFGROUP
group lg0
;The lowerbound of the number of crossovers needed is: 3
m2	0.000
m7	12.500
;ENDOFGROUP

;BEGINOFGROUP
group lg1
m9	0.000
;ENDOFGROUP
"""


def _calls(rows):
    frame = pd.DataFrame(rows, index=["O1", "O2", "O3", "O4"]).transpose()
    metadata = pd.DataFrame({"chromosome": "1", "position": range(len(frame.index))}, index=frame.index)
    return TestcrossCalls(1, frame, metadata, asmap.ASMAP_ALIASES)


def test_testcross_codes(segregation_table):
    calls = asmap.testcross_codes(segregation_table, 2)
    assert calls.markers == ["m2", "m7"]
    assert calls.calls.loc["m7"].tolist() == ["A", "B", "A", "B", "U", "A"]


def test_minor_allele_filter():
    calls = _calls(
        {
            "x1": ["A", "A", "A", "A"],
            "x2": ["A", "B", "U", "B"],
            "x3": ["U", "U", "U", "U"],
        }
    )
    frequency = asmap.minor_allele_frequency(calls)
    assert frequency["x1"] == 0
    assert frequency["x2"] == pytest.approx(1 / 3)
    assert pd.isna(frequency["x3"])

    kept, dropped = asmap.filter_minor_allele(calls, 0.05)
    assert kept.markers == ["x2"]
    assert dropped == 2


def test_mstmap_input_round_trip(segregation_table):
    calls = asmap.testcross_codes(segregation_table, 2)
    params = asmap.MSTmapParameters.from_mapping({"population_name": "P2", "cut_off_p_value": 1e-4})
    text = asmap.encode_mstmap(calls, params)
    lines = text.splitlines()
    assert "population_name P2" in lines
    assert "cut_off_p_value 0.0001" in lines
    assert "number_of_loci 2" in lines
    assert "number_of_individual 6" in lines

    decoded = asmap.read_mstmap_input(text)
    assert list(decoded.index) == calls.markers
    assert list(decoded.columns) == calls.individuals
    assert decoded.to_numpy().tolist() == calls.calls.to_numpy().tolist()


def test_mstmap_parameters_reject_unknown_keys():
    with pytest.raises(ValueError, match="pop_type"):
        asmap.MSTmapParameters.from_mapping({"pop_type": "RIL2"})


def test_mstmap_input_declared_counts():
    text = "number_of_loci 3\nnumber_of_individual 2\n\nlocus_name a b\nx1 A B\n"
    with pytest.raises(UnparsableRecord, match="number_of_loci"):
        asmap.read_mstmap_input(text)


def test_mstmap_input_malformed_count_line():
    text = "number_of_loci many\n\nlocus_name a b\nx1 A B\n"
    with pytest.raises(UnparsableRecord, match="number_of_loci") as excinfo:
        asmap.read_mstmap_input(text)
    assert excinfo.value.line_no == 1

    with pytest.raises(UnparsableRecord):
        asmap.read_mstmap_input("number_of_individual\nlocus_name a b\nx1 A B\n")


def test_mstmap_input_duplicate_marker():
    text = "locus_name a b\nx1 A B\nx2 B B\nx1 A A\n"
    with pytest.raises(UnparsableRecord, match="x1") as excinfo:
        asmap.read_mstmap_input(text)
    assert excinfo.value.line_no == 4


def test_parse_mstmap_map():
    maps = asmap.parse_mstmap_map(MSTMAP_OUTPUT, known_loci=["m2", "m7", "m9"])
    assert list(maps) == ["lg0", "lg1"]
    assert maps["lg0"].loci == ["m2", "m7"]
    assert maps["lg0"].length == 12.5
    assert maps["lg1"].loci == ["m9"]


def test_parse_mstmap_map_unknown_marker():
    with pytest.raises(UnknownLocusReference):
        asmap.parse_mstmap_map(MSTMAP_OUTPUT, known_loci=["m2", "m7"])


def test_parse_mstmap_map_order():
    text = ";BEGINOFGROUP\ngroup lg0\nx1 0.0\nx2 4.0\nx3 2.0\n;ENDOFGROUP\n"
    with pytest.raises(InvalidMapOrder) as excinfo:
        asmap.parse_mstmap_map(text)
    assert excinfo.value.group == "lg0"
    assert excinfo.value.record == 3


def test_parse_mstmap_map_rejects_non_finite_distance():
    text = ";BEGINOFGROUP\ngroup lg0\nx1 0.0\nx2 10.0\nx3 nan\nx4 3.0\n;ENDOFGROUP\n"
    with pytest.raises(InvalidMapOrder, match="non-finite") as excinfo:
        asmap.parse_mstmap_map(text)
    assert excinfo.value.group == "lg0"
    assert excinfo.value.record == 3


def test_parse_mstmap_map_unterminated():
    with pytest.raises(UnparsableRecord, match="Unterminated"):
        asmap.parse_mstmap_map(";BEGINOFGROUP\ngroup lg0\nx1 0.0\n")


def test_congruence_matrix():
    calls = pd.DataFrame(
        {
            "O1": ["A", "B", "A", "U"],
            "O2": ["A", "B", "A", "B"],
            "O3": ["B", "A", "B", "A"],
            "O4": ["U", "U", "U", "U"],
        },
        index=["x1", "x2", "x3", "x4"],
    )
    congruence = asmap.congruence_matrix(calls)
    assert congruence.at["O1", "O2"] == 1.0
    assert congruence.at["O2", "O1"] == 1.0
    assert congruence.at["O1", "O3"] == 0.0
    assert pd.isna(congruence.at["O1", "O4"])
    assert pd.isna(congruence.at["O2", "O2"])

    clones = asmap.detect_clones(congruence)
    assert clones[["individual_a", "individual_b"]].to_numpy().tolist() == [["O1", "O2"]]


def test_clone_threshold():
    labels = ["I1", "I2", "I3", "I4"]
    congruence = pd.DataFrame(
        [
            [None, 0.95, 0.50, None],
            [0.95, None, 0.85, 0.90],
            [0.50, 0.85, None, 0.20],
            [None, 0.90, 0.20, None],
        ],
        index=labels,
        columns=labels,
        dtype="Float64",
    )
    clones = asmap.detect_clones(congruence, threshold=0.9)
    assert clones.to_numpy().tolist() == [["I1", "I2", 0.95], ["I2", "I4", 0.90]]
