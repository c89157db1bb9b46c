import pytest

from linkmap_pipeline.adapters import backcross
from linkmap_pipeline.adapters.backcross import read_rqtl_csv, split_marker_name, verify_round_trip, write_rqtl_csv
from linkmap_pipeline.errors import UnknownLocusReference
from linkmap_pipeline.segregation import SymbolAliases


def test_parent_one_markers_with_inverted_twins(segregation_table):
    calls = backcross.testcross_calls(segregation_table, 1)
    assert calls.markers == ["m1", "m1_d"]
    assert calls.calls.loc["m1"].tolist() == ["A", "H", "A", "H", "-", "H"]
    assert calls.calls.loc["m1_d"].tolist() == ["H", "A", "H", "A", "-", "A"]
    assert calls.loci() == {"m1"}
    assert calls.metadata.loc["m1_d", "position"] == 100


def test_parent_two_markers_without_twins(segregation_table):
    calls = backcross.testcross_calls(segregation_table, 2, include_inverted=False)
    assert calls.markers == ["m2", "m7"]
    assert calls.calls.loc["m7"].tolist() == ["A", "H", "A", "H", "-", "A"]


def test_custom_aliases(segregation_table):
    aliases = SymbolAliases(homozygous="0", heterozygous="1", duplicate=".inv", missing="9")
    calls = backcross.testcross_calls(segregation_table, 1, aliases)
    assert calls.markers == ["m1", "m1.inv"]
    assert calls.calls.loc["m1"].tolist() == ["0", "1", "0", "1", "9", "1"]


def test_split_marker_name():
    assert split_marker_name("m1_d", "_d") == ("m1", True)
    assert split_marker_name("m1", "_d") == ("m1", False)
    assert split_marker_name("_d", "_d") == ("_d", False)


def test_rqtl_csv_round_trip(segregation_table, tmp_path):
    calls = backcross.testcross_calls(segregation_table, 2)
    path = tmp_path / "parent2_backcross.csv"
    write_rqtl_csv(calls, path)

    header = path.read_text(encoding="utf-8").splitlines()[0]
    assert header == "id,,," + ",".join(calls.individuals)

    again = read_rqtl_csv(path, parent=2)
    assert again.markers == calls.markers
    assert again.individuals == calls.individuals
    assert again.calls.to_numpy().tolist() == calls.calls.to_numpy().tolist()
    assert again.metadata["position"].tolist() == [200, 200, 300, 300]


def test_verify_round_trip():
    verify_round_trip(["a", "b"], ["b", "a"])
    with pytest.raises(UnknownLocusReference) as excinfo:
        verify_round_trip(["a", "b"], ["a", "c"])
    assert set(excinfo.value.loci) == {"b", "c"}


def test_calls_helper_is_not_collected_by_name():
    assert backcross.testcross_calls.__test__ is False
    assert backcross.TestcrossCalls.__test__ is False
