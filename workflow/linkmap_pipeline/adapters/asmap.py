"""ASMap/MSTmap input files, map output decoding and clone detection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from ..errors import UnknownLocusReference, UnparsableRecord
from ..maps import OrderedMap
from ..segregation import SegregationTable, SymbolAliases
from .backcross import TestcrossCalls, testcross_calls


ASMAP_ALIASES = SymbolAliases(homozygous="A", heterozygous="B", duplicate="_d", missing="U")
DEFAULT_CLONE_THRESHOLD = 0.9


@dataclass
class MSTmapParameters:
    population_type: str = "DH"
    population_name: str = "LG"
    distance_function: str = "kosambi"
    cut_off_p_value: float = 1e-6
    no_map_dist: float = 15.0
    no_map_size: int = 0
    missing_threshold: float = 1.0
    estimation_before_clustering: bool = False
    detect_bad_data: bool = True
    objective_function: str = "COUNT"

    @classmethod
    def from_mapping(cls, mapping: Optional[dict]) -> "MSTmapParameters":
        if not mapping:
            return cls()
        known = set(cls.__dataclass_fields__)
        unknown = [key for key in mapping if key not in known]
        if unknown:
            raise ValueError(f"Unknown MSTmap parameter(s): {', '.join(unknown)}")
        return cls(**mapping)

    def header_lines(self) -> List[str]:
        def yes_no(flag: bool) -> str:
            return "yes" if flag else "no"

        return [
            f"population_type {self.population_type}",
            f"population_name {self.population_name}",
            f"distance_function {self.distance_function}",
            f"cut_off_p_value {self.cut_off_p_value:g}",
            f"no_map_dist {self.no_map_dist}",
            f"no_map_size {self.no_map_size}",
            f"missing_threshold {self.missing_threshold}",
            f"estimation_before_clustering {yes_no(self.estimation_before_clustering)}",
            f"detect_bad_data {yes_no(self.detect_bad_data)}",
            f"objective_function {self.objective_function}",
        ]


def testcross_codes(table: SegregationTable, parent: int, *, include_inverted: bool = False) -> TestcrossCalls:
    """Per-parent A/B/U coding of the markers segregating in ``parent`` only."""
    return testcross_calls(table, parent, ASMAP_ALIASES, include_inverted=include_inverted)


def minor_allele_frequency(calls: TestcrossCalls) -> pd.Series:
    typed = calls.calls.ne(calls.aliases.missing)
    het = calls.calls.eq(calls.aliases.heterozygous)
    n_typed = typed.sum(axis=1)
    freq = het.sum(axis=1) / n_typed.where(n_typed > 0)
    return np.minimum(freq, 1 - freq)


def filter_minor_allele(calls: TestcrossCalls, threshold: float) -> Tuple[TestcrossCalls, int]:
    """Drop markers whose minor call frequency is below ``threshold``; return the drop count."""
    maf = minor_allele_frequency(calls)
    keep = maf.notna() & (maf >= threshold)
    kept = calls.subset(maf.index[keep.to_numpy()])
    return kept, int((~keep).sum())


def encode_mstmap(calls: TestcrossCalls, params: Optional[MSTmapParameters] = None) -> str:
    params = params or MSTmapParameters()
    lines = params.header_lines()
    lines.append(f"number_of_loci {len(calls.markers)}")
    lines.append(f"number_of_individual {len(calls.individuals)}")
    lines.append("")
    lines.append("\t".join(["locus_name", *calls.individuals]))
    for marker, row in calls.calls.iterrows():
        lines.append("\t".join([str(marker), *row.tolist()]))
    return "\n".join(lines) + "\n"


def read_mstmap_input(text: str) -> pd.DataFrame:
    """Read the marker block of an MSTmap input file back into marker x individual calls."""
    lines = text.splitlines()
    declared: Dict[str, int] = {}
    for line_no, line in enumerate(lines, start=1):
        parts = line.split()
        if not parts:
            continue
        if parts[0] in ("number_of_loci", "number_of_individual"):
            if len(parts) != 2 or not parts[1].isdigit():
                raise UnparsableRecord(f"Expected '{parts[0]} <count>'", line_no=line_no)
            declared[parts[0]] = int(parts[1])
        if parts[0] == "locus_name":
            individuals = parts[1:]
            rows: Dict[str, List[str]] = {}
            for data_no, data in enumerate(lines[line_no:], start=line_no + 1):
                fields = data.split()
                if not fields:
                    continue
                if len(fields) != len(individuals) + 1:
                    raise UnparsableRecord(
                        f"Expected {len(individuals) + 1} fields, got {len(fields)}", line_no=data_no
                    )
                if fields[0] in rows:
                    raise UnparsableRecord(f"Marker {fields[0]!r} listed twice", line_no=data_no)
                rows[fields[0]] = fields[1:]
            frame = pd.DataFrame.from_dict(rows, orient="index", columns=individuals)
            if declared.get("number_of_loci", len(frame)) != len(frame):
                raise UnparsableRecord(
                    f"number_of_loci is {declared['number_of_loci']} but {len(frame)} markers are listed"
                )
            if declared.get("number_of_individual", len(individuals)) != len(individuals):
                raise UnparsableRecord(
                    f"number_of_individual is {declared['number_of_individual']} "
                    f"but {len(individuals)} individuals are listed"
                )
            return frame
    raise UnparsableRecord("No 'locus_name' header found in MSTmap input")


def parse_mstmap_map(text: str, known_loci: Optional[Iterable[str]] = None) -> Dict[str, OrderedMap]:
    """Decode ``;BEGINOFGROUP`` ... ``;ENDOFGROUP`` blocks keyed by the engine's group name."""
    known: Optional[Set[str]] = set(known_loci) if known_loci is not None else None
    maps: Dict[str, OrderedMap] = {}
    group: Optional[str] = None
    records: List[tuple] = []
    in_group = False

    for line_no, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.upper() == ";BEGINOFGROUP":
            if in_group:
                raise UnparsableRecord("Nested ;BEGINOFGROUP", line_no=line_no)
            in_group, group, records = True, None, []
            continue
        if stripped.upper() == ";ENDOFGROUP":
            if not in_group or group is None:
                raise UnparsableRecord(";ENDOFGROUP without an open named group", line_no=line_no)
            if group in maps:
                raise UnparsableRecord(f"Group {group} listed twice", line_no=line_no)
            maps[group] = OrderedMap.from_records(group, records)
            in_group = False
            continue
        if stripped.startswith(";") or not in_group:
            continue
        fields = stripped.split()
        if fields[0] == "group" and group is None:
            if len(fields) != 2:
                raise UnparsableRecord("Expected 'group <name>'", line_no=line_no)
            group = fields[1]
            continue
        if len(fields) != 2:
            raise UnparsableRecord(f"Expected 'locus distance', got {len(fields)} field(s)", line_no=line_no)
        if group is None:
            raise UnparsableRecord("Map record before the group name", line_no=line_no)
        if known is not None and fields[0] not in known:
            raise UnknownLocusReference(f"Map lists unknown marker {fields[0]!r}", [fields[0]])
        try:
            records.append((fields[0], float(fields[1])))
        except ValueError:
            raise UnparsableRecord(f"Cannot read distance {fields[1]!r}", line_no=line_no) from None

    if in_group:
        raise UnparsableRecord("Unterminated group block at end of output")
    return maps


def congruence_matrix(calls: pd.DataFrame, missing: str = ASMAP_ALIASES.missing) -> pd.DataFrame:
    """Fraction of matching calls between every pair of individuals.

    Only markers typed in both individuals count; pairs with none in common
    and self-pairs are missing.
    """
    values = calls.to_numpy(dtype=object)
    typed = (values != missing) & pd.notna(values)
    typed_f = typed.astype(float)
    shared = typed_f.T @ typed_f
    matches = np.zeros_like(shared)
    for symbol in pd.unique(values[typed]):
        indicator = ((values == symbol) & typed).astype(float)
        matches += indicator.T @ indicator
    with np.errstate(divide="ignore", invalid="ignore"):
        fraction = np.where(shared > 0, matches / np.where(shared > 0, shared, 1), np.nan)
    np.fill_diagonal(fraction, np.nan)
    return pd.DataFrame(fraction, index=calls.columns, columns=calls.columns).astype("Float64")


def detect_clones(congruence: pd.DataFrame, threshold: float = DEFAULT_CLONE_THRESHOLD) -> pd.DataFrame:
    """Pairs of individuals whose congruence reaches ``threshold``; missing values never match."""
    labels = list(congruence.index)
    rows = []
    for i, first in enumerate(labels):
        for second in labels[i + 1:]:
            value = congruence.at[first, second]
            if pd.isna(value):
                continue
            if float(value) >= threshold:
                rows.append((first, second, float(value)))
    return pd.DataFrame(rows, columns=["individual_a", "individual_b", "congruence"])


__all__ = [
    "ASMAP_ALIASES",
    "DEFAULT_CLONE_THRESHOLD",
    "MSTmapParameters",
    "testcross_codes",
    "minor_allele_frequency",
    "filter_minor_allele",
    "encode_mstmap",
    "read_mstmap_input",
    "parse_mstmap_map",
    "congruence_matrix",
    "detect_clones",
]
