"""Pseudo-testcross reduction of an outbred cross and the R/qtl "csvr" file format."""

from __future__ import annotations

from dataclasses import dataclass
from io import StringIO
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

import pandas as pd

from ..errors import UnknownLocusReference, UnparsableRecord
from ..segregation import MISSING_CODE, SegregationTable, SymbolAliases
from ..utils import ensure_parent


# Offspring code that marks the homozygous / heterozygous testcross class for
# markers segregating in parent 1 (lmxll) or parent 2 (nnxnp).
TESTCROSS_CODES = {
    1: ("lmxll", "ll", "lm"),
    2: ("nnxnp", "nn", "np"),
}


@dataclass
class TestcrossCalls:
    """Backcross-style calls for one parent, marker x offspring, written with ``aliases``."""

    __test__ = False

    parent: int
    calls: pd.DataFrame
    metadata: pd.DataFrame
    aliases: SymbolAliases

    @property
    def markers(self) -> List[str]:
        return list(self.calls.index)

    @property
    def individuals(self) -> List[str]:
        return list(self.calls.columns)

    def loci(self) -> Set[str]:
        return {split_marker_name(marker, self.aliases.duplicate)[0] for marker in self.markers}

    def subset(self, markers: Iterable[str]) -> "TestcrossCalls":
        keep = list(markers)
        return TestcrossCalls(self.parent, self.calls.loc[keep], self.metadata.loc[keep], self.aliases)


def split_marker_name(marker: str, duplicate_symbol: str) -> Tuple[str, bool]:
    """Map a marker name to ``(locus, inverted)``; inverted twins carry the duplicate suffix."""
    if duplicate_symbol and marker.endswith(duplicate_symbol) and len(marker) > len(duplicate_symbol):
        return marker[: -len(duplicate_symbol)], True
    return marker, False


def _remap(frame: pd.DataFrame, mapping: dict) -> pd.DataFrame:
    return pd.DataFrame({col: frame[col].map(mapping) for col in frame.columns}, index=frame.index)


def testcross_calls(
    table: SegregationTable,
    parent: int,
    aliases: Optional[SymbolAliases] = None,
    *,
    include_inverted: bool = True,
) -> TestcrossCalls:
    """Reduce the markers segregating only in ``parent`` to backcross coding.

    When ``include_inverted`` is set every marker is followed by a twin whose
    name ends with the duplicate symbol and whose homozygous/heterozygous
    calls are swapped, so that markers in repulsion group together with the
    twins of markers in coupling.
    """
    if parent not in TESTCROSS_CODES:
        raise ValueError("parent must be 1 or 2")
    aliases = aliases or SymbolAliases()
    aliases.validate()
    _, hom_code, het_code = TESTCROSS_CODES[parent]

    informative = table.for_parent(parent)
    codes = informative.calls()
    mapping = {hom_code: aliases.homozygous, het_code: aliases.heterozygous, MISSING_CODE: aliases.missing}
    direct = _remap(codes, mapping)
    unmapped = direct.isna().to_numpy()
    if unmapped.any():
        bad = codes.to_numpy()[unmapped][0]
        raise UnparsableRecord(f"Offspring code {bad!r} cannot be reduced for parent {parent}")
    metadata = informative.metadata()

    if not include_inverted:
        return TestcrossCalls(parent, direct, metadata, aliases)

    inverted_map = {aliases.homozygous: aliases.heterozygous, aliases.heterozygous: aliases.homozygous,
                    aliases.missing: aliases.missing}
    inverted = _remap(direct, inverted_map)
    inverted.index = [f"{locus}{aliases.duplicate}" for locus in direct.index]
    inverted_meta = metadata.copy()
    inverted_meta.index = inverted.index

    order: List[str] = []
    for locus, twin in zip(direct.index, inverted.index):
        order.extend([locus, twin])
    calls = pd.concat([direct, inverted]).loc[order]
    meta = pd.concat([metadata, inverted_meta]).loc[order]
    return TestcrossCalls(parent, calls, meta, aliases)


testcross_calls.__test__ = False


def write_rqtl_csv(calls: TestcrossCalls, path: Path | str) -> None:
    """Write R/qtl "csvr" backcross input: markers as rows, positions in Mb."""
    path = Path(path)
    header = ["id", "", ""] + calls.individuals
    body = pd.DataFrame(
        {
            "id": calls.markers,
            "chromosome": calls.metadata["chromosome"].astype(str).to_numpy(),
            "position": (calls.metadata["position"].astype(float) / 1e6).round(6).to_numpy(),
        }
    )
    body = pd.concat([body, calls.calls.reset_index(drop=True)], axis=1)
    body.columns = header
    ensure_parent(path)
    body.to_csv(path, index=False)


def read_rqtl_csv(path: Path | str, aliases: Optional[SymbolAliases] = None, parent: int = 1) -> TestcrossCalls:
    aliases = aliases or SymbolAliases()
    text = Path(path).read_text(encoding="utf-8")
    frame = pd.read_csv(StringIO(text), dtype=str, keep_default_na=False)
    if len(frame.columns) < 3 or frame.columns[0] != "id":
        raise UnparsableRecord(f"{path} is not an R/qtl csvr file (expected an 'id' header)", line_no=1)
    frame = frame.set_index("id")
    chrom_col, pos_col = frame.columns[0], frame.columns[1]
    metadata = pd.DataFrame(
        {
            "chromosome": frame[chrom_col],
            "position": (pd.to_numeric(frame[pos_col]) * 1e6).round().astype("int64"),
        },
        index=frame.index,
    )
    calls = frame.drop(columns=[chrom_col, pos_col])
    allowed = set(aliases.call_symbols())
    unexpected = set(calls.to_numpy().ravel()) - allowed
    if unexpected:
        raise UnparsableRecord(f"Unexpected genotype symbol(s) {sorted(unexpected)} in {path}")
    return TestcrossCalls(parent, calls, metadata, aliases)


def verify_round_trip(expected: Iterable[str], decoded: Iterable[str]) -> None:
    """Raise ``UnknownLocusReference`` unless both identifier sets are identical."""
    expected_set = set(expected)
    decoded_set = set(decoded)
    unknown = sorted(decoded_set - expected_set)
    lost = sorted(expected_set - decoded_set)
    if unknown or lost:
        parts = []
        if unknown:
            parts.append(f"unknown: {', '.join(unknown[:5])}")
        if lost:
            parts.append(f"not echoed: {', '.join(lost[:5])}")
        raise UnknownLocusReference("Decoded identifiers do not match the encoded set (" + "; ".join(parts) + ")",
                                    unknown + lost)


__all__ = [
    "TestcrossCalls",
    "split_marker_name",
    "testcross_calls",
    "write_rqtl_csv",
    "read_rqtl_csv",
    "verify_round_trip",
]
