"""CarthaGene single-letter backcross files and decoding of its text reports."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..errors import UnknownSymbolAlias, UnparsableRecord
from ..maps import STATISTICS, LinkageGroupAssignment, MarkerInfo, OrderedMap, PairwiseMatrix
from ..segregation import SymbolAliases
from .backcross import TestcrossCalls


RAW_HEADER = "data type f2 backcross"
MISSING_TOKENS = {"-", "NA", "na", "nan", "NaN", "*", "."}
LAYOUTS = ("upper", "lower", "full")

_GROUP_LINE = re.compile(r"^\s*(\d+)\s*--\s*(.*)$")
_MAP_HEADER = re.compile(r"^\s*(?:map|group)(?:\s+|\s*[:#]\s*)([^\s:]+)", re.IGNORECASE)


def _lines(text: str | Iterable[str]) -> List[str]:
    if isinstance(text, str):
        return text.splitlines()
    return [line.rstrip("\r\n") for line in text]


def _is_int(token: str) -> bool:
    return token.isdigit()


def encode_raw(calls: TestcrossCalls, aliases: Optional[SymbolAliases] = None) -> str:
    """Render calls as a CarthaGene raw backcross data set.

    Marker and individual order are kept exactly as given. ``aliases``
    re-symbolises the calls when it differs from the aliases they carry.
    """
    target = aliases or calls.aliases
    target.validate()
    long_symbols = [symbol for symbol in target.call_symbols() if len(symbol) != 1]
    if long_symbols:
        raise UnknownSymbolAlias(f"CarthaGene needs single-character symbols, got {long_symbols}")

    frame = calls.calls
    if target != calls.aliases:
        source = calls.aliases
        mapping = dict(zip(source.call_symbols(), target.call_symbols()))
        frame = pd.DataFrame({col: frame[col].map(mapping) for col in frame.columns}, index=frame.index)

    lines = [RAW_HEADER, f"{len(calls.individuals)} {len(calls.markers)} 0 0"]
    for marker, row in frame.iterrows():
        lines.append(f"*{marker} {''.join(row.tolist())}")
    return "\n".join(lines) + "\n"


def read_raw(text: str | Iterable[str], individuals: Sequence[str]) -> pd.DataFrame:
    """Parse a raw backcross data set back into a marker x individual frame."""
    lines = [line for line in _lines(text) if line.strip()]
    if not lines or lines[0].strip().lower() != RAW_HEADER:
        raise UnparsableRecord(f"Expected '{RAW_HEADER}' header", line_no=1)
    counts = lines[1].split() if len(lines) > 1 else []
    if len(counts) < 2 or not all(_is_int(token) for token in counts):
        raise UnparsableRecord("Expected '<individuals> <markers> ...' counts line", line_no=2)
    n_ind, n_markers = int(counts[0]), int(counts[1])
    if n_ind != len(individuals):
        raise UnparsableRecord(f"Data set lists {n_ind} individuals but {len(individuals)} were supplied", line_no=2)

    rows: Dict[str, List[str]] = {}
    for line_no, line in enumerate(lines[2:], start=3):
        parts = line.split()
        if len(parts) != 2 or not parts[0].startswith("*"):
            raise UnparsableRecord(f"Expected '*marker calls', got {line!r}", line_no=line_no)
        name, calls = parts[0][1:], parts[1]
        if len(calls) != n_ind:
            raise UnparsableRecord(f"Marker {name} has {len(calls)} calls, expected {n_ind}", line_no=line_no)
        if name in rows:
            raise UnparsableRecord(f"Marker {name} listed twice", line_no=line_no)
        rows[name] = list(calls)
    if len(rows) != n_markers:
        raise UnparsableRecord(f"Data set declares {n_markers} markers but lists {len(rows)}")
    return pd.DataFrame.from_dict(rows, orient="index", columns=list(individuals))


def parse_marker_info(text: str | Iterable[str]) -> MarkerInfo:
    """Parse a marker listing into ``(locus, index, type)`` records.

    Data lines start with the integer marker index; anything else is treated
    as a header. ``:`` separators are ignored.
    """
    records = []
    seen_index = set()
    seen_name = set()
    for line_no, line in enumerate(_lines(text), start=1):
        tokens = [token for token in line.split() if token != ":"]
        if not tokens or not _is_int(tokens[0]):
            continue
        if len(tokens) != 3:
            raise UnparsableRecord(f"Expected 'index name type', got {len(tokens)} field(s)", line_no=line_no)
        index, name, marker_type = int(tokens[0]), tokens[1], tokens[2]
        if index in seen_index or name in seen_name:
            raise UnparsableRecord(f"Marker {name} (index {index}) listed twice", line_no=line_no)
        seen_index.add(index)
        seen_name.add(name)
        records.append((name, index, marker_type))
    return MarkerInfo(records)


def _parse_value(token: str, statistic: str, line_no: int) -> object:
    if token in MISSING_TOKENS:
        return pd.NA
    try:
        value = float(token)
    except ValueError:
        raise UnparsableRecord(f"Cannot read {statistic} value {token!r}", line_no=line_no) from None
    if value != value:
        return pd.NA
    if value < 0 or (statistic == "rf" and value > 1):
        raise UnparsableRecord(f"{statistic} value {value} out of range", line_no=line_no)
    return value


def parse_pairwise(
    text: str | Iterable[str],
    marker_info: MarkerInfo,
    statistic: str = "lod",
    layout: str = "upper",
) -> PairwiseMatrix:
    """Parse a pairwise block into a full symmetric matrix.

    Each data line is ``<row index> <values...>``; lines not starting with an
    integer are headers. ``upper`` rows list the columns right of the
    diagonal, ``lower`` rows the columns left of it; either may include the
    diagonal value, which is discarded. Self-pairs stay missing.
    """
    if statistic not in STATISTICS:
        raise ValueError(f"statistic must be one of {', '.join(STATISTICS)}")
    if layout not in LAYOUTS:
        raise ValueError(f"layout must be one of {', '.join(LAYOUTS)}")

    loci = marker_info.loci
    position = {locus: idx for idx, locus in enumerate(loci)}
    n = len(loci)
    cells: List[List[object]] = [[pd.NA] * n for _ in range(n)]
    seen_rows = set()

    for line_no, line in enumerate(_lines(text), start=1):
        tokens = line.split()
        if not tokens or not _is_int(tokens[0]):
            continue
        row_locus = marker_info.locus_at(int(tokens[0]))
        i = position[row_locus]
        if i in seen_rows:
            raise UnparsableRecord(f"Row for marker {row_locus} listed twice", line_no=line_no)
        seen_rows.add(i)
        values = [_parse_value(token, statistic, line_no) for token in tokens[1:]]

        if layout == "full":
            expected = {n: range(0, n)}
        elif layout == "upper":
            expected = {n - i - 1: range(i + 1, n), n - i: range(i, n)}
        else:
            expected = {i: range(0, i), i + 1: range(0, i + 1)}
        columns = expected.get(len(values))
        if columns is None:
            raise UnparsableRecord(
                f"Row for marker {row_locus} has {len(values)} value(s); "
                f"expected {' or '.join(str(k) for k in sorted(expected))} for a {layout} layout",
                line_no=line_no,
            )
        for j, value in zip(columns, values):
            if j == i:
                continue
            current = cells[i][j]
            if not pd.isna(current) and not pd.isna(value) and current != value:
                raise UnparsableRecord(
                    f"Asymmetric values for {row_locus}/{loci[j]}: {current} vs {value}", line_no=line_no
                )
            if pd.isna(value) and not pd.isna(current):
                continue
            cells[i][j] = value
            cells[j][i] = value

    frame = pd.DataFrame(cells, index=loci, columns=loci, dtype="Float64")
    return PairwiseMatrix(statistic, frame)


def parse_groups(text: str | Iterable[str], marker_info: MarkerInfo) -> LinkageGroupAssignment:
    """Parse ``<group> -- <marker> <marker> ...`` lines; markers by index or name."""
    records = []
    for line in _lines(text):
        match = _GROUP_LINE.match(line)
        if not match:
            continue
        group = int(match.group(1))
        for token in match.group(2).split():
            records.append((marker_info.resolve(token), group))
    return LinkageGroupAssignment(records)


def _strip_unit(tokens: List[str]) -> List[str]:
    cleaned = [token for token in tokens if token.lower() != "cm"]
    if cleaned and cleaned[-1].lower().endswith("cm"):
        cleaned[-1] = cleaned[-1][:-2]
    return cleaned


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def parse_ordered_map(
    text: str | Iterable[str],
    marker_info: Optional[MarkerInfo] = None,
    default_group: str = "1",
) -> List[OrderedMap]:
    """Parse per-group ``<locus> <cumulative distance>`` listings.

    ``Map <label>`` or ``Group <label>`` lines open a group. Lines whose last
    field is not numeric are headers. Cumulative distances must start at 0
    and never decrease.
    """
    groups: Dict[str, List[tuple]] = {}
    current = default_group
    for line_no, line in enumerate(_lines(text), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        header = _MAP_HEADER.match(stripped)
        if header:
            current = header.group(1)
            groups.setdefault(current, [])
            continue
        tokens = _strip_unit(stripped.split())
        if not tokens or not _is_number(tokens[-1]):
            continue
        if len(tokens) != 2:
            raise UnparsableRecord(f"Expected 'locus distance', got {len(tokens)} field(s)", line_no=line_no)
        locus = marker_info.resolve(tokens[0]) if marker_info is not None else tokens[0]
        groups.setdefault(current, []).append((locus, float(tokens[1])))
    return [OrderedMap.from_records(label, records) for label, records in groups.items() if records]


@dataclass
class CarthaGeneCommands:
    """Command lines for one CarthaGene grouping and ordering run."""

    dataset: Path
    distance_threshold: float = 0.3
    lod_threshold: float = 3.0
    pairwise_commands: Dict[str, str] = field(
        default_factory=lambda: {"lod": "mrklod2p", "rf": "mrkfr2p", "distance": "mrkdist2p"}
    )
    order_commands: Sequence[str] = ("nicemapd", "bestprintd")

    def load(self) -> str:
        return f"dsload {Path(self.dataset).as_posix()}"

    def marker_info(self) -> str:
        return "mrkinfo"

    def pairwise(self, statistic: str) -> str:
        try:
            return self.pairwise_commands[statistic]
        except KeyError:
            raise ValueError(f"No pairwise command configured for {statistic!r}") from None

    def group(self) -> str:
        return f"group {self.distance_threshold} {self.lod_threshold}"

    def order_group(self, group: int) -> List[str]:
        return [f"mrkselset [groupget {group}]", *self.order_commands]


__all__ = [
    "RAW_HEADER",
    "encode_raw",
    "read_raw",
    "parse_marker_info",
    "parse_pairwise",
    "parse_groups",
    "parse_ordered_map",
    "CarthaGeneCommands",
]
