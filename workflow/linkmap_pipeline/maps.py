from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import AmbiguousGroupMapping, InvalidMapOrder, UnknownLocusReference
from .utils import ensure_parent


STATISTICS = ("rf", "lod", "distance")


@dataclass
class PairwiseMatrix:
    """Square locus x locus statistic matrix; ``pd.NA`` marks pairs with no estimate."""

    statistic: str
    values: pd.DataFrame

    def __post_init__(self) -> None:
        if self.statistic not in STATISTICS:
            raise ValueError(f"statistic must be one of {', '.join(STATISTICS)}")
        if list(self.values.index) != list(self.values.columns):
            raise ValueError("Pairwise matrix rows and columns must list the same loci in the same order")
        self.values = self.values.astype("Float64")

    @property
    def loci(self) -> List[str]:
        return list(self.values.index)

    def value(self, locus_a: str, locus_b: str) -> Optional[float]:
        cell = self.values.at[locus_a, locus_b]
        return None if pd.isna(cell) else float(cell)

    def is_symmetric(self) -> bool:
        missing = self.values.isna().to_numpy()
        if not np.array_equal(missing, missing.T):
            return False
        filled = self.values.fillna(0).to_numpy(dtype=float)
        return bool(np.array_equal(filled, filled.T))

    def missing_pairs(self) -> int:
        missing = self.values.isna().to_numpy()
        upper = np.triu_indices(len(self.values.index), k=1)
        return int(missing[upper].sum())

    def to_long(self) -> pd.DataFrame:
        loci = self.loci
        rows = []
        for i, locus_a in enumerate(loci):
            for locus_b in loci[i + 1:]:
                rows.append((locus_a, locus_b, self.values.at[locus_a, locus_b]))
        frame = pd.DataFrame(rows, columns=["locus_a", "locus_b", self.statistic])
        frame[self.statistic] = frame[self.statistic].astype("Float64")
        return frame


class MarkerInfo:
    """Engine marker listing: locus name, engine index and marker type/set."""

    def __init__(self, records: Iterable[Tuple[str, int, str]]):
        frame = pd.DataFrame(list(records), columns=["locus", "index", "type"])
        frame["index"] = frame["index"].astype("int64")
        self.frame = frame
        self._by_index: Dict[int, str] = dict(zip(frame["index"], frame["locus"]))
        self._names = set(frame["locus"])

    def __len__(self) -> int:
        return len(self.frame.index)

    @property
    def loci(self) -> List[str]:
        return list(self.frame["locus"])

    def locus_at(self, index: int) -> str:
        try:
            return self._by_index[index]
        except KeyError:
            raise UnknownLocusReference(f"No marker with index {index}", [str(index)]) from None

    def resolve(self, token: str) -> str:
        """Resolve a marker reference given either as engine index or as name."""
        if token in self._names:
            return token
        if token.isdigit() and int(token) in self._by_index:
            return self._by_index[int(token)]
        raise UnknownLocusReference(f"Unknown marker reference {token!r}", [token])


class LinkageGroupAssignment:
    """Locus to positive integer group label, as reported for a single parent."""

    def __init__(self, records: Iterable[Tuple[str, int]]):
        frame = pd.DataFrame(list(records), columns=["locus", "group"])
        frame["group"] = frame["group"].astype("int64")
        if (frame["group"] <= 0).any():
            raise ValueError("Linkage group labels must be positive integers")
        self.frame = frame

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "LinkageGroupAssignment":
        return cls(zip(frame["locus"].astype(str), frame["group"]))

    def __len__(self) -> int:
        return len(self.frame.index)

    def __contains__(self, locus: object) -> bool:
        return bool((self.frame["locus"] == locus).any())

    @property
    def loci(self) -> List[str]:
        return list(dict.fromkeys(self.frame["locus"]))

    def groups(self) -> List[int]:
        return sorted(self.frame["group"].unique().tolist())

    def members(self, group: int) -> List[str]:
        return self.frame.loc[self.frame["group"] == group, "locus"].tolist()

    def group_of(self, locus: str) -> Optional[int]:
        hits = self.frame.loc[self.frame["locus"] == locus, "group"].unique()
        if len(hits) == 0:
            return None
        if len(hits) > 1:
            raise AmbiguousGroupMapping(
                f"Locus {locus!r} is assigned to groups {sorted(hits.tolist())} for the same parent"
            )
        return int(hits[0])

    def restrict(self, groups: Iterable[int]) -> "LinkageGroupAssignment":
        keep = self.frame["group"].isin(list(groups))
        return LinkageGroupAssignment(self.frame.loc[keep].itertuples(index=False, name=None))

    def to_tsv(self, path: Path | str) -> None:
        path = Path(path)
        ensure_parent(path)
        self.frame.to_csv(path, sep="\t", index=False)

    @classmethod
    def read_tsv(cls, path: Path | str) -> "LinkageGroupAssignment":
        return cls.from_frame(pd.read_csv(path, sep="\t", dtype={"locus": str}))


@dataclass
class OrderedMap:
    """Loci of one linkage group in map order with cumulative distances."""

    group: str
    markers: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=["locus", "position"]))

    def __post_init__(self) -> None:
        self.markers = self.markers.loc[:, ["locus", "position"]].reset_index(drop=True)
        self.markers["position"] = self.markers["position"].astype(float)
        validate_map_order(self.markers["position"].tolist(), group=self.group)

    @classmethod
    def from_records(cls, group: str, records: Sequence[Tuple[str, float]]) -> "OrderedMap":
        return cls(group, pd.DataFrame(list(records), columns=["locus", "position"]))

    def __len__(self) -> int:
        return len(self.markers.index)

    @property
    def loci(self) -> List[str]:
        return self.markers["locus"].tolist()

    @property
    def length(self) -> float:
        return float(self.markers["position"].iloc[-1]) if len(self) else 0.0


def validate_map_order(positions: Sequence[float], group: Optional[str] = None) -> None:
    label = f" in group {group}" if group is not None else ""
    if not positions:
        return
    for idx, position in enumerate(positions):
        if not np.isfinite(position):
            raise InvalidMapOrder(
                f"Record {idx + 1}{label} has non-finite cumulative distance {position}",
                group=group,
                record=idx + 1,
            )
    if positions[0] != 0:
        raise InvalidMapOrder(
            f"First record{label} has cumulative distance {positions[0]}, expected 0",
            group=group,
            record=1,
        )
    for idx in range(1, len(positions)):
        if positions[idx] < positions[idx - 1]:
            raise InvalidMapOrder(
                f"Record {idx + 1}{label} has cumulative distance {positions[idx]} "
                f"below the previous {positions[idx - 1]}",
                group=group,
                record=idx + 1,
            )


def write_ordered_maps(maps: Iterable[OrderedMap], path: Path | str) -> None:
    path = Path(path)
    frames = []
    for ordered in maps:
        frame = ordered.markers.copy()
        frame.insert(0, "group", ordered.group)
        frames.append(frame)
    table = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(columns=["group", "locus", "position"])
    ensure_parent(path)
    table.to_csv(path, sep="\t", index=False, float_format="%.3f")


def read_ordered_maps(path: Path | str) -> List[OrderedMap]:
    table = pd.read_csv(path, sep="\t", dtype={"group": str, "locus": str})
    return [
        OrderedMap(str(group), markers[["locus", "position"]])
        for group, markers in table.groupby("group", sort=False)
    ]


__all__ = [
    "STATISTICS",
    "PairwiseMatrix",
    "MarkerInfo",
    "LinkageGroupAssignment",
    "OrderedMap",
    "validate_map_order",
    "write_ordered_maps",
    "read_ordered_maps",
]
