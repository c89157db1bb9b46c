from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import MalformedInput
from .utils import ensure_parent


VALID_DOSES = (0, 1, 2)
DEFAULT_MISSING_CODES = ("9", "-1", "NA", "na", "NaN", "nan", "-", ".", "")
METADATA_COLUMNS = ("chromosome", "position")


@dataclass(frozen=True)
class Locus:
    locus_id: str
    chromosome: str
    position: int


class GenotypeMatrix:
    """Allele-dose calls (0, 1, 2 or missing) for loci x individuals.

    Doses are held in a nullable ``Int8`` frame with loci as rows and
    individuals as columns; ``pd.NA`` marks a missing call. Locus metadata
    (chromosome and base-pair position) is indexed by locus identifier and
    must cover every locus in the dose frame.
    """

    def __init__(self, doses: pd.DataFrame, loci: pd.DataFrame):
        self._doses = _validate_doses(doses)
        self._loci = _validate_loci(loci, self._doses.index)

    @classmethod
    def from_array(
        cls,
        values: Sequence[Sequence[object]] | np.ndarray,
        loci: Sequence[Locus],
        individuals: Sequence[str],
    ) -> "GenotypeMatrix":
        frame = pd.DataFrame(
            np.asarray(values, dtype=object),
            index=[locus.locus_id for locus in loci],
            columns=list(individuals),
        )
        metadata = pd.DataFrame(
            {
                "chromosome": [locus.chromosome for locus in loci],
                "position": [locus.position for locus in loci],
            },
            index=[locus.locus_id for locus in loci],
        )
        return cls(frame, metadata)

    @property
    def doses(self) -> pd.DataFrame:
        return self._doses.copy()

    @property
    def loci(self) -> pd.DataFrame:
        return self._loci.copy()

    @property
    def individuals(self) -> List[str]:
        return list(self._doses.columns)

    @property
    def locus_ids(self) -> List[str]:
        return list(self._doses.index)

    def __len__(self) -> int:
        return len(self._doses.index)

    def locus(self, locus_id: str) -> Locus:
        if locus_id not in self._loci.index:
            raise MalformedInput(f"No metadata for locus {locus_id!r}")
        row = self._loci.loc[locus_id]
        return Locus(locus_id, str(row["chromosome"]), int(row["position"]))

    def dose(self, individual: str, locus_id: str) -> Optional[int]:
        self._check_keys([individual], [locus_id])
        value = self._doses.at[locus_id, individual]
        if pd.isna(value):
            return None
        return int(value)

    def is_missing(self, individual: str, locus_id: str) -> bool:
        return self.dose(individual, locus_id) is None

    def missing_mask(self) -> pd.DataFrame:
        return self._doses.isna()

    def missing_rate(self, axis: str = "locus") -> pd.Series:
        if axis not in ("locus", "individual"):
            raise ValueError("axis must be 'locus' or 'individual'")
        return self.missing_mask().mean(axis=1 if axis == "locus" else 0)

    def rows(self, individuals: Iterable[str]) -> pd.DataFrame:
        """Calls for the given individuals, one row per individual."""
        selected = list(individuals)
        self._check_keys(selected, [])
        return self._doses[selected].transpose()

    def columns(self, loci: Iterable[str]) -> pd.DataFrame:
        """Calls at the given loci, one column per locus."""
        selected = list(loci)
        self._check_keys([], selected)
        return self._doses.loc[selected].transpose()

    def subset(
        self,
        individuals: Optional[Iterable[str]] = None,
        loci: Optional[Iterable[str]] = None,
    ) -> "GenotypeMatrix":
        cols = list(individuals) if individuals is not None else self.individuals
        rows = list(loci) if loci is not None else self.locus_ids
        self._check_keys(cols, rows)
        return GenotypeMatrix(self._doses.loc[rows, cols], self._loci.loc[rows])

    def _check_keys(self, individuals: Iterable[str], loci: Iterable[str]) -> None:
        unknown_ind = [ind for ind in individuals if ind not in self._doses.columns]
        if unknown_ind:
            raise KeyError(f"Unknown individual(s): {', '.join(map(str, unknown_ind))}")
        unknown_loci = [loc for loc in loci if loc not in self._doses.index]
        if unknown_loci:
            raise MalformedInput(f"No metadata for locus/loci: {', '.join(map(str, unknown_loci))}")


def _validate_doses(doses: pd.DataFrame) -> pd.DataFrame:
    if doses.index.has_duplicates:
        dupes = doses.index[doses.index.duplicated()].unique().tolist()
        raise MalformedInput(f"Duplicate locus identifiers: {dupes[:5]}")
    if doses.columns.has_duplicates:
        dupes = doses.columns[doses.columns.duplicated()].unique().tolist()
        raise MalformedInput(f"Duplicate individual identifiers: {dupes[:5]}")

    frame = doses.copy()
    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)
    converted = {}
    for column in frame.columns:
        values = frame[column].astype(object).where(frame[column].notna(), None)
        try:
            numeric = pd.to_numeric(values, errors="raise")
        except (TypeError, ValueError) as exc:
            raise MalformedInput(f"Non-numeric dose for individual {column!r}: {exc}") from exc
        bad = numeric.notna() & ~numeric.isin(VALID_DOSES)
        if bad.any():
            locus_id = bad[bad].index[0]
            raise MalformedInput(
                f"Dose {numeric[locus_id]!r} for individual {column!r} at locus {locus_id!r} "
                "is outside {0, 1, 2, missing}"
            )
        converted[column] = numeric.astype("Int8")
    return pd.DataFrame(converted, index=frame.index, columns=frame.columns)


def _validate_loci(loci: pd.DataFrame, referenced: pd.Index) -> pd.DataFrame:
    missing_cols = [col for col in METADATA_COLUMNS if col not in loci.columns]
    if missing_cols:
        raise MalformedInput(f"Locus metadata lacks column(s): {', '.join(missing_cols)}")
    metadata = loci.loc[:, list(METADATA_COLUMNS)].copy()
    metadata.index = metadata.index.astype(str)
    if metadata.index.has_duplicates:
        raise MalformedInput("Locus metadata contains duplicate locus identifiers")

    absent = referenced.difference(metadata.index)
    if not absent.empty:
        raise MalformedInput(f"No metadata for locus/loci: {', '.join(absent[:5])}")
    metadata = metadata.loc[referenced]

    incomplete = metadata[metadata.isna().any(axis=1)]
    if not incomplete.empty:
        raise MalformedInput(f"Incomplete metadata for locus/loci: {', '.join(incomplete.index[:5])}")
    positions = pd.to_numeric(metadata["position"], errors="coerce")
    if positions.isna().any() or (positions % 1 != 0).any():
        raise MalformedInput("Locus positions must be integer base-pair coordinates")
    metadata["chromosome"] = metadata["chromosome"].astype(str)
    metadata["position"] = positions.astype("int64")
    return metadata


def read_genotype_table(
    path: Path | str,
    *,
    sep: str = "\t",
    locus_column: str = "locus",
    chromosome_column: str = "chromosome",
    position_column: str = "position",
    missing_codes: Iterable[str] = DEFAULT_MISSING_CODES,
) -> GenotypeMatrix:
    """Read a tabular genotype file: metadata columns then one dose column per individual."""
    if sep in (" ", "whitespace"):
        sep = r"\s+"
    raw = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False)
    required = [locus_column, chromosome_column, position_column]
    absent = [col for col in required if col not in raw.columns]
    if absent:
        raise MalformedInput(f"Column(s) {', '.join(absent)} not found in {path}")

    raw = raw.set_index(locus_column)
    metadata = raw[[chromosome_column, position_column]].rename(
        columns={chromosome_column: "chromosome", position_column: "position"}
    )
    metadata = metadata.replace("", np.nan)
    calls = raw.drop(columns=[chromosome_column, position_column])

    missing = set(missing_codes)
    calls = calls.apply(lambda col: col.str.strip())
    calls = calls.apply(lambda col: col.where(~col.str.endswith(".0"), col.str[:-2]))
    calls = calls.mask(calls.isin(missing))
    return GenotypeMatrix(calls, metadata)


def write_genotype_table(matrix: GenotypeMatrix, path: Path | str, *, missing_code: str = "NA") -> None:
    path = Path(path)
    frame = matrix.doses.astype(object).where(matrix.doses.notna(), missing_code)
    table = pd.concat([matrix.loci, frame], axis=1)
    table.index.name = "locus"
    ensure_parent(path)
    table.to_csv(path, sep="\t")


__all__ = ["Locus", "GenotypeMatrix", "read_genotype_table", "write_genotype_table"]
