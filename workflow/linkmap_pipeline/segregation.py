from __future__ import annotations

from dataclasses import asdict, dataclass, field
from itertools import product
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .errors import IncompatibleParentCount, MalformedInput, UnknownSymbolAlias
from .genotypes import GenotypeMatrix
from .utils import ensure_parent


SEGREGATION_CLASSES = ("abxcd", "efxeg", "hkxhk", "lmxll", "nnxnp")

# Segregation letter assigned to each of the parental symbols A, B (parent 1)
# and C, D (parent 2) once the symbols are in canonical order.
CLASS_LETTERS: Dict[str, Tuple[str, str, str, str]] = {
    "abxcd": ("a", "b", "c", "d"),
    "efxeg": ("e", "f", "e", "g"),
    "hkxhk": ("h", "k", "h", "k"),
    "lmxll": ("l", "m", "l", "l"),
    "nnxnp": ("n", "n", "n", "p"),
}

# Which parents carry linkage phase information for each class.
INFORMATIVE_PARENTS: Dict[str, Tuple[bool, bool]] = {
    "abxcd": (True, True),
    "efxeg": (True, True),
    "hkxhk": (True, True),
    "lmxll": (True, False),
    "nnxnp": (False, True),
}

MISSING_CODE = "--"
ALIAS_OPTIONS = ("homozygous-symbol", "heterozygous-symbol", "duplicate-symbol", "missing-symbol")
SCHEMA_COLUMNS = ("chromosome", "position", "a", "b", "c", "d", "segregation", "phase")
_MISSING_ALLELES = {"", ".", "-", "N", "NA", "nan"}
_DOSE_ALLELES = {0: ("0", "0"), 1: ("0", "1"), 2: ("1", "1")}


@dataclass(frozen=True)
class SymbolAliases:
    """How testcross calls are written for downstream mapping engines."""

    homozygous: str = "A"
    heterozygous: str = "H"
    duplicate: str = "_d"
    missing: str = "-"

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, object]]) -> "SymbolAliases":
        if not mapping:
            return cls()
        unknown = [key for key in mapping if key not in ALIAS_OPTIONS]
        if unknown:
            raise UnknownSymbolAlias(
                f"Unrecognised alias option(s): {', '.join(map(str, unknown))}; "
                f"expected {', '.join(ALIAS_OPTIONS)}"
            )
        values = {key.split("-")[0]: str(value) for key, value in mapping.items()}
        aliases = cls(**values)
        aliases.validate()
        return aliases

    def as_mapping(self) -> Dict[str, str]:
        return {f"{key}-symbol": value for key, value in asdict(self).items()}

    def call_symbols(self) -> Tuple[str, str, str]:
        return (self.homozygous, self.heterozygous, self.missing)

    def validate(self) -> None:
        symbols = self.call_symbols()
        if any(not symbol for symbol in symbols) or not self.duplicate:
            raise UnknownSymbolAlias("Alias symbols must be non-empty strings")
        if len(set(symbols)) != len(symbols):
            raise UnknownSymbolAlias(f"Alias symbols must be distinct, got {symbols}")

    def check_locus(self, locus_id: str, symbols: Iterable[str]) -> None:
        in_use = set(symbols)
        clashes = sorted(in_use.intersection(self.call_symbols()))
        if clashes:
            raise UnknownSymbolAlias(
                f"Alias symbol(s) {', '.join(clashes)} collide with allele symbols at locus {locus_id!r}"
            )


@dataclass
class FilterSummary:
    total: int = 0
    kept: int = 0
    non_segregating: int = 0
    missing_parent: int = 0
    unclassified: int = 0
    incompatible_calls: int = 0
    class_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def dropped(self) -> int:
        return self.non_segregating + self.missing_parent + self.unclassified

    def as_frame(self) -> pd.DataFrame:
        rows = [
            ("total", self.total),
            ("kept", self.kept),
            ("dropped_non_segregating", self.non_segregating),
            ("dropped_missing_parent", self.missing_parent),
            ("dropped_unclassified", self.unclassified),
            ("incompatible_offspring_calls", self.incompatible_calls),
        ]
        rows.extend((f"class_{name}", self.class_counts.get(name, 0)) for name in SEGREGATION_CLASSES)
        return pd.DataFrame(rows, columns=["metric", "value"])


class SegregationTable:
    """Per-locus parental symbols, segregation class, phase and offspring codes."""

    def __init__(self, frame: pd.DataFrame, offspring: Sequence[str]):
        missing = [col for col in SCHEMA_COLUMNS if col not in frame.columns]
        if missing:
            raise MalformedInput(f"Segregation table lacks column(s): {', '.join(missing)}")
        unknown_ind = [ind for ind in offspring if ind not in frame.columns]
        if unknown_ind:
            raise MalformedInput(f"Segregation table lacks offspring column(s): {', '.join(unknown_ind)}")
        bad_class = ~frame["segregation"].isin(SEGREGATION_CLASSES)
        if bad_class.any():
            raise MalformedInput(
                f"Unknown segregation class {frame.loc[bad_class, 'segregation'].iloc[0]!r}"
            )
        self._frame = frame.loc[:, list(SCHEMA_COLUMNS) + list(offspring)].copy()
        self._frame.index.name = "locus"
        self._offspring = list(offspring)

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def offspring(self) -> List[str]:
        return list(self._offspring)

    @property
    def locus_ids(self) -> List[str]:
        return list(self._frame.index)

    def __len__(self) -> int:
        return len(self._frame.index)

    def segregation(self, locus_id: str) -> str:
        return str(self._frame.at[locus_id, "segregation"])

    def phase(self, locus_id: str) -> Optional[str]:
        value = self._frame.at[locus_id, "phase"]
        return None if pd.isna(value) else str(value)

    def calls(self) -> pd.DataFrame:
        return self._frame[self._offspring].copy()

    def metadata(self) -> pd.DataFrame:
        return self._frame[["chromosome", "position"]].copy()

    def class_counts(self) -> pd.Series:
        counts = self._frame["segregation"].value_counts()
        return counts.reindex(SEGREGATION_CLASSES, fill_value=0)

    def for_parent(self, parent: int) -> "SegregationTable":
        """Loci that segregate for ``parent`` (1 or 2) alone, i.e. pseudo-testcross markers."""
        if parent not in (1, 2):
            raise ValueError("parent must be 1 or 2")
        wanted = "lmxll" if parent == 1 else "nnxnp"
        subset = self._frame[self._frame["segregation"] == wanted]
        return SegregationTable(subset, self._offspring)

    def with_phase(self, phases: Mapping[str, Optional[str]]) -> "SegregationTable":
        assigned = self._frame["phase"].notna()
        if assigned.any():
            raise ValueError("Linkage phase has already been assigned for this table")
        unknown = [locus for locus in phases if locus not in self._frame.index]
        if unknown:
            raise MalformedInput(f"Phase given for unknown locus/loci: {', '.join(unknown[:5])}")
        frame = self._frame.copy()
        frame["phase"] = pd.Series(
            [phases.get(locus) for locus in frame.index], index=frame.index, dtype="string"
        )
        return SegregationTable(frame, self._offspring)

    def to_tsv(self, path: Path | str) -> None:
        path = Path(path)
        ensure_parent(path)
        self._frame.to_csv(path, sep="\t", na_rep="NA")

    @classmethod
    def read_tsv(cls, path: Path | str) -> "SegregationTable":
        frame = pd.read_csv(
            path,
            sep="\t",
            dtype=str,
            keep_default_na=False,
            na_values={"phase": ["NA"]},
        ).set_index("locus")
        frame["position"] = pd.to_numeric(frame["position"]).astype("int64")
        frame["phase"] = frame["phase"].astype("string")
        offspring = [col for col in frame.columns if col not in SCHEMA_COLUMNS]
        return cls(frame, offspring)


@dataclass
class EncodingResult:
    table: SegregationTable
    summary: FilterSummary


def classify_symbols(a: str, b: str, c: str, d: str) -> Optional[Tuple[str, Tuple[str, str, str, str]]]:
    """Return the segregation class and the canonically ordered symbols.

    Alleles may be swapped within a parent to reach a canonical pattern.
    ``None`` means the locus does not segregate in one of the five classes.
    """
    for p1, p2 in product(((a, b), (b, a)), ((c, d), (d, c))):
        symbols = p1 + p2
        seg = _match_class(*symbols)
        if seg is not None:
            return seg, symbols
    return None


def _match_class(a: str, b: str, c: str, d: str) -> Optional[str]:
    if len({a, b, c, d}) == 4:
        return "abxcd"
    if a == c and b == d and a != b:
        return "hkxhk"
    if a == c == d and b != a:
        return "lmxll"
    if a == b == c and d != a:
        return "nnxnp"
    if a == c and len({a, b, d}) == 3:
        return "efxeg"
    return None


def offspring_codes(segregation: str, symbols: Tuple[str, str, str, str]) -> Dict[Tuple[str, str], str]:
    """Map each possible offspring allele pair (sorted) to its segregation code."""
    letters = CLASS_LETTERS[segregation]
    codes: Dict[Tuple[str, str], str] = {}
    for i, j in product((0, 1), (2, 3)):
        pair = tuple(sorted((symbols[i], symbols[j])))
        codes[pair] = "".join(sorted(letters[i] + letters[j]))
    return codes


def _parse_alleles(value: object) -> Optional[Tuple[str, str]]:
    if value is None or (not isinstance(value, (tuple, list)) and pd.isna(value)):
        return None
    if isinstance(value, (tuple, list)):
        parts = [str(item) for item in value]
    else:
        text = str(value).strip()
        parts = text.replace("|", "/").split("/")
    if len(parts) != 2:
        raise MalformedInput(f"Expected a two-allele call, got {value!r}")
    if any(part.strip() in _MISSING_ALLELES for part in parts):
        return None
    return parts[0].strip(), parts[1].strip()


def encode_allele_calls(
    alleles: pd.DataFrame,
    loci: pd.DataFrame,
    parents: Sequence[str],
    aliases: Optional[SymbolAliases] = None,
) -> EncodingResult:
    """Encode allele-pair calls (``"x/y"`` strings or tuples) for two parents and offspring.

    ``alleles`` has loci as rows and individuals as columns; ``loci`` holds
    ``chromosome`` and ``position`` for each locus.
    """
    parents = list(parents)
    if len(parents) != 2:
        raise IncompatibleParentCount(f"Exactly two parents are required, got {len(parents)}")
    absent = [parent for parent in parents if parent not in alleles.columns]
    if absent:
        raise MalformedInput(f"Parent(s) not found in genotype table: {', '.join(absent)}")
    if aliases is not None:
        aliases.validate()
    lacking = [col for col in ("chromosome", "position") if col not in loci.columns]
    if lacking:
        raise MalformedInput(f"Locus metadata lacks column(s): {', '.join(lacking)}")
    unplaced = [str(locus_id) for locus_id in alleles.index if locus_id not in loci.index]
    if unplaced:
        raise MalformedInput(f"No locus metadata for: {', '.join(unplaced[:5])}")

    offspring = [ind for ind in alleles.columns if ind not in parents]
    summary = FilterSummary(total=len(alleles.index))
    records: List[Dict[str, object]] = []
    index: List[str] = []

    for locus_id in alleles.index:
        p1 = _parse_alleles(alleles.at[locus_id, parents[0]])
        p2 = _parse_alleles(alleles.at[locus_id, parents[1]])
        if p1 is None or p2 is None:
            summary.missing_parent += 1
            continue
        classified = classify_symbols(*p1, *p2)
        if classified is None:
            if p1[0] == p1[1] and p2[0] == p2[1]:
                summary.non_segregating += 1
            else:
                summary.unclassified += 1
            continue

        seg, symbols = classified
        if aliases is not None:
            aliases.check_locus(locus_id, set(symbols) | set(CLASS_LETTERS[seg]))
        lookup = offspring_codes(seg, symbols)

        record: Dict[str, object] = {
            "chromosome": loci.at[locus_id, "chromosome"],
            "position": loci.at[locus_id, "position"],
            "a": symbols[0],
            "b": symbols[1],
            "c": symbols[2],
            "d": symbols[3],
            "segregation": seg,
            "phase": pd.NA,
        }
        for ind in offspring:
            call = _parse_alleles(alleles.at[locus_id, ind])
            if call is None:
                record[ind] = MISSING_CODE
                continue
            code = lookup.get(tuple(sorted(call)))
            if code is None:
                summary.incompatible_calls += 1
                code = MISSING_CODE
            record[ind] = code
        records.append(record)
        index.append(locus_id)

    frame = pd.DataFrame(records, index=pd.Index(index, name="locus"), columns=list(SCHEMA_COLUMNS) + offspring)
    frame["phase"] = frame["phase"].astype("string")
    table = SegregationTable(frame, offspring)
    summary.kept = len(table)
    summary.class_counts = {name: int(count) for name, count in table.class_counts().items()}
    return EncodingResult(table=table, summary=summary)


def encode_segregation(
    matrix: GenotypeMatrix,
    parents: Sequence[str],
    aliases: Optional[SymbolAliases] = None,
) -> EncodingResult:
    """Classify biallelic allele-dose loci using the two named parents.

    Doses are read as allele pairs over the symbols ``0`` (reference) and
    ``1`` (alternate), so only ``hkxhk``, ``lmxll`` and ``nnxnp`` can arise.
    """
    parents = list(parents)
    if len(parents) != 2:
        raise IncompatibleParentCount(f"Exactly two parents are required, got {len(parents)}")
    doses = matrix.doses
    alleles = pd.DataFrame(
        {
            ind: [None if pd.isna(value) else _DOSE_ALLELES[int(value)] for value in doses[ind]]
            for ind in doses.columns
        },
        index=doses.index,
        dtype=object,
    )
    return encode_allele_calls(alleles, matrix.loci, parents, aliases)


__all__ = [
    "SEGREGATION_CLASSES",
    "INFORMATIVE_PARENTS",
    "MISSING_CODE",
    "SymbolAliases",
    "FilterSummary",
    "SegregationTable",
    "EncodingResult",
    "classify_symbols",
    "offspring_codes",
    "encode_allele_calls",
    "encode_segregation",
]
