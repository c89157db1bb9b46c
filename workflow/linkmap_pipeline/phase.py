from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

import pandas as pd

from .adapters.backcross import split_marker_name
from .errors import AmbiguousGroupMapping
from .maps import LinkageGroupAssignment
from .segregation import INFORMATIVE_PARENTS, SegregationTable
from .utils import get_logger


logger = get_logger()

UNDEFINED = "undefined"


@dataclass
class PhaseResult:
    table: SegregationTable
    crosstab: pd.DataFrame
    reference_groups: Tuple[Set[int], Set[int]]

    @property
    def resolved(self) -> int:
        return int(self.table.frame["phase"].notna().sum())


class _ParentMarkers:
    """Group placement of each locus for one parent, split into direct and inverted markers."""

    def __init__(self, assignment: LinkageGroupAssignment, duplicate_symbol: str):
        self.assignment = assignment
        self.placements: Dict[str, Dict[bool, int]] = {}
        for marker in assignment.loci:
            group = assignment.group_of(marker)
            locus, inverted = split_marker_name(marker, duplicate_symbol)
            self.placements.setdefault(locus, {})[inverted] = group

    def default_reference(self, ordered_loci: Iterable[Tuple[str, str]]) -> Set[int]:
        reference: Dict[str, int] = {}
        for chromosome, locus in ordered_loci:
            if chromosome in reference:
                continue
            placement = self.placements.get(locus, {})
            if False in placement:
                reference[chromosome] = placement[False]
        return set(reference.values())

    def complement(self, reference: Set[int]) -> Set[int]:
        """Groups holding the inverted counterparts of markers in the reference groups."""
        groups = set()
        for placement in self.placements.values():
            for inverted, group in placement.items():
                other = placement.get(not inverted)
                if group in reference and other is not None and other not in reference:
                    groups.add(other)
        return groups

    def bit(self, locus: str, reference: Set[int], complement: Set[int]) -> Optional[int]:
        placement = self.placements.get(locus)
        if not placement:
            return None
        if len(placement) == 2 and placement[True] == placement[False]:
            raise AmbiguousGroupMapping(
                f"Locus {locus!r} and its inverted twin share linkage group {placement[True]}"
            )
        bits = set()
        for inverted, group in placement.items():
            if group in reference:
                bits.add(int(inverted))
            elif group in complement:
                bits.add(int(not inverted))
        if len(bits) > 1:
            raise AmbiguousGroupMapping(
                f"Locus {locus!r} and its inverted twin imply contradictory phases "
                f"(groups {placement[False]} and {placement[True]})"
            )
        # Fragments unlinked to any reference group carry no phase.
        return bits.pop() if bits else None


def reconcile_phase(
    table: SegregationTable,
    parent1_groups: LinkageGroupAssignment,
    parent2_groups: LinkageGroupAssignment,
    *,
    reference: Optional[Mapping[int, Iterable[int]]] = None,
    duplicate_symbol: str = "_d",
) -> PhaseResult:
    """Assign the two-character linkage phase of every locus once.

    Per parent a bit is 0 when the locus's direct marker sits in a reference
    group (or its inverted twin in a complement group, the group holding the
    twins of reference markers) and 1 when the placement is mirrored. Parents
    that are not informative for the segregation class contribute ``-``. A
    locus missing from the assignment of an informative parent, or placed only
    on fragments linked to neither kind of group, stays undefined.
    ``reference`` maps parent number (1 or 2) to its reference group labels;
    by default the group holding the direct marker of the first placed locus
    on each chromosome is the reference.
    """
    parents = (
        _ParentMarkers(parent1_groups, duplicate_symbol),
        _ParentMarkers(parent2_groups, duplicate_symbol),
    )
    meta = table.metadata().reset_index().sort_values(["chromosome", "position", "locus"], kind="mergesort")
    ordered = list(zip(meta["chromosome"].astype(str), meta["locus"]))

    references = []
    for number, markers in zip((1, 2), parents):
        if reference is not None and number in reference:
            references.append({int(group) for group in reference[number]})
        else:
            references.append(markers.default_reference(ordered))

    complements = [markers.complement(ref) for markers, ref in zip(parents, references)]

    phases: Dict[str, Optional[str]] = {}
    for locus in table.locus_ids:
        informative = INFORMATIVE_PARENTS[table.segregation(locus)]
        code = []
        for flag, markers, ref, comp in zip(informative, parents, references, complements):
            if not flag:
                code.append("-")
                continue
            bit = markers.bit(locus, ref, comp)
            if bit is None:
                code = None
                break
            code.append(str(bit))
        phases[locus] = "".join(code) if code is not None else None

    phased = table.with_phase(phases)
    frame = phased.frame
    crosstab = pd.crosstab(
        frame["segregation"],
        frame["phase"].astype(object).where(frame["phase"].notna(), UNDEFINED),
    )
    result = PhaseResult(phased, crosstab, (references[0], references[1]))
    logger.info("Linkage phase resolved for %d of %d loci", result.resolved, len(table))
    return result


__all__ = ["PhaseResult", "UNDEFINED", "reconcile_phase"]
