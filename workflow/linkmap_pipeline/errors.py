from __future__ import annotations

from typing import Iterable, Optional


class LinkageMapError(RuntimeError):
    """Base class for genotype encoding and engine output decoding failures."""


class MalformedInput(LinkageMapError):
    """Raised when a genotype matrix violates its structural contract."""


class IncompatibleParentCount(LinkageMapError):
    """Raised when the encoder is not given exactly two parents."""


class UnknownSymbolAlias(LinkageMapError):
    """Raised for unrecognised alias options or aliases clashing with allele symbols."""


class UnparsableRecord(LinkageMapError):
    """Raised when an engine output line does not have the expected shape."""

    def __init__(self, message: str, line_no: Optional[int] = None) -> None:
        if line_no is not None:
            message = f"line {line_no}: {message}"
        super().__init__(message)
        self.line_no = line_no


class UnknownLocusReference(LinkageMapError):
    """Raised when decoded output refers to loci outside the known locus set."""

    def __init__(self, message: str, loci: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.loci = tuple(loci)


class InvalidMapOrder(LinkageMapError):
    """Raised when cumulative map distances are not non-decreasing from zero."""

    def __init__(self, message: str, group: Optional[str] = None, record: Optional[int] = None) -> None:
        super().__init__(message)
        self.group = group
        self.record = record


class AmbiguousGroupMapping(LinkageMapError):
    """Raised when a locus is assigned to more than one group for a single parent."""


class EngineSessionError(LinkageMapError):
    """Raised when communication with an external mapping engine fails."""


__all__ = [
    "LinkageMapError",
    "MalformedInput",
    "IncompatibleParentCount",
    "UnknownSymbolAlias",
    "UnparsableRecord",
    "UnknownLocusReference",
    "InvalidMapOrder",
    "AmbiguousGroupMapping",
    "EngineSessionError",
]
