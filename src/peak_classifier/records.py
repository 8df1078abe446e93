# src/peak_classifier/records.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

STRANDS = ("+", "-", ".")

UPSTREAM_BEYOND = "upstream-beyond"
NO_OVERLAP = -1


# ----------------------------
# Intervals
# ----------------------------
@dataclass(frozen=True)
class Interval:
    """
    One BED-like record. Coordinates are in whatever convention the record
    was parsed in; after augmentation everything is 0-based half-open.
    """

    chrom: str
    start: int
    end: int
    name: str = "."
    strand: str = "."  # '+', '-' or '.' (unknown)
    score: Optional[float] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    def midpoint(self) -> "Interval":
        """Collapse to the single base at the middle of the interval."""
        mid = (self.start + self.end) // 2
        return replace(self, start=mid, end=mid + 1)


@dataclass(frozen=True)
class AnnotationRecord:
    chrom: str
    start: int
    end: int
    feature_type: str
    strand: str = "."
    score: str = "."
    ordinal: Optional[int] = None  # exon/intron number within its transcript
    clamped: bool = False          # upstream band cut off at position 0

    @property
    def name(self) -> str:
        return self.feature_type

    @property
    def length(self) -> int:
        return self.end - self.start

    def to_bed_fields(self) -> list[str]:
        score = str(self.ordinal) if self.ordinal is not None else self.score
        return [self.chrom, str(self.start), str(self.end), self.feature_type, score, self.strand]


class _BlockSeparator:
    """Marks the end of one gene's run of records (GFF3 '###')."""

    def __repr__(self) -> str:
        return "BLOCK_SEPARATOR"


BLOCK_SEPARATOR = _BlockSeparator()


# ----------------------------
# Raw GFF3 rows (1-based closed)
# ----------------------------
@dataclass(frozen=True)
class GffRecord:
    seqid: str
    source: str
    feature_type: str
    start: int
    end: int
    score: str
    strand: str
    phase: str
    attributes: str


# ----------------------------
# Join output
# ----------------------------
OVERLAP_HEADER = ["#Chr", "P-start", "P-end", "F-start", "F-end", "F-name", "Strand", "Overlap"]


@dataclass(frozen=True)
class OverlapRecord:
    chrom: str
    peak_start: int
    peak_end: int
    feature_start: int
    feature_end: int
    feature_name: str
    strand: str
    overlap: int

    @classmethod
    def no_overlap(cls, peak: Interval) -> "OverlapRecord":
        return cls(
            chrom=peak.chrom,
            peak_start=peak.start,
            peak_end=peak.end,
            feature_start=NO_OVERLAP,
            feature_end=NO_OVERLAP,
            feature_name=UPSTREAM_BEYOND,
            strand=".",
            overlap=NO_OVERLAP,
        )

    @property
    def is_sentinel(self) -> bool:
        return self.overlap == NO_OVERLAP

    def peak_key(self) -> tuple[str, int, int]:
        return (self.chrom, self.peak_start, self.peak_end)

    def to_fields(self) -> list[str]:
        return [
            self.chrom,
            str(self.peak_start),
            str(self.peak_end),
            str(self.feature_start),
            str(self.feature_end),
            self.feature_name,
            self.strand,
            str(self.overlap),
        ]
