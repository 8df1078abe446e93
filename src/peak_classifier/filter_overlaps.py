# src/peak_classifier/filter_overlaps.py
from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

import pandas as pd

from peak_classifier.errors import ConfigError
from peak_classifier.formats import open_text, read_overlaps, write_overlaps
from peak_classifier.records import OverlapRecord
from peak_classifier.utils import log, safe_pct


# ----------------------------
# Rank table
# ----------------------------
class RankTable:
    """
    Ordered feature names, highest priority first. Matching is exact and
    case-insensitive; rank() is the 0-based position or None.
    """

    def __init__(self, features: Sequence[str]):
        names = tuple(features)
        if not names:
            raise ConfigError("Feature priority list is empty.")
        self._names = names
        self._index: dict[str, int] = {}
        for i, name in enumerate(names):
            self._index.setdefault(name.lower(), i)

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def rank(self, feature_name: str) -> Optional[int]:
        return self._index.get(feature_name.lower())


@dataclass
class Accumulator:
    """Per-run tallies for rank resolution."""

    unique_peaks: int = 0
    feature_counts: list[int] = field(default_factory=list)

    @classmethod
    def for_table(cls, table: RankTable) -> "Accumulator":
        return cls(feature_counts=[0] * len(table))

    def count(self, rank: int) -> None:
        self.feature_counts[rank] += 1

    @property
    def kept(self) -> int:
        return sum(self.feature_counts)

    def summary_rows(self, table: RankTable) -> list[dict[str, object]]:
        rows: list[dict[str, object]] = [{"metric": "unique_peaks", "value": self.unique_peaks}]
        for name, n in zip(table, self.feature_counts):
            rows.append({"metric": f"overlaps_{name}", "value": n})
            rows.append({"metric": f"pct_{name}", "value": safe_pct(n, self.unique_peaks)})
        return rows

    def report_lines(self, table: RankTable) -> list[str]:
        lines = [f"Total unique peaks: {self.unique_peaks}"]
        for name, n in zip(table, self.feature_counts):
            lines.append(f"Overlaps with {name:<20s}: {n:7d} ({safe_pct(n, self.unique_peaks):2d}%)")
        return lines


# ----------------------------
# Resolution
# ----------------------------
def resolve_group(
    group: Iterable[OverlapRecord], table: RankTable
) -> tuple[Optional[OverlapRecord], Optional[int]]:
    """
    Pick the keeper among the records of one peak: the best-ranked match,
    first seen winning ties. Returns (None, None) if nothing matches.
    """
    keeper: Optional[OverlapRecord] = None
    best: Optional[int] = None
    for rec in group:
        r = table.rank(rec.feature_name)
        if r is None:
            continue
        if best is None or r < best:
            keeper, best = rec, r
    return keeper, best


def peak_groups(records: Iterable[OverlapRecord]) -> Iterator[list[OverlapRecord]]:
    """Contiguous runs of records sharing chromosome, peak start and peak end."""
    for _, grp in itertools.groupby(records, key=OverlapRecord.peak_key):
        yield list(grp)


def filter_records(
    records: Iterable[OverlapRecord], table: RankTable, acc: Optional[Accumulator] = None
) -> Iterator[OverlapRecord]:
    acc = acc if acc is not None else Accumulator.for_table(table)
    for group in peak_groups(records):
        acc.unique_peaks += 1
        keeper, rank = resolve_group(group, table)
        if keeper is not None and rank is not None:
            acc.count(rank)
            yield keeper


# ----------------------------
# Public API (CLI entrypoint)
# ----------------------------
def run(
    *,
    overlaps_path: str,
    output_path: str,
    features: Sequence[str],
    stats_out: Optional[str] = None,
    report: bool = True,
) -> Accumulator:
    """
    Reduce an overlap report to one row per peak: the overlapping feature
    ranked highest in `features`. Peaks with no listed feature are dropped.

    The input must keep all rows of a peak contiguous (the join output
    does). Writes the kept rows with the overlap header; with stats_out,
    also a metric/value TSV.
    """
    table = RankTable(features)
    acc = Accumulator.for_table(table)

    log(f"Filtering overlaps: {overlaps_path} (priority: {', '.join(table)})")
    t0 = time.time()
    with open_text(overlaps_path) as fin, open_text(output_path, "w") as fout:
        n = write_overlaps(fout, filter_records(read_overlaps(fin, source=overlaps_path), table, acc))
    log(f"Kept {n:,} of {acc.unique_peaks:,} peaks (took {time.time()-t0:.1f}s)")

    if report:
        for line in acc.report_lines(table):
            log(line)

    if stats_out:
        pd.DataFrame(acc.summary_rows(table)).to_csv(stats_out, sep="\t", index=False)
        log(f"Wrote stats: {stats_out}")
    return acc
