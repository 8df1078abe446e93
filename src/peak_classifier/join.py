# src/peak_classifier/join.py
from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union

from peak_classifier.config import ClassifierConfig, lexical_chrom_key
from peak_classifier.errors import CollaboratorError, MalformedRecordError
from peak_classifier.formats import SortChecker, open_text, read_bed, write_bed3
from peak_classifier.records import AnnotationRecord, Interval, OverlapRecord
from peak_classifier.utils import log

Feature = Union[Interval, AnnotationRecord]
ChromKey = Callable[[str], object]


# ----------------------------
# Overlap geometry (0-based half-open on both sides)
# ----------------------------
def compare(peak: Interval, feature: Feature, chrom_key: ChromKey = lexical_chrom_key) -> int:
    """
    -1 if the peak lies entirely before the feature, 1 if entirely after,
    0 if they share at least one base.
    """
    if peak.chrom != feature.chrom:
        return -1 if chrom_key(peak.chrom) < chrom_key(feature.chrom) else 1  # type: ignore[operator]
    if peak.end <= feature.start:
        return -1
    if peak.start >= feature.end:
        return 1
    return 0


def overlap_length(peak: Interval, feature: Feature) -> int:
    return max(0, min(peak.end, feature.end) - max(peak.start, feature.start))


@dataclass(frozen=True)
class OverlapThresholds:
    min_peak: float
    min_feature: float
    either: bool = False

    @classmethod
    def from_config(cls, config: ClassifierConfig) -> "OverlapThresholds":
        return cls(config.min_peak_overlap, config.min_gff_overlap, config.min_either_overlap)

    def accepts(self, overlap: int, peak_len: int, feature_len: int) -> bool:
        if overlap <= 0:
            return False
        peak_ok = overlap / peak_len >= self.min_peak
        feature_ok = overlap / feature_len >= self.min_feature
        return (peak_ok or feature_ok) if self.either else (peak_ok and feature_ok)


# ----------------------------
# Join counters
# ----------------------------
@dataclass
class JoinStats:
    peaks: int = 0
    features: int = 0
    overlaps: int = 0
    unmatched_peaks: int = 0

    def as_rows(self) -> list[dict[str, int]]:
        return [{"metric": f"join_{k}", "value": v} for k, v in vars(self).items()]


# ----------------------------
# Joiner capability
# ----------------------------
class Joiner(ABC):
    """
    Join a sorted peak stream against a sorted augmented feature stream.

    Every peak yields one OverlapRecord per qualifying feature, or a single
    'upstream-beyond' record with overlap -1 when none qualifies. Both
    inputs must be sorted by chromosome (config.chrom_order) then start;
    otherwise UnsortedInputError is raised.
    """

    def __init__(self, config: ClassifierConfig, stats: Optional[JoinStats] = None):
        self.config = config
        self.thresholds = OverlapThresholds.from_config(config)
        self.chrom_key = config.chrom_key
        self.stats = stats if stats is not None else JoinStats()

    def _checked_peaks(self, peaks: Iterable[Interval]) -> Iterator[Interval]:
        # one peak of lookahead: a peak is released only after its successor
        # passed the order check, so an out-of-order pair emits nothing
        checker = SortChecker("Peak stream", self.chrom_key)
        prev: Optional[Interval] = None
        for peak in peaks:
            checker.check(peak.chrom, peak.start)
            self.stats.peaks += 1
            if prev is not None:
                yield prev
            prev = peak
        if prev is not None:
            yield prev

    def _query(self, peak: Interval) -> Interval:
        return peak.midpoint() if self.config.midpoints_only else peak

    @abstractmethod
    def join(self, peaks: Iterable[Interval], features: Iterable[Feature]) -> Iterator[OverlapRecord]:
        raise NotImplementedError


class InternalMergeJoin(Joiner):
    """
    Single forward pass over both streams. Features that may still overlap
    the current or a later peak are held in a window; anything ending at or
    before the current peak's start is evicted, since later peaks start no
    earlier.
    """

    def join(self, peaks: Iterable[Interval], features: Iterable[Feature]) -> Iterator[OverlapRecord]:
        key = self.chrom_key
        feature_checker = SortChecker("Feature stream", key)
        feature_iter = iter(features)
        pending: Optional[Feature] = None
        exhausted = False
        window: list[Feature] = []
        window_chrom: Optional[str] = None

        def advance() -> Optional[Feature]:
            nonlocal exhausted
            for f in feature_iter:
                feature_checker.check(f.chrom, f.start)
                self.stats.features += 1
                return f
            exhausted = True
            return None

        pending = advance()

        for peak in self._checked_peaks(peaks):
            q = self._query(peak)
            peak_key = key(peak.chrom)

            if window_chrom != peak.chrom:
                window = []
                window_chrom = peak.chrom
            else:
                window = [f for f in window if f.end > peak.start]

            while pending is not None:
                if pending.chrom != peak.chrom:
                    if key(pending.chrom) < peak_key:  # type: ignore[operator]
                        pending = advance()
                        continue
                    break
                if pending.start >= max(q.end, peak.end):
                    break
                if pending.end > peak.start:
                    window.append(pending)
                pending = advance()

            hits = 0
            for f in window:
                if compare(q, f, key) != 0:
                    continue
                ov = overlap_length(q, f)
                if not self.thresholds.accepts(ov, q.length, f.length):
                    continue
                hits += 1
                self.stats.overlaps += 1
                yield OverlapRecord(
                    chrom=q.chrom,
                    peak_start=q.start,
                    peak_end=q.end,
                    feature_start=f.start,
                    feature_end=f.end,
                    feature_name=f.name,
                    strand=f.strand,
                    overlap=ov,
                )
            if not hits:
                self.stats.unmatched_peaks += 1
                yield OverlapRecord.no_overlap(q)

        # drain so an unsorted tail of the feature stream is still reported
        while not exhausted:
            advance()


class DelegatedJoin(Joiner):
    """
    Hand the join to `bedtools intersect -wao -sorted`. Peaks are validated
    and (optionally) collapsed to midpoints into a temporary BED3 first;
    `features` must be the path of the sorted augmented BED file.
    """

    def command(self, peaks_path: str, features_path: str) -> list[str]:
        cmd = [
            self.config.bedtools, "intersect",
            "-a", peaks_path,
            "-b", features_path,
            "-wao",
            "-f", repr(self.config.min_peak_overlap),
            "-F", repr(self.config.min_gff_overlap),
        ]
        # bedtools' sweep expects lexical chromosome order without a genome
        # file, and collapsed midpoints need not be sorted
        if self.config.chrom_order == "lexical" and not self.config.midpoints_only:
            cmd.append("-sorted")
        if self.config.min_either_overlap:
            cmd.append("-e")
        return cmd

    def join(self, peaks: Iterable[Interval], features: Iterable[Feature]) -> Iterator[OverlapRecord]:
        if not isinstance(features, (str, os.PathLike)):
            raise TypeError("DelegatedJoin needs the path of the sorted augmented BED file.")
        features_path = str(features)
        if shutil.which(self.config.bedtools) is None:
            raise CollaboratorError(f"'{self.config.bedtools}' was not found on PATH.")
        self._check_features(features_path)

        fd, peaks_path = tempfile.mkstemp(prefix="peaks-", suffix=".bed")
        os.close(fd)
        try:
            with open_text(peaks_path, "w") as fh:
                write_bed3(fh, (self._query(p) for p in self._checked_peaks(peaks)))
            yield from self._run(peaks_path, features_path)
        finally:
            os.unlink(peaks_path)

    def _check_features(self, features_path: str) -> None:
        # same ordering error and feature count as the internal join
        checker = SortChecker("Feature stream", self.chrom_key)
        with open_text(features_path) as fh:
            for f in read_bed(fh, source=features_path):
                checker.check(f.chrom, f.start)
                self.stats.features += 1

    def _run(self, peaks_path: str, features_path: str) -> Iterator[OverlapRecord]:
        cmd = self.command(peaks_path, features_path)
        log(f"Running: {' '.join(cmd)}")
        with tempfile.TemporaryFile(mode="w+") as err:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=err, text=True)
            except OSError as e:
                raise CollaboratorError(f"Cannot run {cmd[0]}: {e}") from e

            with proc:
                for line_no, line in enumerate(proc.stdout, start=1):
                    yield self._parse(line, line_no)
                rc = proc.wait()
            err.seek(0)
            stderr = err.read()
        if rc != 0:
            raise CollaboratorError(f"bedtools intersect failed (exit {rc}): {stderr.strip()}")

    def _parse(self, line: str, line_no: int) -> OverlapRecord:
        # peak BED3 | feature BED6 | overlap
        f = line.rstrip("\n").split("\t")
        if len(f) != 10:
            raise MalformedRecordError("bedtools intersect", line_no, f"expected 10 fields, found {len(f)}", line)
        try:
            peak = Interval(f[0], int(f[1]), int(f[2]))
            feature_start = int(f[4])
            feature_end = int(f[5])
            overlap = int(f[9])
        except ValueError:
            raise MalformedRecordError("bedtools intersect", line_no, "non-numeric coordinate", line) from None

        if feature_start < 0 or overlap <= 0:
            self.stats.unmatched_peaks += 1
            return OverlapRecord.no_overlap(peak)
        self.stats.overlaps += 1
        return OverlapRecord(
            chrom=peak.chrom,
            peak_start=peak.start,
            peak_end=peak.end,
            feature_start=feature_start,
            feature_end=feature_end,
            feature_name=f[6],
            strand=f[8],
            overlap=overlap,
        )


def make_joiner(config: ClassifierConfig, stats: Optional[JoinStats] = None) -> Joiner:
    if config.join == "bedtools":
        return DelegatedJoin(config, stats)
    return InternalMergeJoin(config, stats)
