# src/peak_classifier/formats.py
"""
Line-oriented readers and writers for the three tab-separated formats the
classifier touches, plus the external sort step.

  BED peaks / augmented features  0-based half-open
  GFF3 annotation                 1-based closed
  overlap report                  see records.OVERLAP_HEADER
"""
from __future__ import annotations

import gzip
import io
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import IO, Callable, Iterable, Iterator, Optional, Union

from peak_classifier.errors import (
    EX_CANTCREAT,
    EX_NOINPUT,
    CollaboratorError,
    MalformedRecordError,
    ResourceError,
    UnsortedInputError,
)
from peak_classifier.records import (
    BLOCK_SEPARATOR,
    OVERLAP_HEADER,
    STRANDS,
    AnnotationRecord,
    GffRecord,
    Interval,
    OverlapRecord,
    _BlockSeparator,
)


# ----------------------------
# File opening
# ----------------------------
def open_text(path: str, mode: str = "r") -> IO[str]:
    """
    Open a text stream; '-' is stdin/stdout and '*.gz' is (de)compressed
    transparently.
    """
    writing = "w" in mode or "a" in mode
    if path == "-":
        return _Unclosable(sys.stdout if writing else sys.stdin)
    try:
        if str(path).endswith(".gz"):
            return gzip.open(path, mode + "t", encoding="utf-8")
        return open(path, mode, encoding="utf-8")
    except OSError as e:
        verb = "create" if writing else "open"
        raise ResourceError(
            f"Cannot {verb} {path}: {e.strerror or e}",
            exit_status=EX_CANTCREAT if writing else EX_NOINPUT,
        ) from e


class _Unclosable(io.TextIOBase):
    """Wraps stdin/stdout so 'with open_text("-")' does not close them."""

    def __init__(self, stream: IO[str]):
        self._stream = stream

    @property
    def name(self) -> str:
        return getattr(self._stream, "name", "-")

    def __iter__(self):
        return iter(self._stream)

    def readline(self, size: int = -1) -> str:
        return self._stream.readline(size)

    def write(self, s: str) -> int:
        return self._stream.write(s)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self.flush()


def _source_name(handle: IO[str]) -> str:
    return str(getattr(handle, "name", "<stream>"))


def _parse_int(text: str, what: str, source: str, line_no: int, line: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise MalformedRecordError(source, line_no, f"non-numeric {what} {text!r}", line) from None


# ----------------------------
# BED
# ----------------------------
def _is_bed_header(line: str) -> bool:
    return line.startswith("#") or line.startswith("track") or line.startswith("browser")


def parse_bed_line(line: str, source: str = "<bed>", line_no: int = 0) -> Interval:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < 3:
        raise MalformedRecordError(source, line_no, f"expected at least 3 fields, found {len(fields)}", line)
    start = _parse_int(fields[1], "start", source, line_no, line)
    end = _parse_int(fields[2], "end", source, line_no, line)
    if start < 0 or end < start:
        raise MalformedRecordError(source, line_no, f"invalid interval [{start}, {end})", line)
    name = fields[3] if len(fields) > 3 and fields[3] else "."
    score: Optional[float] = None
    if len(fields) > 4 and fields[4] not in ("", "."):
        try:
            score = float(fields[4])
        except ValueError:
            raise MalformedRecordError(source, line_no, f"non-numeric score {fields[4]!r}", line) from None
    strand = fields[5] if len(fields) > 5 and fields[5] in STRANDS else "."
    return Interval(chrom=fields[0], start=start, end=end, name=name, strand=strand, score=score)


def read_bed(handle: Iterable[str], source: Optional[str] = None) -> Iterator[Interval]:
    source = source or _source_name(handle)  # type: ignore[arg-type]
    for line_no, line in enumerate(handle, start=1):
        if not line.strip() or _is_bed_header(line):
            continue
        yield parse_bed_line(line, source=source, line_no=line_no)


def write_bed(handle: IO[str], records: Iterable[Union[AnnotationRecord, _BlockSeparator]]) -> int:
    """Write augmented records as BED6; block separators are dropped."""
    n = 0
    for rec in records:
        if rec is BLOCK_SEPARATOR:
            continue
        handle.write("\t".join(rec.to_bed_fields()) + "\n")  # type: ignore[union-attr]
        n += 1
    return n


def write_bed3(handle: IO[str], intervals: Iterable[Interval]) -> int:
    n = 0
    for iv in intervals:
        handle.write(f"{iv.chrom}\t{iv.start}\t{iv.end}\n")
        n += 1
    return n


# ----------------------------
# GFF3
# ----------------------------
def parse_gff_line(line: str, source: str = "<gff>", line_no: int = 0) -> GffRecord:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) != 9:
        raise MalformedRecordError(source, line_no, f"expected 9 fields, found {len(fields)}", line)
    start = _parse_int(fields[3], "start", source, line_no, line)
    end = _parse_int(fields[4], "end", source, line_no, line)
    if start < 1 or end < start:
        raise MalformedRecordError(source, line_no, f"invalid interval [{start}, {end}]", line)
    return GffRecord(
        seqid=fields[0],
        source=fields[1],
        feature_type=fields[2],
        start=start,
        end=end,
        score=fields[5],
        strand=fields[6] if fields[6] in STRANDS else ".",
        phase=fields[7],
        attributes=fields[8],
    )


def read_gff(handle: Iterable[str], source: Optional[str] = None) -> Iterator[Union[GffRecord, _BlockSeparator]]:
    """
    Yield GffRecords in file order, and BLOCK_SEPARATOR for each '###' line.
    Other comment/directive lines are skipped; reading stops at '##FASTA'.
    """
    source = source or _source_name(handle)  # type: ignore[arg-type]
    for line_no, line in enumerate(handle, start=1):
        s = line.rstrip("\r\n")
        if s == "###":
            yield BLOCK_SEPARATOR
            continue
        if s.startswith("##FASTA"):
            return
        if not s.strip() or s.startswith("#"):
            continue
        yield parse_gff_line(s, source=source, line_no=line_no)


# ----------------------------
# Overlap report
# ----------------------------
def parse_overlap_line(line: str, source: str = "<overlaps>", line_no: int = 0) -> OverlapRecord:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < len(OVERLAP_HEADER):
        raise MalformedRecordError(
            source, line_no, f"expected {len(OVERLAP_HEADER)} fields, found {len(fields)}", line
        )
    return OverlapRecord(
        chrom=fields[0],
        peak_start=_parse_int(fields[1], "peak start", source, line_no, line),
        peak_end=_parse_int(fields[2], "peak end", source, line_no, line),
        feature_start=_parse_int(fields[3], "feature start", source, line_no, line),
        feature_end=_parse_int(fields[4], "feature end", source, line_no, line),
        feature_name=fields[5],
        strand=fields[6],
        overlap=_parse_int(fields[7], "overlap", source, line_no, line),
    )


def read_overlaps(handle: Iterable[str], source: Optional[str] = None) -> Iterator[OverlapRecord]:
    source = source or _source_name(handle)  # type: ignore[arg-type]
    for line_no, line in enumerate(handle, start=1):
        if not line.strip() or line.startswith("#"):
            continue
        yield parse_overlap_line(line, source=source, line_no=line_no)


def write_overlaps(handle: IO[str], records: Iterable[OverlapRecord], header: bool = True) -> int:
    if header:
        handle.write("\t".join(OVERLAP_HEADER) + "\n")
    n = 0
    for rec in records:
        handle.write("\t".join(rec.to_fields()) + "\n")
        n += 1
    return n


# ----------------------------
# Sort order
# ----------------------------
class SortChecker:
    """
    Forward-only check that a stream is ordered by (chromosome, start).
    Chromosome comparison uses the same key as the join.
    """

    def __init__(self, what: str, chrom_key: Callable[[str], object]):
        self.what = what
        self.chrom_key = chrom_key
        self._chrom: Optional[str] = None
        self._key: object = None
        self._start = -1

    def check(self, chrom: str, start: int) -> None:
        if chrom != self._chrom:
            key = self.chrom_key(chrom)
            if self._chrom is not None and key < self._key:  # type: ignore[operator]
                raise UnsortedInputError(
                    f"{self.what} is not sorted: chromosome {chrom} follows {self._chrom}"
                )
            self._chrom, self._key, self._start = chrom, key, start
            return
        if start < self._start:
            raise UnsortedInputError(
                f"{self.what} is not sorted: {chrom}:{start} follows {chrom}:{self._start}"
            )
        self._start = start


def sort_command(chrom_order: str = "lexical") -> list[str]:
    chrom_field = "-k1,1V" if chrom_order == "natural" else "-k1,1"
    return ["sort", chrom_field, "-k2,2n", "-k3,3n"]


def sort_bed_file(src: Union[str, Path], dest: Union[str, Path], chrom_order: str = "lexical") -> None:
    """
    Sort a BED file by chromosome, start, end with the system sort utility
    under LC_ALL=C (byte-wise chromosome names).
    """
    if shutil.which("sort") is None:
        raise CollaboratorError("The 'sort' utility was not found on PATH.")
    cmd = sort_command(chrom_order) + ["-o", str(dest), str(src)]
    env = dict(os.environ, LC_ALL="C")
    p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, env=env)
    if p.returncode != 0:
        raise CollaboratorError(f"Command failed ({' '.join(cmd)}): {p.stdout.strip()}")
