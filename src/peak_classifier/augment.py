# src/peak_classifier/augment.py
from __future__ import annotations

import hashlib
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Sequence, Union

from peak_classifier.config import ClassifierConfig
from peak_classifier.coords import to_half_open_0based
from peak_classifier.formats import open_text, read_gff, sort_bed_file, write_bed
from peak_classifier.records import BLOCK_SEPARATOR, AnnotationRecord, GffRecord, _BlockSeparator
from peak_classifier.upstream import generate_upstream_bands
from peak_classifier.utils import log, warn

AugmentedItem = Union[AnnotationRecord, _BlockSeparator]

# Structural records that span whole sequences, never classified against
SEQUENCE_TYPES = {"chromosome", "region", "scaffold", "contig", "supercontig"}


# ----------------------------
# Predicates
# ----------------------------
def is_transcript_boundary(feature_type: str) -> bool:
    """True for sub-feature types that open a new transcript (mRNA, lnc_RNA, ...)."""
    return (
        "RNA" in feature_type
        or "transcript" in feature_type
        or "gene_segment" in feature_type
        or "_overlapping_ncrna" in feature_type
    )


def is_gene_type(feature_type: str) -> bool:
    # gene, ncRNA_gene, pseudogene
    return feature_type.endswith("gene")


def is_primary_chromosome(name: str) -> bool:
    """Numbered chromosomes only: '1', '22', 'chr7'. Excludes X, Y, MT, patches."""
    if name.startswith("chr"):
        name = name[3:]
    return name.isdigit()


def convert_record(rec: GffRecord, **overrides) -> AnnotationRecord:
    start, end = to_half_open_0based(rec.start, rec.end)
    fields = dict(
        chrom=rec.seqid,
        start=start,
        end=end,
        feature_type=rec.feature_type,
        strand=rec.strand,
        score=rec.score if rec.score else ".",
    )
    fields.update(overrides)
    return AnnotationRecord(**fields)


# ----------------------------
# Statistics
# ----------------------------
@dataclass
class AugmentStats:
    genes: int = 0
    subfeatures: int = 0
    introns: int = 0
    upstream_bands: int = 0
    clamped_bands: int = 0
    skipped_records: int = 0
    written: int = 0

    def as_rows(self) -> list[dict[str, int]]:
        return [{"metric": f"augment_{k}", "value": v} for k, v in vars(self).items()]


# ----------------------------
# Per-gene sub-feature state machine
# ----------------------------
class TranscriptState(Enum):
    AWAITING_FIRST_EXON = "awaiting_first_exon"
    IN_TRANSCRIPT = "in_transcript"


class SubfeatureAugmenter:
    """
    Feed it the sub-features of one gene block, in file order; it returns
    the records to emit for each, with introns synthesized between
    consecutive exons of the same transcript.

    A record whose type satisfies `boundary` starts a new transcript: exon and
    intron numbering restart and the next exon opens no intron.
    """

    def __init__(
        self,
        boundary: Callable[[str], bool] = is_transcript_boundary,
        stats: Optional[AugmentStats] = None,
    ):
        self.boundary = boundary
        self.stats = stats if stats is not None else AugmentStats()
        self.reset()

    def reset(self) -> None:
        self.state = TranscriptState.AWAITING_FIRST_EXON
        self._prev_exon: Optional[AnnotationRecord] = None
        self._exon_no = 0
        self._intron_no = 0

    def feed(self, rec: GffRecord) -> list[AnnotationRecord]:
        if self.boundary(rec.feature_type):
            self.reset()
            return []

        out: list[AnnotationRecord] = []
        if rec.feature_type == "exon":
            self._exon_no += 1
            exon = convert_record(rec, ordinal=self._exon_no)
            if self.state is TranscriptState.IN_TRANSCRIPT and self._prev_exon is not None:
                intron = self._intron_between(self._prev_exon, exon)
                if intron is not None:
                    out.append(intron)
            self.state = TranscriptState.IN_TRANSCRIPT
            self._prev_exon = exon
            out.append(exon)
        else:
            out.append(convert_record(rec))

        self.stats.subfeatures += 1
        return out

    def _intron_between(self, prev: AnnotationRecord, cur: AnnotationRecord) -> Optional[AnnotationRecord]:
        # exons may be listed in either coordinate direction
        if cur.start >= prev.end:
            start, end = prev.end, cur.start
        elif prev.start >= cur.end:
            start, end = cur.end, prev.start
        else:
            return None
        if end <= start:
            return None
        self._intron_no += 1
        self.stats.introns += 1
        return AnnotationRecord(
            chrom=cur.chrom,
            start=start,
            end=end,
            feature_type="intron",
            strand=cur.strand,
            ordinal=self._intron_no,
        )


# ----------------------------
# Whole-stream pipeline
# ----------------------------
def augment_records(
    records: Iterable[Union[GffRecord, _BlockSeparator]],
    boundaries: Sequence[int],
    stats: Optional[AugmentStats] = None,
    boundary: Callable[[str], bool] = is_transcript_boundary,
) -> Iterator[AugmentedItem]:
    """
    Turn a GFF3 record stream into converted, augmented records partitioned
    into gene blocks by BLOCK_SEPARATOR:

      gene:  gene, ['+' upstream bands], sub-features + introns, ['-' upstream bands], separator
      other: record, separator

    Records on non-primary chromosomes and whole-sequence records are
    skipped. Output is in stream order, not sorted.
    """
    stats = stats if stats is not None else AugmentStats()
    it = iter(records)
    rec = next(it, None)

    while rec is not None:
        if rec is BLOCK_SEPARATOR:
            yield BLOCK_SEPARATOR
            rec = next(it, None)
            continue
        if not is_primary_chromosome(rec.seqid) or rec.feature_type in SEQUENCE_TYPES:
            stats.skipped_records += 1
            rec = next(it, None)
            continue

        if not is_gene_type(rec.feature_type):
            yield convert_record(rec)
            yield BLOCK_SEPARATOR
            rec = next(it, None)
            continue

        stats.genes += 1
        gene = convert_record(rec)
        bands = generate_upstream_bands(gene, boundaries)
        stats.upstream_bands += len(bands)
        clamped = sum(1 for band in bands if band.clamped)
        if clamped:
            stats.clamped_bands += clamped
            warn(f"Upstream bands clamped at 0 for gene at {gene.chrom}:{gene.start}-{gene.end}")

        yield gene
        if gene.strand == "+":
            yield from bands

        # the block ends at '###' or at the next gene ('###' is optional)
        augmenter = SubfeatureAugmenter(boundary=boundary, stats=stats)
        rec = None
        for sub in it:
            if sub is BLOCK_SEPARATOR:
                break
            if not is_primary_chromosome(sub.seqid):
                stats.skipped_records += 1
                continue
            if is_gene_type(sub.feature_type):
                rec = sub
                break
            yield from augmenter.feed(sub)

        if gene.strand == "-":
            yield from bands
        yield BLOCK_SEPARATOR
        if rec is None:
            rec = next(it, None)


# ----------------------------
# Augmented BED file (cached)
# ----------------------------
def _cache_key_for_gff(gff_path: str) -> str:
    p = Path(gff_path)
    st = p.stat()
    s = f"{p.resolve()}|{st.st_size}|{int(st.st_mtime)}"
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:16]


def augmented_cache_path(gff_path: str, cache_dir: str, config: ClassifierConfig) -> Path:
    tag = hashlib.sha256(f"{config.boundaries_tag()}|{config.chrom_order}".encode("utf-8")).hexdigest()[:10]
    stem = Path(gff_path).name
    for suffix in (".gz", ".gff3", ".gff"):
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
    return Path(cache_dir) / f"{stem}-augmented_{_cache_key_for_gff(gff_path)}_{tag}.bed"


def write_augmented_bed(
    gff_path: str,
    output_path: str,
    config: ClassifierConfig,
    stats: Optional[AugmentStats] = None,
) -> AugmentStats:
    """
    Augment `gff_path` and write it sorted to `output_path`. The unsorted
    and sorted files are written under temporary names; output_path only
    appears once sorting succeeded.
    """
    stats = stats if stats is not None else AugmentStats()
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    unsorted_tmp = out.with_name(out.name + f".unsorted.{os.getpid()}")
    sorted_tmp = out.with_name(out.name + f".tmp.{os.getpid()}")

    log(f"Augmenting {gff_path} (upstream boundaries {config.boundaries_tag()})...")
    t0 = time.time()
    try:
        with open_text(gff_path) as gff, open_text(str(unsorted_tmp), "w") as bed:
            stats.written = write_bed(bed, augment_records(read_gff(gff, source=gff_path), config.upstream_boundaries, stats))
        log(
            f"Augmented records: {stats.written:,} (genes={stats.genes:,}, introns={stats.introns:,}, "
            f"upstream bands={stats.upstream_bands:,}) (took {time.time()-t0:.1f}s)"
        )
        if stats.clamped_bands:
            warn(f"{stats.clamped_bands:,} upstream band(s) were clamped at chromosome start")

        log(f"Sorting augmented features ({config.chrom_order} chromosome order)...")
        sort_bed_file(unsorted_tmp, sorted_tmp, chrom_order=config.chrom_order)
        os.replace(sorted_tmp, out)
    finally:
        for p in (unsorted_tmp, sorted_tmp):
            if p.exists():
                p.unlink()
    return stats


def load_or_build_augmented(gff_path: str, cache_dir: str, config: ClassifierConfig) -> tuple[Path, Optional[AugmentStats]]:
    """Return the cached augmented BED for this GFF/config, building it if absent."""
    path = augmented_cache_path(gff_path, cache_dir, config)
    if path.exists():
        log(f"Using cached augmented features: {path}")
        return path, None
    stats = write_augmented_bed(gff_path, str(path), config)
    log(f"Saved augmented features: {path}")
    return path, stats
