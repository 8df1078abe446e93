# src/peak_classifier/classify.py
from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Iterator, Optional

import pandas as pd

from peak_classifier.augment import load_or_build_augmented
from peak_classifier.config import ClassifierConfig
from peak_classifier.filter_overlaps import Accumulator, RankTable, filter_records
from peak_classifier.formats import open_text, read_bed, read_overlaps, write_overlaps
from peak_classifier.join import DelegatedJoin, JoinStats, make_joiner
from peak_classifier.records import OverlapRecord
from peak_classifier.utils import log, output_base, safe_pct


def _progress(records: Iterator[OverlapRecord], every: int = 1_000_000) -> Iterator[OverlapRecord]:
    t0 = time.time()
    for i, rec in enumerate(records, start=1):
        if i % every == 0:
            elapsed = time.time() - t0
            rate = i / elapsed if elapsed > 0 else 0.0
            log(f"Overlap rows written: {i:,} ({rate:,.0f} rows/s)")
        yield rec


# ----------------------------
# Public API (CLI entrypoint)
# ----------------------------
def run(
    *,
    peaks_path: str,
    gff_path: str,
    output: str,
    config: ClassifierConfig,
    cache_dir: str = ".cache/peak-classifier",
    report: bool = False,
    stats_out: Optional[str] = None,  # if None, writes <output_base>_stats.tsv
) -> dict[str, Any]:
    """
    Outputs:

    1) <output_base>_overlaps.tsv
        - every qualifying peak/feature pair, peaks with none get one
          'upstream-beyond' row with Overlap = -1

    2) <output_base>_classified.tsv
        - one row per peak: the overlapping feature ranked highest in
          config.feature_priority (peaks with no listed feature are dropped)

    3) <output_base>_stats.tsv (or stats_out if provided)
        - augmentation, join and per-feature counts

    Both the peak BED and the augmented features must be sorted by
    chromosome then start; the augmented file is built (and sorted) on
    first use and reused from cache_dir afterwards.
    """
    base = output_base(output)
    base.parent.mkdir(parents=True, exist_ok=True)
    overlaps_path = Path(str(base) + "_overlaps.tsv")
    classified_path = Path(str(base) + "_classified.tsv")
    stats_path = Path(stats_out) if stats_out else Path(str(base) + "_stats.tsv")

    log("Stage 1/4: augment annotation (cached)")
    features_path, augment_stats = load_or_build_augmented(gff_path, cache_dir, config)

    log(f"Stage 2/4: join peaks against features ({config.join})")
    if config.midpoints_only:
        log("Peaks collapsed to their midpoints before joining")
    log(
        f"Overlap thresholds: peak >= {config.min_peak_overlap:g}, feature >= {config.min_gff_overlap:g} "
        f"({'either' if config.min_either_overlap else 'both'})"
    )
    t0 = time.time()
    join_stats = JoinStats()
    joiner = make_joiner(config, join_stats)
    with open_text(peaks_path) as peaks_fh, open_text(str(features_path)) as features_fh, \
            open_text(str(overlaps_path), "w") as out:
        peaks = read_bed(peaks_fh, source=peaks_path)
        if isinstance(joiner, DelegatedJoin):
            records = joiner.join(peaks, str(features_path))
        else:
            records = joiner.join(peaks, read_bed(features_fh, source=str(features_path)))
        n_rows = write_overlaps(out, _progress(records))
    log(
        f"Wrote overlaps: {overlaps_path} (rows={n_rows:,}, peaks={join_stats.peaks:,}, "
        f"unmatched={join_stats.unmatched_peaks:,}) (took {time.time()-t0:.1f}s)"
    )

    log("Stage 3/4: resolve one feature per peak")
    table = RankTable(config.feature_priority or ())
    acc = Accumulator.for_table(table)
    with open_text(str(overlaps_path)) as fin, open_text(str(classified_path), "w") as fout:
        n_kept = write_overlaps(fout, filter_records(read_overlaps(fin, source=str(overlaps_path)), table, acc))
    log(f"Wrote classified peaks: {classified_path} (rows={n_kept:,})")

    log("Stage 4/4: write stats")
    stats_rows: list[dict[str, Any]] = []
    stats_rows.append({"metric": "upstream_boundaries", "value": config.boundaries_tag()})
    stats_rows.append({"metric": "min_peak_overlap", "value": config.min_peak_overlap})
    stats_rows.append({"metric": "min_gff_overlap", "value": config.min_gff_overlap})
    stats_rows.append({"metric": "min_either_overlap", "value": int(config.min_either_overlap)})
    stats_rows.append({"metric": "midpoints_only", "value": int(config.midpoints_only)})
    stats_rows.append({"metric": "join_strategy", "value": config.join})
    if augment_stats is not None:
        stats_rows.extend(augment_stats.as_rows())
    stats_rows.extend(join_stats.as_rows())
    stats_rows.extend(acc.summary_rows(table))
    stats_rows.append({"metric": "classified_peaks", "value": n_kept})
    stats_rows.append({"metric": "unclassified_peaks", "value": acc.unique_peaks - n_kept})

    stats_df = pd.DataFrame(stats_rows)
    stats_df.to_csv(stats_path, sep="\t", index=False)
    log(f"Wrote stats: {stats_path}")

    if report:
        for line in acc.report_lines(table):
            log(line)
        log(f"Peaks with no overlapping feature: {join_stats.unmatched_peaks:,} "
            f"({safe_pct(join_stats.unmatched_peaks, join_stats.peaks)}%)")

    return {
        "overlaps": overlaps_path,
        "classified": classified_path,
        "stats": stats_path,
        "features": features_path,
        "accumulator": acc,
        "join_stats": join_stats,
    }
