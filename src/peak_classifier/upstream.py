# src/peak_classifier/upstream.py
from __future__ import annotations

from typing import Sequence

from peak_classifier.config import upstream_feature_name
from peak_classifier.records import AnnotationRecord


def generate_upstream_bands(gene: AnnotationRecord, boundaries: Sequence[int]) -> list[AnnotationRecord]:
    """
    Synthesize the upstream bands of a (0-based, half-open) gene record.

    With b = (0, *boundaries), band i holds the bases whose distance upstream
    of the transcription start lies in (b[i], b[i+1]]:

      '+' strand: [gene.start - b[i+1], gene.start - b[i])
      '-' strand: [gene.end + b[i],     gene.end + b[i+1])

    Bands come back in ascending coordinate order (outermost first on '+',
    innermost first on '-'). Genes with unknown strand get no bands.

    Coordinates that would fall below 0 are clamped to 0 and the band is
    flagged clamped=True; a band left empty by clamping is dropped.
    """
    b = (0, *boundaries)
    n = len(boundaries)
    bands: list[AnnotationRecord] = []

    if gene.strand == "+":
        for i in reversed(range(n)):
            start = gene.start - b[i + 1]
            end = gene.start - b[i]
            clamped = start < 0
            start, end = max(0, start), max(0, end)
            if end <= start:
                continue
            bands.append(
                AnnotationRecord(
                    chrom=gene.chrom,
                    start=start,
                    end=end,
                    feature_type=upstream_feature_name(b[i + 1]),
                    strand="+",
                    clamped=clamped,
                )
            )
    elif gene.strand == "-":
        for i in range(n):
            bands.append(
                AnnotationRecord(
                    chrom=gene.chrom,
                    start=gene.end + b[i],
                    end=gene.end + b[i + 1],
                    feature_type=upstream_feature_name(b[i + 1]),
                    strand="-",
                )
            )
    return bands
