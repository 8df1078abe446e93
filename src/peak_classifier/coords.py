# src/peak_classifier/coords.py
"""
Conversions between the two coordinate conventions:

  GFF3 annotation rows: 1-based, closed    [start, end]
  BED peak records:     0-based, half-open [start, end)

Callers only pass intervals that are non-degenerate in their own convention.
"""
from __future__ import annotations


def to_half_open_0based(start: int, end: int) -> tuple[int, int]:
    return start - 1, end


def to_closed_1based(start: int, end: int) -> tuple[int, int]:
    return start + 1, end
