# src/peak_classifier/config.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from peak_classifier.errors import ConfigError
from peak_classifier.records import UPSTREAM_BEYOND

DEFAULT_UPSTREAM_BOUNDARIES: tuple[int, ...] = (1000, 10000, 100000)
DEFAULT_MIN_OVERLAP = 1.0e-9  # effectively one base
CHROM_ORDERS = ("lexical", "natural")
JOIN_STRATEGIES = ("internal", "bedtools")


# ----------------------------
# Upstream boundaries
# ----------------------------
def parse_upstream_boundaries(text: str) -> tuple[int, ...]:
    """
    Parse "1000,10000,100000" into (1000, 10000, 100000).
    Values must be positive integers in strictly ascending order.
    """
    items = [t.strip() for t in str(text).split(",")]
    if not items or any(t == "" for t in items):
        raise ConfigError(f"Invalid upstream boundary list: {text!r}")
    try:
        values = tuple(int(t) for t in items)
    except ValueError:
        raise ConfigError(f"Upstream boundaries must be integers: {text!r}") from None
    return validate_upstream_boundaries(values)


def validate_upstream_boundaries(values: Iterable[int]) -> tuple[int, ...]:
    values = tuple(values)
    if not values:
        raise ConfigError("Upstream boundary list is empty.")
    if values[0] <= 0:
        raise ConfigError(f"Upstream boundaries must be positive: {values}")
    for a, b in zip(values, values[1:]):
        if b <= a:
            raise ConfigError(f"Upstream boundaries must be strictly ascending: {values}")
    return values


def upstream_feature_name(distance: int) -> str:
    return f"upstream{distance}"


def default_feature_priority(boundaries: Iterable[int] = DEFAULT_UPSTREAM_BOUNDARIES) -> tuple[str, ...]:
    return (
        "five_prime_UTR",
        "three_prime_UTR",
        "exon",
        "intron",
        *(upstream_feature_name(b) for b in boundaries),
        UPSTREAM_BEYOND,
    )


def parse_feature_list(text: str) -> tuple[str, ...]:
    names = tuple(t.strip() for t in str(text).split(",") if t.strip())
    if not names:
        raise ConfigError(f"Feature priority list is empty: {text!r}")
    return names


# ----------------------------
# Chromosome ordering
# ----------------------------
_DIGITS = re.compile(r"(\d+)")


def lexical_chrom_key(chrom: str) -> bytes:
    # byte-wise, same as LC_ALL=C sort -k1,1
    return chrom.encode("utf-8")


def natural_chrom_key(chrom: str) -> tuple:
    # digit runs compare numerically, close to sort -k1,1V for chromosome names
    parts = _DIGITS.split(chrom)
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p != "")


def chrom_key_for(order: str) -> Callable[[str], object]:
    if order == "lexical":
        return lexical_chrom_key
    if order == "natural":
        return natural_chrom_key
    raise ConfigError(f"Unknown chromosome order: {order!r} (expected one of {', '.join(CHROM_ORDERS)})")


# ----------------------------
# Run configuration
# ----------------------------
@dataclass(frozen=True)
class ClassifierConfig:
    upstream_boundaries: tuple[int, ...] = DEFAULT_UPSTREAM_BOUNDARIES
    min_peak_overlap: float = DEFAULT_MIN_OVERLAP
    min_gff_overlap: float = DEFAULT_MIN_OVERLAP
    min_either_overlap: bool = False
    midpoints_only: bool = False
    feature_priority: Optional[tuple[str, ...]] = None  # None => default_feature_priority(boundaries)
    join: str = "internal"
    chrom_order: str = "lexical"
    bedtools: str = "bedtools"

    def __post_init__(self) -> None:
        object.__setattr__(self, "upstream_boundaries", validate_upstream_boundaries(self.upstream_boundaries))
        for name in ("min_peak_overlap", "min_gff_overlap"):
            v = getattr(self, name)
            try:
                v = float(v)
            except (TypeError, ValueError):
                raise ConfigError(f"{name} must be a number, got {v!r}") from None
            if not 0.0 <= v <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {v}")
            object.__setattr__(self, name, v)
        if self.join not in JOIN_STRATEGIES:
            raise ConfigError(f"Unknown join strategy: {self.join!r} (expected one of {', '.join(JOIN_STRATEGIES)})")
        chrom_key_for(self.chrom_order)
        if self.feature_priority is None:
            object.__setattr__(self, "feature_priority", default_feature_priority(self.upstream_boundaries))
        else:
            prio = tuple(self.feature_priority)
            if not prio:
                raise ConfigError("Feature priority list is empty.")
            lowered = [p.lower() for p in prio]
            if len(set(lowered)) != len(lowered):
                raise ConfigError(f"Feature priority list has duplicates: {prio}")
            object.__setattr__(self, "feature_priority", prio)

    @property
    def chrom_key(self) -> Callable[[str], object]:
        return chrom_key_for(self.chrom_order)

    def boundaries_tag(self) -> str:
        return ",".join(str(b) for b in self.upstream_boundaries)
