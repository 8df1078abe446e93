# src/peak_classifier/utils.py
from __future__ import annotations

import sys
import time
from pathlib import Path


# ----------------------------
# Logging
# ----------------------------
def _ts() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S")


def log(msg: str) -> None:
    # stderr: stdout may carry a data stream ("-" outputs)
    print(f"[{_ts()}] [INFO] {msg}", file=sys.stderr, flush=True)


def warn(msg: str) -> None:
    print(f"[{_ts()}] [WARN] {msg}", file=sys.stderr, flush=True)


# ----------------------------
# Small helpers
# ----------------------------
def output_base(path: str) -> Path:
    p = Path(path)
    if p.suffix.lower() == ".tsv":
        return p.with_suffix("")
    return p


def safe_pct(count: int, total: int) -> int:
    return int(100 * count / total) if total else 0
