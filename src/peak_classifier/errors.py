# src/peak_classifier/errors.py
from __future__ import annotations

# Exit statuses follow sysexits.h where a matching code exists.
EX_DATAERR = 65
EX_NOINPUT = 66
EX_UNAVAILABLE = 69
EX_SOFTWARE = 70
EX_CANTCREAT = 73
EX_CONFIG = 78
EX_UNSORTED = 79


class PeakClassifierError(Exception):
    """Base class for every fatal condition raised by peak_classifier."""

    exit_status = EX_SOFTWARE


class MalformedRecordError(PeakClassifierError, ValueError):
    """A BED/GFF3/overlap line has the wrong field count or bad coordinates."""

    exit_status = EX_DATAERR

    def __init__(self, source: str, line_no: int, reason: str, line: str = ""):
        self.source = source
        self.line_no = line_no
        self.reason = reason
        self.line = line
        msg = f"{source}:{line_no}: {reason}"
        if line:
            msg += f": {line.rstrip()!r}"
        super().__init__(msg)


class UnsortedInputError(PeakClassifierError, ValueError):
    exit_status = EX_UNSORTED


class ConfigError(PeakClassifierError, ValueError):
    exit_status = EX_CONFIG


class ResourceError(PeakClassifierError, OSError):
    """A file could not be opened or created."""

    def __init__(self, msg: str, exit_status: int = EX_NOINPUT):
        super().__init__(msg)
        self.exit_status = exit_status


class CollaboratorError(PeakClassifierError, RuntimeError):
    """An external tool (sort, bedtools, curl) is missing or failed."""

    exit_status = EX_UNAVAILABLE
