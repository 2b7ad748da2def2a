# errors.py
"""
Exception types raised by transparent_track.

Per-frame problems (too few points, degenerate fits, bad frames) are not
exceptions; they are reported through FitStatus on the fit results.
"""
from __future__ import annotations
from enum import Enum, auto


class TransparentTrackError(Exception):
    """Base class for all package errors."""


class ConfigurationError(TransparentTrackError, ValueError):
    """Malformed bounds, options or scene parameters. Raised before any per-frame work."""


class EyeModelError(ConfigurationError):
    """Anatomical parameters that produce an invalid eye model ordering."""


class RefractionError(TransparentTrackError):
    """A ray could not be traced through the optical system."""

    def __init__(self, reason: str, plane: str | None = None):
        self.reason = reason
        self.plane = plane
        where = f" in the {plane} plane" if plane else ""
        super().__init__(f"ray trace failed{where}: {reason}")


class FitStatus(Enum):
    SUCCESS = auto()
    INSUFFICIENT_DATA = auto()
    DEGENERATE_GEOMETRY = auto()

    def __str__(self):
        return self.name.lower()
