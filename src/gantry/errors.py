"""Exception types raised by the scheduling engine."""

from __future__ import annotations


class GantryError(Exception):
    """Base class for engine errors."""


class ScheduleValidationError(GantryError, ValueError):
    """A mutation was rejected; the graph is left unchanged."""


class ImportParseError(GantryError, ValueError):
    """The import document could not be parsed; nothing was merged."""
