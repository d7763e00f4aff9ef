"""Error taxonomy shared by the target manager engine."""
from __future__ import annotations


class TargetManagerError(Exception):
    """Base class for all target manager failures."""


class ValidationError(TargetManagerError):
    """A single record carries a malformed number or an out-of-range coordinate."""


class ParseError(TargetManagerError):
    """A row or entry is structurally malformed and cannot be decoded."""


class GeolocationError(TargetManagerError):
    """Position signal unavailable or permission denied."""


class PersistenceError(TargetManagerError):
    """Reading from or writing to the storage collaborator failed."""


class RegionResolutionError(TargetManagerError):
    """Reverse geocoding lookup failed."""


class DuplicateIdError(TargetManagerError):
    """A marker was added with an id that already exists in the store."""


class EmptyExportError(TargetManagerError):
    """There are no markers to export."""
