"""
Exceptions raised by the trace engine.
"""


class TraceError(Exception):
    """Base class for trace engine errors."""


class TraceValidationError(TraceError, ValueError):
    """Required input is missing or malformed; nothing was created."""


class JobNotFound(TraceError, LookupError):
    """The trace row referenced by a delivery does not exist."""


class HotspotNotFound(TraceError, LookupError):
    """The hotspot referenced by a trace does not exist."""
