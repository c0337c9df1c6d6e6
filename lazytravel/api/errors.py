# lazytravel/api/errors.py
"""Exceptions raised by the trip planning core."""


class LazyTravelError(Exception):
    """Base class for every error raised by lazytravel."""


class OracleError(LazyTravelError):
    """An external oracle call failed (network, timeout, unreadable reply)."""


class OracleResponseError(OracleError):
    """The oracle replied, but the payload does not have the expected shape."""


class ExtractionError(LazyTravelError):
    """Analysis of user notes failed; nothing was added to the trip."""


class OptimizationError(LazyTravelError):
    """Route optimization failed; the working stop list was left unchanged."""


class PersistenceError(LazyTravelError):
    """The persistence adapter could not complete a read or write."""


__all__ = [
    "LazyTravelError",
    "OracleError",
    "OracleResponseError",
    "ExtractionError",
    "OptimizationError",
    "PersistenceError",
]
