"""Exception types raised by the routing core."""

from __future__ import annotations


class HawkrouteError(Exception):
    """Base class for errors raised by this package."""


class InvalidInputError(HawkrouteError, ValueError):
    """Input that should have been rejected upstream reached the core.

    Business conditions (no eligible requests, an unreachable request, an
    exhausted improvement budget) never raise; this is reserved for defects
    such as out-of-range coordinates or inverted time windows.
    """
