"""
NaviCare error types. None of these are fatal: the API layer maps them to HTTP
status codes and the session layer recovers gateway failures with fixed fallbacks.
"""


class NaviCareError(Exception):
    """Base class for all NaviCare errors."""


class GatewayError(NaviCareError):
    """The reasoning service failed (transport error, missing key, no response)."""


class InvalidInputError(NaviCareError):
    """User input rejected at the boundary: empty text, blank ZIP, unknown language."""


class InvalidTransitionError(NaviCareError):
    """The requested action is not valid in the session's current phase."""


class RequestInFlightError(NaviCareError):
    """A gateway call is already outstanding for this session."""


class PlaybackBusyError(NaviCareError):
    """Speech playback is already active for this session."""
