from fastapi import Depends, HTTPException

from app.core.errors import (
    InvalidInputError,
    InvalidTransitionError,
    NaviCareError,
    PlaybackBusyError,
    RequestInFlightError,
)
from app.services.triage_session import SessionRegistry, TriageSession

_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _registry


def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> TriageSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail={"error": "session_not_found", "message": "Unknown session."})
    return session


def to_http_error(exc: NaviCareError) -> HTTPException:
    """Map session errors onto HTTP: bad input 422, wrong state / busy 409."""
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=422, detail={"error": "invalid_input", "message": str(exc)})
    if isinstance(exc, RequestInFlightError):
        return HTTPException(status_code=409, detail={"error": "request_in_flight", "message": str(exc)})
    if isinstance(exc, PlaybackBusyError):
        return HTTPException(status_code=409, detail={"error": "playback_busy", "message": str(exc)})
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail={"error": "invalid_transition", "message": str(exc)})
    return HTTPException(status_code=500, detail={"error": "internal_error", "message": str(exc)})
