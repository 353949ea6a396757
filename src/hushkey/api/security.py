# HushKey: API Security - Session token bound to the vault session
#
# The API issues one random token per vault session. Every backup and vault
# endpoint requires it in the X-Session-Token header. Locking the vault
# retires the token: a client holding the old one gets 401 and must fetch a
# fresh token from /api/session before it can drive exports or restores.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from ..core import EventSeverity, EventType, log_security_event

_SESSION_TOKEN: Optional[str] = None
_RETIRED_TOKEN: Optional[str] = None


def issue_session_token() -> str:
    """Generate the 256-bit token for a new API instance."""
    global _SESSION_TOKEN, _RETIRED_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    _RETIRED_TOKEN = None
    return _SESSION_TOKEN


def rotate_session_token(reason: str) -> str:
    """
    Retire the current token and issue a new one.

    Called when the vault session ends so that a token which saw the vault
    unlocked cannot be replayed against the next session.
    """
    global _SESSION_TOKEN, _RETIRED_TOKEN
    _RETIRED_TOKEN = _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    log_security_event(EventType.SESSION_ROTATED, EventSeverity.INFO,
                       "API session token rotated", details={"reason": reason})
    return _SESSION_TOKEN


def current_session_token() -> str:
    """
    Raises:
        RuntimeError: If no token has been issued yet
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not issued. Call issue_session_token() first.")
    return _SESSION_TOKEN


def _matches(candidate: str, token: Optional[str]) -> bool:
    return token is not None and secrets.compare_digest(candidate, token)


async def require_session_token(x_session_token: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency: reject requests without the current session token.

    Raises:
        HTTPException: 503 before startup; 401 if the token is missing,
            retired by a vault lock, or wrong
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header"
        )

    if _matches(x_session_token, _SESSION_TOKEN):
        return x_session_token

    if _matches(x_session_token, _RETIRED_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session ended when the vault was locked"
        )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid session token"
    )
