"""
Session Auth Middleware: resolves the Authorization header to a user.

Clients send the opaque ``session_id`` issued at login, either raw or as
``Bearer <session_id>``. A matching, unexpired UserSession sets
``g.current_user``; anything else on a protected path is answered with
401 ``ERR_UNAUTHORIZED_SESSION`` before the view runs.

Skipped:
  - non-API routes
  - health checks
  - CORS preflight (OPTIONS)
"""

import logging
from dataclasses import dataclass

from flask import g, request
from sqlalchemy import select

from precast.core.exceptions import UnauthorizedSessionError
from precast.models import db
from precast.models.auth import UserSession
from precast.utils.errors import E, api_error

logger = logging.getLogger(__name__)

SESSION_SKIP_PREFIXES = (
    "/api/v1/health",
)


@dataclass(frozen=True)
class SessionUser:
    """Identity of the caller for one request."""
    user_id: int
    user_name: str
    host: str | None
    ip: str | None


def _token_from_header(header: str) -> str:
    token = (header or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


def resolve_session(header: str) -> SessionUser:
    """Resolve a raw Authorization header value.

    Raises:
        UnauthorizedSessionError: missing, unknown, expired, or inactive user.
    """
    token = _token_from_header(header)
    if not token:
        raise UnauthorizedSessionError("Authorization header is required")

    session = db.session.execute(
        select(UserSession).where(UserSession.session_id == token)
    ).scalar_one_or_none()
    if session is None:
        raise UnauthorizedSessionError("Session not found")
    if session.is_expired():
        raise UnauthorizedSessionError("Session expired")
    user = session.user
    if user is None or not user.is_active:
        raise UnauthorizedSessionError("User is not active")

    return SessionUser(
        user_id=user.id,
        user_name=user.full_name,
        host=session.host_name,
        ip=session.ip_address,
    )


def current_user() -> SessionUser:
    """The authenticated caller; raises when the middleware did not set one."""
    user = getattr(g, "current_user", None)
    if user is None:
        raise UnauthorizedSessionError("Authentication required")
    return user


def init_session_auth(app):
    """Register session auth as a before_request hook."""

    @app.before_request
    def _session_auth():
        g.current_user = None

        path = request.path
        if request.method == "OPTIONS" or not path.startswith("/api/v1/"):
            return None
        for prefix in SESSION_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        try:
            g.current_user = resolve_session(request.headers.get("Authorization", ""))
        except UnauthorizedSessionError as exc:
            logger.info("Rejected session on %s %s: %s", request.method, path, exc)
            return api_error(E.UNAUTHORIZED_SESSION, str(exc))
        return None
