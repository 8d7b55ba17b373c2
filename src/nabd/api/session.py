"""Anonymous session identifiers.

A session identifier is an opaque token that scopes likes to one browser.
It is looked up in this order:

1. the session cookie (``sessionId`` by default)
2. the ``X-Session-Id`` header
3. the ``sessionId`` query parameter

When none is present a new UUID4 is issued and set as an httpOnly cookie
that lives for one year.
"""

from __future__ import annotations

import uuid

from fastapi import Request, Response

SESSION_HEADER = "X-Session-Id"
SESSION_QUERY_PARAM = "sessionId"


def session_from_request(request: Request) -> str | None:
    """Return the session identifier carried by *request*, if any."""
    cookie_name = request.app.state.config.session_cookie_name
    for candidate in (
        request.cookies.get(cookie_name),
        request.headers.get(SESSION_HEADER),
        request.query_params.get(SESSION_QUERY_PARAM),
    ):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def issue_session_id() -> str:
    return str(uuid.uuid4())


def set_session_cookie(request: Request, response: Response, session_id: str) -> None:
    config = request.app.state.config
    response.set_cookie(
        key=config.session_cookie_name,
        value=session_id,
        max_age=config.session_cookie_max_age,
        httponly=True,
        samesite="lax",
    )


def ensure_session_id(request: Request, response: Response, explicit: str | None = None) -> str:
    """Resolve the caller's session identifier, issuing one if needed.

    Args:
        request: Incoming request.
        response: Response the new cookie is attached to.
        explicit: Identifier supplied in a request body; wins when non-empty.

    Returns:
        The session identifier to use for this request.
    """
    if explicit and explicit.strip():
        return explicit.strip()

    session_id = session_from_request(request)
    if session_id is None:
        session_id = issue_session_id()
        set_session_cookie(request, response, session_id)
    return session_id


async def get_session_id(request: Request, response: Response) -> str:
    """FastAPI dependency returning the caller's session identifier."""
    return ensure_session_id(request, response)
