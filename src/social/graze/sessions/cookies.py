"""
Cookie Sessions

This module handles the browser side of a session: reading the sealed session
cookie from a request, keeping the unsealed record for the lifetime of the
request, and producing the ``Set-Cookie`` headers that persist or clear it.

Cookie wire format:
    {cookie_name}={sealed value}

The sealed value is URL-safe base64 and may itself contain ``=``, so the value
is everything after the first ``=`` of the matching pair. Values are written
unquoted, which is why the headers are built here rather than through
``http.cookies``.

Changes made during a request (``save``/``destroy``) are queued on the
``CookieSession`` and written to the response with :func:`apply_session_cookies`,
either directly by the handler that builds the response or by the
``session_cookie_middleware`` of the host application.
"""

import time
from typing import Final, List, Optional

from aiohttp import hdrs, web

from social.graze.sessions.errors import UnsealError
from social.graze.sessions.model.session import CookieSessionData
from social.graze.sessions.seal import SealedTokenCodec

COOKIE_SESSIONS_REQUEST_KEY: Final = web.RequestKey("cookie_sessions", dict)
"""Request storage key holding the cookie sessions loaded for a request."""


def now_ms() -> int:
    return int(time.time() * 1000)


def read_cookie(cookie_header: Optional[str], name: str) -> Optional[str]:
    """
    Extract a cookie value from a ``Cookie`` header.

    Args:
        cookie_header: Raw ``Cookie`` header value, may be None
        name: Cookie name

    Returns:
        The raw cookie value, or None if the cookie is absent
    """
    if not cookie_header:
        return None
    prefix = f"{name}="
    for pair in cookie_header.split(";"):
        pair = pair.strip()
        if pair.startswith(prefix):
            return pair[len(prefix):]
    return None


def build_set_cookie_header(name: str, value: str, max_age: int) -> str:
    return f"{name}={value}; Path=/; HttpOnly; SameSite=Lax; Secure; Max-Age={max_age}"


def build_clear_cookie_header(name: str) -> str:
    return f"{name}=; Path=/; HttpOnly; SameSite=Lax; Secure; Max-Age=0"


class CookieSession:
    """
    The cookie session of one request.

    Attributes:
        name: Cookie name
        data: Unsealed record, anonymous when ``data.did`` is None
        pending_header: ``Set-Cookie`` value waiting to be written, if any
    """

    def __init__(
        self,
        name: str,
        codec: SealedTokenCodec,
        ttl: int,
        data: Optional[CookieSessionData] = None,
    ) -> None:
        self.name = name
        self.data = data if data is not None else CookieSessionData()
        self.pending_header: Optional[str] = None
        self._codec = codec
        self._ttl = ttl

    @property
    def did(self) -> Optional[str]:
        return self.data.did

    def save(self) -> None:
        """Seal the current record and queue it for the response."""
        sealed = self._codec.seal(self.data.model_dump(exclude_none=True))
        self.pending_header = build_set_cookie_header(self.name, sealed, self._ttl)

    def destroy(self) -> None:
        """Forget the record and queue a header clearing the cookie."""
        self.data = CookieSessionData()
        self.pending_header = build_clear_cookie_header(self.name)

    def apply(self, response: web.StreamResponse) -> None:
        if self.pending_header is None:
            return
        response.headers.add(hdrs.SET_COOKIE, self.pending_header)
        self.pending_header = None


def load_cookie_session(
    request: web.Request, name: str, codec: SealedTokenCodec, ttl: int
) -> CookieSession:
    """
    Return the cookie session of a request, unsealing the cookie on first use.

    The session is kept on the request, so every later call during the same
    request sees the same record, including a session destroyed earlier in the
    request. Cookies that are missing, expired, tampered with or sealed with an
    unknown secret all load as an anonymous session.

    Args:
        request: Incoming request
        name: Cookie name
        codec: Codec used to unseal the cookie
        ttl: Session lifetime in seconds

    Returns:
        CookieSession: The session of the request
    """
    sessions = request.get(COOKIE_SESSIONS_REQUEST_KEY)
    if sessions is None:
        sessions = {}
        request[COOKIE_SESSIONS_REQUEST_KEY] = sessions

    session = sessions.get(name)
    if session is not None:
        return session

    data = None
    sealed = read_cookie(request.headers.get(hdrs.COOKIE), name)
    if sealed:
        try:
            data = CookieSessionData.model_validate(codec.unseal(sealed, ttl=ttl))
        except (UnsealError, ValueError):
            data = None

    session = CookieSession(name, codec, ttl, data)
    sessions[name] = session
    return session


def pending_cookie_sessions(request: web.Request) -> List[CookieSession]:
    sessions = request.get(COOKIE_SESSIONS_REQUEST_KEY) or {}
    return [s for s in sessions.values() if s.pending_header is not None]


def apply_session_cookies(request: web.Request, response: web.StreamResponse) -> None:
    """Write every queued cookie change of the request to the response."""
    for session in pending_cookie_sessions(request):
        session.apply(response)
