"""
Mobile Session Handlers

Endpoints used by mobile apps, which authenticate with a sealed bearer token
in the ``Authorization`` header instead of a cookie.

- GET /auth/mobile/session - Describe the session of a bearer token
- POST /auth/mobile/refresh - Exchange a bearer token for a new one
"""

import logging

from aiohttp import hdrs, web

from social.graze.sessions.app.config import SessionManagerAppKey
from social.graze.sessions.errors import MobileIntegrationError

logger = logging.getLogger(__name__)


async def handle_mobile_session(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]

    try:
        result = await session_manager.validate_mobile_session(
            request.headers.get(hdrs.AUTHORIZATION)
        )
    except MobileIntegrationError as e:
        logger.info("mobile session rejected: %s", e)
        return web.json_response(status=401, data={"error": e.message, "code": e.code})

    return web.json_response(result.to_dict())


async def handle_mobile_refresh(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]

    result = await session_manager.refresh_mobile_token(
        request.headers.get(hdrs.AUTHORIZATION)
    )
    return web.json_response(result.to_dict(), status=200 if result.success else 401)
