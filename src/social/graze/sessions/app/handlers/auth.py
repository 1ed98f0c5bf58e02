"""
AT Protocol OAuth Session Handlers

This module implements the web request handlers for browser sessions. It
provides endpoints for initiating authentication, handling callbacks from the
AT Protocol authorization server, checking the current session and signing out.

The handlers in this module provide the following endpoints:
- GET /auth/atproto - Start the OAuth flow for a handle
- GET /auth/atproto/callback - OAuth callback from the authorization server
- GET /auth/session - Describe the current cookie session
- POST /auth/logout - Sign out and clear the session cookie
"""

import logging
from typing import Optional

from aiohttp import web
import sentry_sdk

from social.graze.sessions.app.config import SessionManagerAppKey, SettingsAppKey
from social.graze.sessions.errors import OAuthFlowError, SessionError

logger = logging.getLogger(__name__)


def query_flag(value: Optional[str]) -> bool:
    return value is not None and value.lower() in ("1", "true", "yes")


async def handle_atproto_login(request: web.Request):
    """
    Start the OAuth flow.

    Query Parameters:
        handle: AT Protocol handle of the user
        mobile: Set to 1/true when started by the mobile app
        code_challenge: PKCE challenge of the mobile app
        redirect: Same-origin path to return to after sign-in

    Raises:
        HTTPFound: To redirect to the authorization server
    """
    session_manager = request.app[SessionManagerAppKey]

    handle: Optional[str] = request.query.get("handle", None)
    if handle is None:
        return web.json_response(status=400, data={"error": "No handle provided"})

    try:
        authorization_url = await session_manager.start_oauth(
            handle,
            mobile=query_flag(request.query.get("mobile")),
            code_challenge=request.query.get("code_challenge"),
            redirect_path=request.query.get("redirect"),
        )
    except OAuthFlowError as e:
        logger.info("login rejected: %s", e)
        return web.json_response(status=400, data={"error": e.message, "code": e.code})

    raise web.HTTPFound(authorization_url)


async def handle_atproto_callback(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]
    return await session_manager.handle_callback(request)


async def handle_session(request: web.Request) -> web.Response:
    """
    Describe the cookie session of the request.

    Returns:
        HTTP JSON response with ``valid``, ``did`` and ``handle``
    """
    session_manager = request.app[SessionManagerAppKey]
    settings = request.app[SettingsAppKey]

    try:
        result = await session_manager.validate_session(request)
    except SessionError as e:
        logger.exception("session validation error")
        sentry_sdk.capture_exception(e)
        data = {"error": "Internal Server Error", "code": e.code}
        if settings.debug:
            data["error_message"] = e.message
        return web.json_response(status=500, data=data)

    return web.json_response(result.to_dict())


async def handle_logout(request: web.Request) -> web.Response:
    session_manager = request.app[SessionManagerAppKey]

    try:
        await session_manager.logout(request)
    except SessionError as e:
        logger.exception("logout error")
        sentry_sdk.capture_exception(e)
        return web.json_response(
            status=500, data={"error": "Internal Server Error", "code": e.code}
        )

    return web.json_response({"success": True})
