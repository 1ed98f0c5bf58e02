import logging
from time import time
from typing import Optional

from aiohttp import web
import redis.asyncio as redis
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.sessions.app.config import (
    MetricsClientAppKey,
    OAuthClientAppKey,
    RedisClientAppKey,
    SessionManagerAppKey,
    Settings,
    SettingsAppKey,
    load_oauth_client_factory,
)
from social.graze.sessions.app.handlers.auth import (
    handle_atproto_callback,
    handle_atproto_login,
    handle_logout,
    handle_session,
)
from social.graze.sessions.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from social.graze.sessions.app.handlers.mobile import (
    handle_mobile_refresh,
    handle_mobile_session,
)
from social.graze.sessions.cookies import apply_session_cookies
from social.graze.sessions.locks import RedisRefreshLock
from social.graze.sessions.manager import SessionConfig, SessionManager
from social.graze.sessions.metrics import TelegrafMetricsClient, create_metrics_client
from social.graze.sessions.oauth import OAuthClient
from social.graze.sessions.storage import RedisSessionStorage

logger = logging.getLogger(__name__)


def build_session_manager(app: web.Application) -> SessionManager:
    settings: Settings = app[SettingsAppKey]
    redis_client = app[RedisClientAppKey]

    refresh_lock = None
    if settings.refresh_lock_enabled:
        refresh_lock = RedisRefreshLock(
            redis_client,
            ttl=settings.refresh_lock_ttl,
            prefix=settings.storage_key_prefix,
        )

    config = SessionConfig.from_settings(
        settings,
        oauth_client=app[OAuthClientAppKey],
        storage=RedisSessionStorage(redis_client, prefix=settings.storage_key_prefix),
        logger=logging.getLogger("social.graze.sessions"),
        metrics_client=app[MetricsClientAppKey],
        refresh_lock=refresh_lock,
    )
    return SessionManager(config)


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    owns_redis_client = RedisClientAppKey not in app
    if owns_redis_client:
        app[RedisClientAppKey] = redis.Redis(
            connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
        )

    if OAuthClientAppKey not in app:
        if settings.oauth_client_factory is None:
            raise ValueError("OAUTH_CLIENT_FACTORY is not configured")
        factory = load_oauth_client_factory(settings.oauth_client_factory)
        app[OAuthClientAppKey] = factory(settings)

    if MetricsClientAppKey not in app:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            debug=settings.debug,
        )
        if isinstance(metrics_client, TelegrafMetricsClient):
            await metrics_client.connect()
        app[MetricsClientAppKey] = metrics_client

    app[SessionManagerAppKey] = build_session_manager(app)

    logger.info("Startup complete")

    yield

    logger.info("Shutting down")

    await app[MetricsClientAppKey].close()
    if owns_redis_client:
        await app[RedisClientAppKey].aclose()


@web.middleware
async def session_cookie_middleware(request: web.Request, handler):
    """Write cookie session changes made by the handler to the response."""
    try:
        response = await handler(request)
    except web.HTTPException as e:
        apply_session_cookies(request, e)
        raise e
    apply_session_cookies(request, response)
    return response


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "sessions.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "sessions.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "sessions.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(
    settings: Optional[Settings] = None,
    oauth_client: Optional[OAuthClient] = None,
    redis_client: Optional[redis.Redis] = None,
):
    """
    Build the session service application.

    The OAuth client and Redis client are created at startup from settings
    unless they are passed in.
    """
    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=True,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[statsd_middleware, sentry_middleware, session_cookie_middleware]
    )

    app[SettingsAppKey] = settings
    if oauth_client is not None:
        app[OAuthClientAppKey] = oauth_client
    if redis_client is not None:
        app[RedisClientAppKey] = redis_client

    app.add_routes(
        [
            web.get("/auth/atproto", handle_atproto_login),
            web.get("/auth/atproto/callback", handle_atproto_callback),
            web.get("/auth/session", handle_session),
            web.post("/auth/logout", handle_logout),
            web.get("/auth/mobile/session", handle_mobile_session),
            web.post("/auth/mobile/refresh", handle_mobile_refresh),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
