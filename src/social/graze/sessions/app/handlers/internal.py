import logging

from aiohttp import web
from redis.exceptions import RedisError

from social.graze.sessions.app.config import RedisClientAppKey

logger = logging.getLogger(__name__)


async def handle_internal_ready(request: web.Request):
    redis_client = request.app[RedisClientAppKey]
    try:
        await redis_client.ping()
    except RedisError as e:
        logger.warning("readiness check failed: %s", e)
        return web.Response(status=503)
    return web.Response(status=200)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)
