"""
Configuration Module for the Session Service

This module defines the configuration of the session service, using
Pydantic for settings validation and aiohttp AppKeys for dependency injection.

The Settings class is loaded from environment variables with defaults suitable
for development. Application components access settings and shared resources
through typed AppKeys.

Key configuration areas include:
- Service networking
- Session cookie and mobile token sealing
- Redis connection for the session store and refresh locks
- The OAuth client factory
- Monitoring and error reporting
"""

import importlib
from typing import Annotated, Callable, Final, List, Optional

from aiohttp import web
from pydantic import AliasChoices, Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode
from redis import asyncio as redis

from social.graze.sessions.manager import (
    DEFAULT_COOKIE_NAME,
    DEFAULT_MOBILE_SCHEME,
    DEFAULT_MOBILE_TOKEN_TTL,
    DEFAULT_SESSION_TTL,
    SessionManager,
)
from social.graze.sessions.metrics import MetricsClient
from social.graze.sessions.oauth import OAuthClient


class Settings(BaseSettings):
    """
    Settings of the session service.

    Environment variables map to fields by name, e.g. COOKIE_SECRET or
    SESSION_TTL. The Redis connection string can be set with either REDIS_DSN
    or REDIS_URL.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging and error details.
    Set with DEBUG=true environment variable.
    """

    logging_config_file: Optional[str] = None
    """
    JSON file with a logging.config.dictConfig configuration. When unset, logs
    go to stderr at INFO, or DEBUG in debug mode.
    Set with LOGGING_CONFIG_FILE environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    base_url: str = "http://localhost:5100"
    """Public base URL of the service."""

    cookie_secret: str
    """
    Secret sealing session cookies and mobile tokens (required, no default).
    Must be at least 32 characters.
    Set with COOKIE_SECRET environment variable.
    """

    previous_cookie_secrets: Annotated[List[str], NoDecode] = list()
    """
    Retired cookie secrets still accepted when unsealing.
    Set with PREVIOUS_COOKIE_SECRETS environment variable as comma-separated values.
    """

    cookie_name: str = DEFAULT_COOKIE_NAME
    """Name of the session cookie."""

    session_ttl: int = DEFAULT_SESSION_TTL
    """Cookie session lifetime in seconds. Default: 604800 (7 days)"""

    mobile_scheme: str = DEFAULT_MOBILE_SCHEME
    """URL the mobile app is sent back to after authorization."""

    mobile_token_ttl: int = DEFAULT_MOBILE_TOKEN_TTL
    """Mobile bearer token lifetime in seconds. Default: 1209600 (14 days)"""

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for the session store and refresh locks.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    storage_key_prefix: str = "oauth_sessions:"
    """Prefix of every Redis key written by the session store."""

    refresh_lock_enabled: bool = True
    """Allow only one token refresh per DID at a time."""

    refresh_lock_ttl: int = 30
    """Lease duration of a refresh lock in seconds."""

    oauth_client_factory: Optional[str] = None
    """
    Import path of a callable creating the OAuth client, as ``module:callable``.
    The callable receives the Settings object.
    Set with OAUTH_CLIENT_FACTORY environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """Metrics backend, 'telegraf' or 'none'."""

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("previous_cookie_secrets", mode="before")
    @classmethod
    def decode_previous_cookie_secrets(cls, v) -> List[str]:
        """
        Accept either a list of secrets or a comma-separated string.

        Raises:
            ValueError: If the input is neither a list nor a string
        """
        if isinstance(v, list):
            return v
        elif isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        raise ValueError(
            "previous_cookie_secrets must be a list or a comma-separated string"
        )


def load_oauth_client_factory(path: str) -> Callable[[Settings], OAuthClient]:
    """
    Resolve a ``module:callable`` import path.

    Raises:
        ValueError: If the path is malformed or does not name a callable
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Invalid OAuth client factory path: {path}")

    factory = getattr(importlib.import_module(module_name), attribute, None)
    if not callable(factory):
        raise ValueError(f"OAuth client factory {path} is not callable")
    return factory


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

OAuthClientAppKey: Final = web.AppKey("oauth_client", OAuthClient)
"""AppKey for accessing the OAuth client"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for accessing the metrics client"""

SessionManagerAppKey: Final = web.AppKey("session_manager", SessionManager)
"""AppKey for accessing the session manager"""
