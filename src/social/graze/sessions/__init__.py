"""
AT Protocol OAuth Sessions

This package manages authenticated user sessions for AT Protocol applications.
It bridges an OAuth 2.0 authorization code flow, performed by an application
supplied OAuth client, to an encrypted web session cookie and a sealed bearer
token for mobile apps.

Key Components:
- manager: The SessionManager orchestrating sign-in, validation, refresh and logout
- seal: Sealed token codec for cookies and mobile tokens
- cookies: Cookie wire format and per-request cookie sessions
- oauth: The interface expected from OAuth clients
- storage: Session store interface with Redis and PostgreSQL adapters
- locks: Per-DID refresh locks
- metrics: Metrics abstraction
- model: Session data models
- app: Example aiohttp service

Architecture Overview:
1. Sign-in:
   - The user's handle is validated and handed to the OAuth client
   - On callback the OAuth session is stored under ``session:{did}``
   - A sealed cookie (web) or sealed bearer token (mobile) points at the DID

2. Validation:
   - The cookie or token is unsealed to find the DID
   - The stored OAuth session decides whether the user is signed in
   - Tokens close to expiry are refreshed through the OAuth client

3. Sign-out:
   - The stored OAuth session is deleted, invalidating every cookie and token
"""

from social.graze.sessions.errors import (
    ConfigurationError,
    MobileIntegrationError,
    NetworkError,
    OAuthClientError,
    OAuthFlowError,
    OAuthSessionError,
    RefreshTokenExpiredError,
    RefreshTokenRevokedError,
    SessionError,
    SessionNotFoundError,
    StorageError,
    TokenExchangeError,
    UnsealError,
)
from social.graze.sessions.locks import RedisRefreshLock, RefreshLock
from social.graze.sessions.manager import SessionConfig, SessionManager
from social.graze.sessions.model.session import (
    CookieSessionData,
    OAuthSessionData,
    RefreshResult,
    RefreshTokenData,
    StoredOAuthSession,
    ValidationResult,
)
from social.graze.sessions.oauth import CallbackResult, OAuthClient
from social.graze.sessions.seal import SealedTokenCodec
from social.graze.sessions.storage import (
    DatabaseSessionStorage,
    RedisSessionStorage,
    SessionStorage,
)

__all__ = [
    "CallbackResult",
    "ConfigurationError",
    "CookieSessionData",
    "DatabaseSessionStorage",
    "MobileIntegrationError",
    "NetworkError",
    "OAuthClient",
    "OAuthClientError",
    "OAuthFlowError",
    "OAuthSessionData",
    "OAuthSessionError",
    "RedisRefreshLock",
    "RedisSessionStorage",
    "RefreshLock",
    "RefreshResult",
    "RefreshTokenData",
    "RefreshTokenExpiredError",
    "RefreshTokenRevokedError",
    "SealedTokenCodec",
    "SessionConfig",
    "SessionError",
    "SessionManager",
    "SessionNotFoundError",
    "SessionStorage",
    "StorageError",
    "StoredOAuthSession",
    "TokenExchangeError",
    "UnsealError",
    "ValidationResult",
]
