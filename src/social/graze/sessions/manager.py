"""
Session Manager

This module ties an encrypted browser cookie, the stored OAuth session of a DID
and an application supplied OAuth client into one answer to "is this user
signed in, and are their tokens fresh".

Session lifecycle:
1. ``start_oauth`` validates the handle and asks the OAuth client for an
   authorization URL, round-tripping the flow state through the provider
2. ``handle_callback`` completes the authorization, stores the OAuth session
   under ``session:{did}`` and issues the sealed cookie (or, for mobile apps,
   redirects to the app's URL scheme with a sealed bearer token)
3. ``validate_session`` answers for the cookie, refreshing tokens that are
   about to expire, and self-heals cookies whose stored session is gone
4. ``validate_mobile_session`` and ``refresh_mobile_token`` do the same for
   mobile bearer tokens
5. ``logout`` removes the stored session and clears the cookie

The stored OAuth session is the source of truth. A cookie or mobile token that
still unseals but points at a DID without a stored session is not signed in.

Failure policy:
- "No session" is a result (``ValidationResult(valid=False)`` or None), never
  an exception
- ``handle_callback`` turns every failure into a 400 response
- Refresh failures during validation are logged and swallowed; the current
  access token may still be good for this request
- Errors of ``OAuthClient.restore`` reach the caller of ``get_oauth_session``
  unchanged
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from aiohttp import hdrs, web
import sentry_sdk

from social.graze.sessions.cookies import (
    CookieSession,
    build_clear_cookie_header,
    load_cookie_session,
    now_ms,
)
from social.graze.sessions.errors import (
    ConfigurationError,
    MobileIntegrationError,
    OAuthFlowError,
    SessionError,
)
from social.graze.sessions.locks import RefreshLock
from social.graze.sessions.metrics import MetricsClient, NoOpMetricsClient
from social.graze.sessions.model.session import (
    CookieSessionData,
    OAuthSessionData,
    OAuthState,
    RefreshPayload,
    RefreshResult,
    StoredOAuthSession,
    ValidationResult,
    session_storage_key,
)
from social.graze.sessions.oauth import OAuthClient
from social.graze.sessions.seal import MIN_SECRET_LENGTH, SealedTokenCodec
from social.graze.sessions.storage import SessionStorage
from social.graze.sessions.syntax import is_safe_redirect_path, is_valid_handle

if TYPE_CHECKING:
    from social.graze.sessions.app.config import Settings

DEFAULT_COOKIE_NAME = "sid"
DEFAULT_SESSION_TTL = 60 * 60 * 24 * 7
DEFAULT_MOBILE_SCHEME = "app://auth-callback"
DEFAULT_MOBILE_TOKEN_TTL = 60 * 60 * 24 * 14

BEARER_PREFIX = "Bearer "


def null_logger() -> logging.Logger:
    """A logger that discards everything, detached from the logging hierarchy."""
    logger = logging.Logger("social.graze.sessions")
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


@dataclass
class SessionConfig:
    """
    Configuration of a SessionManager.

    ``oauth_client``, ``storage``, ``cookie_secret`` and ``base_url`` are
    required; the manager rejects a config without them.
    """

    oauth_client: Optional[OAuthClient] = None
    storage: Optional[SessionStorage] = None
    cookie_secret: Optional[str] = None
    """Secret sealing cookies and mobile tokens, at least 32 characters."""

    base_url: Optional[str] = None
    """Public base URL of the application."""

    cookie_name: str = DEFAULT_COOKIE_NAME
    session_ttl: int = DEFAULT_SESSION_TTL
    """Cookie session lifetime in seconds, renewed on every validation."""

    mobile_scheme: str = DEFAULT_MOBILE_SCHEME
    """URL the mobile app is sent back to after authorization."""

    mobile_token_ttl: int = DEFAULT_MOBILE_TOKEN_TTL
    """Mobile bearer token lifetime in seconds."""

    previous_cookie_secrets: List[str] = field(default_factory=list)
    """Retired secrets still accepted when unsealing."""

    logger: Optional[logging.Logger] = None
    metrics_client: Optional[MetricsClient] = None
    refresh_lock: Optional[RefreshLock] = None

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        oauth_client: OAuthClient,
        storage: SessionStorage,
        logger: Optional[logging.Logger] = None,
        metrics_client: Optional[MetricsClient] = None,
        refresh_lock: Optional[RefreshLock] = None,
    ) -> "SessionConfig":
        return cls(
            oauth_client=oauth_client,
            storage=storage,
            cookie_secret=settings.cookie_secret,
            base_url=settings.base_url,
            cookie_name=settings.cookie_name,
            session_ttl=settings.session_ttl,
            mobile_scheme=settings.mobile_scheme,
            mobile_token_ttl=settings.mobile_token_ttl,
            previous_cookie_secrets=list(settings.previous_cookie_secrets),
            logger=logger,
            metrics_client=metrics_client,
            refresh_lock=refresh_lock,
        )


class SessionManager:
    """
    OAuth session manager for AT Protocol applications.

    Args:
        config: Manager configuration

    Raises:
        ConfigurationError: If a required setting is missing or invalid
    """

    def __init__(self, config: SessionConfig) -> None:
        if config.oauth_client is None:
            raise ConfigurationError.required("oauth_client")
        if config.storage is None:
            raise ConfigurationError.required("storage")
        if not config.cookie_secret:
            raise ConfigurationError.required("cookie_secret")
        if not config.base_url:
            raise ConfigurationError.required("base_url")

        for secret in [config.cookie_secret, *config.previous_cookie_secrets]:
            if len(secret) < MIN_SECRET_LENGTH:
                raise ConfigurationError(
                    f"cookie_secret must be at least {MIN_SECRET_LENGTH} characters "
                    "for secure encryption"
                )

        if config.session_ttl <= 0:
            raise ConfigurationError("session_ttl must be a positive number of seconds")
        if config.mobile_token_ttl <= 0:
            raise ConfigurationError(
                "mobile_token_ttl must be a positive number of seconds"
            )

        self.config = dataclasses.replace(
            config,
            logger=config.logger if config.logger is not None else null_logger(),
            metrics_client=(
                config.metrics_client
                if config.metrics_client is not None
                else NoOpMetricsClient()
            ),
        )
        self.oauth_client: OAuthClient = config.oauth_client
        self.storage: SessionStorage = config.storage
        self.logger: logging.Logger = self.config.logger  # type: ignore
        self.metrics_client: MetricsClient = self.config.metrics_client  # type: ignore
        self.refresh_lock: Optional[RefreshLock] = config.refresh_lock
        self.codec = SealedTokenCodec(
            config.cookie_secret, config.previous_cookie_secrets
        )

    def _cookie_session(self, request: web.Request) -> CookieSession:
        return load_cookie_session(
            request, self.config.cookie_name, self.codec, self.config.session_ttl
        )

    async def _load_stored_session(self, did: str) -> Optional[StoredOAuthSession]:
        data = await self.storage.get(session_storage_key(did))
        if data is None:
            return None
        return StoredOAuthSession.model_validate(data)

    def seal_mobile_token(self, did: str) -> str:
        """Seal a mobile bearer token pointing at did."""
        return self.codec.seal({"did": did})

    def _unseal_mobile_token(self, authorization: Optional[str]) -> str:
        """
        Return the DID of a mobile bearer token.

        Raises:
            MobileIntegrationError: If the header is malformed or the token
                holds no DID
            UnsealError: If the token does not unseal
        """
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise MobileIntegrationError.invalid_header()

        sealed = authorization[len(BEARER_PREFIX):]
        data = self.codec.unseal(sealed, ttl=self.config.mobile_token_ttl)

        did = data.get("did")
        if not isinstance(did, str) or not did:
            raise MobileIntegrationError.invalid_token()
        return did

    async def start_oauth(
        self,
        handle: str,
        mobile: bool = False,
        code_challenge: Optional[str] = None,
        redirect_path: Optional[str] = None,
    ) -> str:
        """
        Start the OAuth flow for a handle.

        Args:
            handle: AT Protocol handle of the user
            mobile: Whether the flow was started by the mobile app
            code_challenge: PKCE challenge of the mobile app, carried in the state
            redirect_path: Same-origin path to return to after a web sign-in.
                Unsafe values are dropped and the flow continues.

        Returns:
            str: Authorization URL to redirect the user to

        Raises:
            OAuthFlowError: If the handle is invalid or the OAuth client fails
        """
        if not is_valid_handle(handle):
            raise OAuthFlowError.invalid_handle()

        state = OAuthState(handle=handle, timestamp=now_ms())
        if mobile:
            state.mobile = True
            state.code_challenge = code_challenge

        if redirect_path is not None:
            if is_safe_redirect_path(redirect_path):
                state.redirect_path = redirect_path
            else:
                self.logger.warning("Dropping unsafe redirect path %r", redirect_path)

        try:
            authorization_url = await self.oauth_client.authorize(
                handle, state=state.serialize()
            )
        except Exception as e:
            self.metrics_client.increment(
                "sessions.oauth.start", 1, tag_dict={"status": "failure"}
            )
            raise OAuthFlowError(f"Failed to start OAuth: {e}") from e

        self.metrics_client.increment(
            "sessions.oauth.start", 1, tag_dict={"status": "success", "mobile": mobile}
        )
        return str(authorization_url)

    async def handle_callback(self, request: web.Request) -> web.Response:
        """
        Complete the OAuth flow from the authorization server's redirect.

        This is a boundary method: it never raises. Any failure becomes a 400
        response with a plain text explanation.

        Args:
            request: The callback request carrying ``code`` and ``state``

        Returns:
            web.Response: A redirect to the mobile app, the saved redirect path
            or ``/``, with the session cookie set; or a 400 response
        """
        try:
            response = await self._complete_callback(request)
        except Exception as e:
            self.logger.warning("OAuth callback failed: %s", e)
            sentry_sdk.capture_exception(e)
            self.metrics_client.increment(
                "sessions.oauth.callback", 1, tag_dict={"status": "failure"}
            )
            return web.Response(status=400, text=f"OAuth callback failed: {e}")

        self.metrics_client.increment(
            "sessions.oauth.callback", 1, tag_dict={"status": "success"}
        )
        return response

    async def _complete_callback(self, request: web.Request) -> web.Response:
        params = request.query
        code = params.get("code")
        state_param = params.get("state")
        if not code or not state_param:
            raise OAuthFlowError.missing_parameters()

        try:
            state = OAuthState.model_validate_json(state_param)
        except ValueError as e:
            raise OAuthFlowError.invalid_state() from e

        callback_result = await self.oauth_client.callback(params)
        oauth_session = callback_result.session
        did = oauth_session.did

        now = now_ms()
        stored_session = StoredOAuthSession.from_oauth_session(oauth_session, now)
        await self.storage.set(session_storage_key(did), stored_session.model_dump())

        cookie_session = self._cookie_session(request)
        cookie_session.data = CookieSessionData(
            did=did, created_at=now, last_accessed=now
        )
        cookie_session.save()

        if state.mobile:
            location = self._mobile_callback_url(
                did, state.handle or oauth_session.handle, oauth_session
            )
        elif is_safe_redirect_path(state.redirect_path):
            location = state.redirect_path  # type: ignore
        else:
            location = "/"

        response = web.Response(status=302, headers={hdrs.LOCATION: location})
        cookie_session.apply(response)
        return response

    def _mobile_callback_url(
        self, did: str, handle: Optional[str], oauth_session: OAuthSessionData
    ) -> str:
        query = {"session_token": self.seal_mobile_token(did), "did": did}
        if handle:
            query["handle"] = handle
        if oauth_session.access_token:
            query["access_token"] = oauth_session.access_token
        if oauth_session.refresh_token:
            query["refresh_token"] = oauth_session.refresh_token

        parsed_scheme = urlparse(self.config.mobile_scheme)
        scheme_query = [
            (key, value)
            for key, value in parse_qsl(parsed_scheme.query, keep_blank_values=True)
            if key not in query
        ]
        scheme_query.extend(query.items())
        return urlunparse(parsed_scheme._replace(query=urlencode(scheme_query)))

    async def validate_session(self, request: web.Request) -> ValidationResult:
        """
        Validate the cookie session of a request.

        Touches the session's last access time, removes cookies whose stored
        OAuth session is gone, and refreshes tokens expiring within five
        minutes when the OAuth client supports it. A failed refresh does not
        invalidate the session.

        Args:
            request: Incoming request

        Returns:
            ValidationResult: ``valid=False`` when there is no session

        Raises:
            SessionError: If validation itself failed, e.g. storage is down
        """
        try:
            result = await self._validate_session(request)
        except Exception as e:
            raise SessionError(f"Session validation failed: {e}") from e

        self.metrics_client.increment(
            "sessions.validate", 1, tag_dict={"valid": result.valid}
        )
        return result

    async def _validate_session(self, request: web.Request) -> ValidationResult:
        cookie_session = self._cookie_session(request)
        did = cookie_session.did
        if not did:
            return ValidationResult(valid=False)

        cookie_session.data.last_accessed = now_ms()
        cookie_session.save()

        stored_session = await self._load_stored_session(did)
        if stored_session is None:
            self.logger.info("No stored OAuth session for %s, clearing cookie", did)
            cookie_session.destroy()
            return ValidationResult(valid=False)

        if (
            stored_session.is_near_expiry(now_ms())
            and stored_session.refresh_token
            and self.oauth_client.supports_refresh
        ):
            stored_session = await self._refresh_stored_session(stored_session)

        return ValidationResult(valid=True, did=did, handle=stored_session.handle)

    async def _refresh_stored_session(
        self, stored_session: StoredOAuthSession
    ) -> StoredOAuthSession:
        if self.refresh_lock is None:
            return await self._try_refresh(stored_session)

        did = stored_session.did
        result = stored_session
        try:
            async with self.refresh_lock.hold(did) as acquired:
                if acquired:
                    result = await self._try_refresh(stored_session)
                else:
                    self.logger.info("Token refresh already in progress for %s", did)
                    self.metrics_client.increment(
                        "sessions.refresh", 1, tag_dict={"status": "locked"}
                    )
        except Exception as e:
            # Acquire or release failed; result is whatever the refresh produced.
            self.logger.warning("Refresh lock failed for %s: %s", did, e)
            sentry_sdk.capture_exception(e)
            self.metrics_client.increment(
                "sessions.refresh.lock",
                1,
                tag_dict={"status": "failure", "exception": type(e).__name__},
            )
        return result

    async def _try_refresh(
        self, stored_session: StoredOAuthSession
    ) -> StoredOAuthSession:
        did = stored_session.did
        try:
            return await self._refresh(stored_session)
        except Exception as e:
            self.logger.warning(
                "Token refresh failed during session validation for %s: %s", did, e
            )
            sentry_sdk.capture_exception(e)
            self.metrics_client.increment(
                "sessions.refresh",
                1,
                tag_dict={"status": "failure", "exception": type(e).__name__},
            )
            return stored_session

    async def _refresh(self, stored_session: StoredOAuthSession) -> StoredOAuthSession:
        self.logger.info("Token near expiry, refreshing for %s", stored_session.did)

        refreshed_session = await self.oauth_client.refresh(
            stored_session.refresh_data(now_ms())
        )
        updated_session = stored_session.refreshed(refreshed_session, now_ms())
        await self.storage.set(
            session_storage_key(stored_session.did), updated_session.model_dump()
        )

        self.logger.info("Token refresh successful for %s", stored_session.did)
        self.metrics_client.increment(
            "sessions.refresh", 1, tag_dict={"status": "success"}
        )
        return updated_session

    async def validate_mobile_session(
        self, authorization: Optional[str]
    ) -> ValidationResult:
        """
        Validate a mobile bearer token.

        Unlike ``validate_session`` this never refreshes tokens; mobile apps call
        ``refresh_mobile_token`` for that.

        Args:
            authorization: Value of the ``Authorization`` header

        Returns:
            ValidationResult: ``valid=False`` when the DID has no stored session

        Raises:
            MobileIntegrationError: If the header or token is invalid, or the
                stored session could not be loaded
        """
        try:
            did = self._unseal_mobile_token(authorization)
            stored_session = await self._load_stored_session(did)
        except MobileIntegrationError:
            raise
        except Exception as e:
            raise MobileIntegrationError(
                f"Mobile session validation failed: {e}"
            ) from e

        if stored_session is None:
            return ValidationResult(valid=False)
        return ValidationResult(valid=True, did=did, handle=stored_session.handle)

    async def refresh_mobile_token(self, authorization: Optional[str]) -> RefreshResult:
        """
        Issue a new mobile bearer token.

        The OAuth client's ``restore`` gets the chance to refresh the stored
        tokens first. Tokens stay on the server either way, so a failed restore
        still yields a new bearer token.

        Args:
            authorization: Value of the ``Authorization`` header

        Returns:
            RefreshResult: ``success=False`` with an ``error`` on failure; this
            method does not raise
        """
        try:
            did = self._unseal_mobile_token(authorization)
            stored_session = await self._load_stored_session(did)
        except Exception as e:
            self.metrics_client.increment(
                "sessions.mobile.refresh", 1, tag_dict={"status": "failure"}
            )
            return RefreshResult(success=False, error=f"Token refresh failed: {e}")

        if stored_session is None:
            self.metrics_client.increment(
                "sessions.mobile.refresh", 1, tag_dict={"status": "not_found"}
            )
            return RefreshResult(success=False, error="OAuth session not found")

        try:
            restored_session = await self.oauth_client.restore(did)
            if restored_session is None:
                self.logger.info("OAuth restore returned no session for %s", did)
        except Exception as e:
            self.logger.warning(
                "OAuth restore failed during mobile token refresh for %s: %s", did, e
            )
            sentry_sdk.capture_exception(e)

        try:
            sealed_token = self.seal_mobile_token(did)
        except Exception as e:
            return RefreshResult(success=False, error=f"Token refresh failed: {e}")

        self.metrics_client.increment(
            "sessions.mobile.refresh", 1, tag_dict={"status": "success"}
        )
        return RefreshResult(
            success=True, payload=RefreshPayload(did=did, sid=sealed_token)
        )

    async def logout(self, request: web.Request) -> None:
        """
        Sign the user of the request out.

        Removes the stored OAuth session of the cookie's DID and clears the
        cookie. Logging out without a session does nothing.

        Raises:
            SessionError: If the stored session could not be removed
        """
        try:
            cookie_session = self._cookie_session(request)
            if cookie_session.did:
                await self.storage.delete(session_storage_key(cookie_session.did))
            cookie_session.destroy()
        except Exception as e:
            raise SessionError(f"Logout failed: {e}") from e

        self.metrics_client.increment("sessions.logout", 1)

    async def get_stored_oauth_data(self, did: str) -> Optional[StoredOAuthSession]:
        """Return the stored OAuth session of a DID, if any."""
        try:
            return await self._load_stored_session(did)
        except Exception as e:
            raise SessionError(f"Failed to get OAuth session: {e}") from e

    async def get_oauth_session(self, did: str) -> Optional[OAuthSessionData]:
        """
        Return a ready-to-use OAuth session for a DID.

        Errors raised by the OAuth client (``SessionNotFoundError``,
        ``RefreshTokenExpiredError``, ``RefreshTokenRevokedError``,
        ``NetworkError``, ``TokenExchangeError``) are propagated unchanged.
        """
        return await self.oauth_client.restore(did)

    async def get_oauth_session_from_request(
        self, request: web.Request
    ) -> Optional[OAuthSessionData]:
        """
        Return the OAuth session of the DID in the request's session cookie.

        Returns None when the request carries no usable session cookie.
        """
        did = self._cookie_session(request).did
        if not did:
            return None
        return await self.get_oauth_session(did)

    def get_clear_cookie_header(self) -> str:
        """``Set-Cookie`` value that removes the session cookie."""
        return build_clear_cookie_header(self.config.cookie_name)
