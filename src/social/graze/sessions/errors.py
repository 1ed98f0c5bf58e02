"""Error taxonomy for the session manager.

Every error carries a machine-readable ``code`` next to its human-readable
message. "No session" is never an error: the manager reports it through
``ValidationResult(valid=False)`` or ``None``, and raises only when something
actually broke.
"""

from typing import Optional


class OAuthSessionError(Exception):
    """Base class for all session manager errors."""

    code: str = "OAUTH_SESSION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(OAuthSessionError):
    """Invalid or missing construction parameters."""

    code = "CONFIGURATION_ERROR"

    @staticmethod
    def required(field: str) -> "ConfigurationError":
        return ConfigurationError(f"{field} is required")


class OAuthFlowError(OAuthSessionError):
    """Handle validation failure, bad callback parameters or adapter failure."""

    code = "OAUTH_FLOW_ERROR"

    @staticmethod
    def invalid_handle() -> "OAuthFlowError":
        return OAuthFlowError("Invalid handle")

    @staticmethod
    def missing_parameters() -> "OAuthFlowError":
        return OAuthFlowError("Missing code or state parameters")

    @staticmethod
    def invalid_state() -> "OAuthFlowError":
        return OAuthFlowError("Invalid state parameter")


class SessionError(OAuthSessionError):
    """Unexpected failure while validating a cookie session or logging out."""

    code = "SESSION_ERROR"


class MobileIntegrationError(OAuthSessionError):
    """Malformed Authorization header or unsealable mobile token."""

    code = "MOBILE_INTEGRATION_ERROR"

    @staticmethod
    def invalid_header() -> "MobileIntegrationError":
        return MobileIntegrationError("Invalid authorization header")

    @staticmethod
    def invalid_token() -> "MobileIntegrationError":
        return MobileIntegrationError("Invalid session token")


class StorageError(OAuthSessionError):
    """Persistence failure raised by a storage adapter."""

    code = "STORAGE_ERROR"


class UnsealError(OAuthSessionError):
    """A sealed value could not be opened: tampered, expired or wrong secret."""

    code = "UNSEAL_ERROR"


class OAuthClientError(OAuthSessionError):
    """
    Base class for failures signalled by an OAuth client's ``restore``.

    The manager never masks these, so applications can tell "the user has to
    sign in again" apart from "try again later".
    """

    code = "OAUTH_CLIENT_ERROR"


class SessionNotFoundError(OAuthClientError):
    """The OAuth client has no session for the DID."""

    code = "SESSION_NOT_FOUND"


class RefreshTokenExpiredError(OAuthClientError):
    """The refresh token expired; the user must re-authenticate."""

    code = "REFRESH_TOKEN_EXPIRED"


class RefreshTokenRevokedError(OAuthClientError):
    """The refresh token was revoked; the user must re-authenticate."""

    code = "REFRESH_TOKEN_REVOKED"


class NetworkError(OAuthClientError):
    """Transient failure talking to the authorization server."""

    code = "NETWORK_ERROR"


class TokenExchangeError(OAuthClientError):
    """The authorization server rejected a token exchange."""

    code = "TOKEN_EXCHANGE_ERROR"
