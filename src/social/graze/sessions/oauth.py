"""
OAuth Client Contract

The session manager does not implement OAuth itself. Applications bring an
OAuth client (PAR, PKCE, DPoP and token exchange all live there) and adapt it
to the ``OAuthClient`` interface below.

Required operations:
- ``authorize``: build the authorization URL for a handle
- ``callback``: exchange the authorization code returned to the callback URL
- ``restore``: return a ready-to-use session for a DID, refreshing it first if
  the client deems it necessary

Optional operation:
- ``refresh``: refresh a session from ``RefreshTokenData``. Clients that
  implement it advertise the capability by returning True from
  ``supports_refresh``. The manager checks the flag before every call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from yarl import URL

from social.graze.sessions.model.session import OAuthSessionData, RefreshTokenData


@dataclass(repr=False, eq=False)
class CallbackResult:
    """
    Outcome of a completed authorization code exchange.

    Attributes:
        session: The new OAuth session
        state: The state parameter as seen by the client, if it reports one
    """

    session: OAuthSessionData
    state: Optional[str] = None


class OAuthClient(ABC):
    """Interface the session manager expects from an OAuth client."""

    @abstractmethod
    async def authorize(
        self, handle: str, state: Optional[str] = None
    ) -> Union[str, URL]:
        """
        Start an authorization for a handle.

        Args:
            handle: AT Protocol handle of the user
            state: Opaque state to round-trip through the authorization server

        Returns:
            The authorization URL to redirect the user to
        """

    @abstractmethod
    async def callback(self, params: Mapping[str, str]) -> CallbackResult:
        """
        Complete an authorization from the callback query parameters.

        Args:
            params: Query parameters of the callback request (``code``, ``state``,
                ``iss``, ...)
        """

    @abstractmethod
    async def restore(self, did: str) -> Optional[OAuthSessionData]:
        """
        Restore the session of a DID, refreshing it if needed.

        Implementations signal failures with ``SessionNotFoundError``,
        ``RefreshTokenExpiredError``, ``RefreshTokenRevokedError``,
        ``NetworkError`` or ``TokenExchangeError`` instead of returning None.
        """

    @property
    def supports_refresh(self) -> bool:
        """Whether :meth:`refresh` is implemented."""
        return False

    async def refresh(self, data: RefreshTokenData) -> OAuthSessionData:
        """Refresh the tokens described by ``data``."""
        raise NotImplementedError(f"{type(self).__name__} does not support refresh")
