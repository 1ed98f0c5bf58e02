"""Session data models.

Pydantic models for the records the session manager seals into cookies, keeps
in the session store, exchanges with OAuth clients and returns to callers.
All timestamps are milliseconds since the Unix epoch.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

REFRESH_WINDOW_MS = 5 * 60 * 1000
"""Tokens expiring within this window are refreshed during validation."""


def session_storage_key(did: str) -> str:
    """Storage key of the stored OAuth session for a DID."""
    return f"session:{did}"


class CookieSessionData(BaseModel):
    """Record sealed into the browser cookie.

    A record without ``did`` is an anonymous session.
    """

    did: Optional[str] = None
    created_at: Optional[int] = None
    last_accessed: Optional[int] = None


class OAuthSessionData(BaseModel):
    """Session descriptor produced by an OAuth client.

    Clients may attach protocol specific fields (DPoP key material, issuer,
    token endpoint, ...). They are kept and stored verbatim.
    """

    model_config = ConfigDict(extra="allow")

    did: str
    access_token: str
    refresh_token: Optional[str] = None
    handle: Optional[str] = None
    pds_url: Optional[str] = None
    time_until_expiry: Optional[int] = None
    """Milliseconds until the access token expires, if known."""


class RefreshTokenData(BaseModel):
    """The fields an OAuth client needs to refresh a session, and nothing more."""

    did: str
    access_token: str
    refresh_token: str
    handle: Optional[str] = None
    expires_at: Optional[int] = None
    time_until_expiry: int = 0


class StoredOAuthSession(BaseModel):
    """OAuth session record kept in the session store under ``session:{did}``.

    Its presence is what makes a DID signed in. Cookies and mobile tokens only
    point at it.
    """

    model_config = ConfigDict(extra="allow")

    did: str
    access_token: str
    refresh_token: Optional[str] = None
    handle: Optional[str] = None
    pds_url: Optional[str] = None
    expires_at: Optional[int] = None
    created_at: int
    updated_at: int

    @classmethod
    def from_oauth_session(
        cls, session: OAuthSessionData, now: int
    ) -> "StoredOAuthSession":
        data = session.model_dump(exclude={"time_until_expiry"})
        if session.time_until_expiry is not None:
            data["expires_at"] = now + session.time_until_expiry
        data["created_at"] = now
        data["updated_at"] = now
        return cls.model_validate(data)

    def is_near_expiry(self, now: int, window: int = REFRESH_WINDOW_MS) -> bool:
        return self.expires_at is not None and now + window >= self.expires_at

    def refresh_data(self, now: int) -> RefreshTokenData:
        if self.refresh_token is None:
            raise ValueError("Stored session has no refresh token")
        return RefreshTokenData(
            did=self.did,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            handle=self.handle,
            expires_at=self.expires_at,
            time_until_expiry=(
                max(0, self.expires_at - now) if self.expires_at is not None else 0
            ),
        )

    def refreshed(self, session: OAuthSessionData, now: int) -> "StoredOAuthSession":
        """Copy of this record carrying the tokens of a refreshed session."""
        return self.model_copy(
            update={
                "access_token": session.access_token,
                "refresh_token": session.refresh_token or self.refresh_token,
                "expires_at": (
                    now + session.time_until_expiry
                    if session.time_until_expiry
                    else None
                ),
                "updated_at": now,
            }
        )


class OAuthState(BaseModel):
    """State round-tripped through the authorization server as JSON."""

    model_config = ConfigDict(populate_by_name=True)

    handle: Optional[str] = None
    timestamp: Optional[int] = None
    mobile: Optional[bool] = None
    code_challenge: Optional[str] = Field(default=None, alias="codeChallenge")
    redirect_path: Optional[str] = Field(default=None, alias="redirectPath")

    def serialize(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ValidationResult(BaseModel):
    valid: bool
    did: Optional[str] = None
    handle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RefreshPayload(BaseModel):
    did: str
    sid: str


class RefreshResult(BaseModel):
    """Uniform result envelope of a mobile token refresh."""

    success: bool
    payload: Optional[RefreshPayload] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
