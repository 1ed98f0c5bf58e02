"""
Sealed Token Codec

Turns a small JSON record into an opaque, authenticated and encrypted string and
back. The same codec seals the browser cookie payload and the mobile bearer
token.

Sealing uses Fernet (AES-128-CBC with an HMAC-SHA256 tag). The Fernet key is
derived from the shared secret with HKDF-SHA256, so any secret of at least 32
characters can be used directly. Older secrets can be kept around for
unsealing while new values are always sealed with the current one, which
allows rotating the secret without signing everybody out.

Sealed values are URL-safe base64 and may end in ``=`` padding.
"""

import base64
import json
from typing import Any, Dict, Iterable, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from social.graze.sessions.errors import UnsealError

MIN_SECRET_LENGTH = 32
"""Minimum number of characters accepted for a sealing secret."""

HKDF_INFO = b"social.graze.sessions/seal/v1"


def derive_fernet_key(secret: str) -> bytes:
    """
    Derive a Fernet key from a shared secret.

    Args:
        secret: Shared secret string

    Returns:
        bytes: URL-safe base64 encoded 32 byte key suitable for ``Fernet``
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=HKDF_INFO,
    )
    return base64.urlsafe_b64encode(hkdf.derive(secret.encode("utf-8")))


class SealedTokenCodec:
    """
    Seals and unseals JSON objects with a shared secret.

    Args:
        secret: Current secret, used for sealing and unsealing
        previous_secrets: Retired secrets that are still accepted when unsealing
    """

    def __init__(self, secret: str, previous_secrets: Iterable[str] = ()) -> None:
        keys = [Fernet(derive_fernet_key(secret))]
        keys.extend(Fernet(derive_fernet_key(s)) for s in previous_secrets)
        self._fernet = MultiFernet(keys)

    def seal(self, data: Mapping[str, Any], issued_at: Optional[int] = None) -> str:
        """
        Seal a JSON-serializable mapping.

        Args:
            data: Record to seal
            issued_at: Unix time (seconds) to stamp into the token, defaults to now

        Returns:
            str: Opaque sealed value
        """
        payload = json.dumps(dict(data), separators=(",", ":")).encode("utf-8")
        if issued_at is None:
            token = self._fernet.encrypt(payload)
        else:
            token = self._fernet.encrypt_at_time(payload, issued_at)
        return token.decode("ascii")

    def unseal(
        self,
        sealed: str,
        ttl: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Unseal a value produced by :meth:`seal`.

        Args:
            sealed: Sealed value
            ttl: Maximum age in seconds; older values are rejected
            now: Unix time (seconds) to check ``ttl`` against, defaults to now

        Returns:
            Dict[str, Any]: The original record

        Raises:
            UnsealError: If the value was tampered with, has expired, was sealed
                with an unknown secret, or does not hold a JSON object
        """
        try:
            token = sealed.encode("ascii")
            if now is None:
                payload = self._fernet.decrypt(token, ttl=ttl)
            else:
                if ttl is None:
                    raise UnsealError("A ttl is required when checking at a given time")
                payload = self._fernet.decrypt_at_time(token, ttl, now)
        except (InvalidToken, UnicodeEncodeError) as e:
            raise UnsealError("Invalid sealed value") from e

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise UnsealError("Sealed value is not valid JSON") from e

        if not isinstance(data, dict):
            raise UnsealError("Sealed value is not an object")
        return data
