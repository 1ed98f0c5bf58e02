"""AT Protocol identifier syntax checks.

Handles are DNS hostnames with at least two labels and an alphabetic TLD.
DIDs follow the generic ``did:<method>:<identifier>`` shape accepted by the
AT Protocol.
"""

import re
from typing import Optional

HANDLE_MAX_LENGTH = 253
DID_MAX_LENGTH = 2048

HANDLE_RE = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+"
    r"[a-zA-Z]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
DID_RE = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._:%-]*[a-zA-Z0-9._-]$")


def is_valid_handle(value: Optional[str]) -> bool:
    """Check if value is a syntactically valid AT Protocol handle.

    Args:
        value: Candidate handle, e.g. ``alice.bsky.social``

    Returns:
        True if the handle is at most 253 characters and matches the hostname rule
    """
    if not value or len(value) > HANDLE_MAX_LENGTH:
        return False
    return HANDLE_RE.match(value) is not None


def is_valid_did(value: Optional[str]) -> bool:
    """Check if value is a syntactically valid DID."""
    if not value or len(value) > DID_MAX_LENGTH:
        return False
    return DID_RE.match(value) is not None


def is_safe_redirect_path(value: Optional[str]) -> bool:
    """Check if value is a same-origin path that can be used as a redirect.

    Only absolute paths are accepted. Protocol-relative values (``//host``) would
    send the browser to another origin and are rejected, as is ``/\\host`` which
    browsers normalize to the same thing.
    """
    if not value or not value.startswith("/"):
        return False
    return not value.startswith("//") and not value.startswith("/\\")
