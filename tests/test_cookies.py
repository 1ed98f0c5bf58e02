"""
Unit tests for social.graze.sessions.cookies

Covers cookie header parsing, Set-Cookie construction, and the per-request
cookie session cache.
"""

import time
import warnings

import pytest
from aiohttp import hdrs, web

from social.graze.sessions.cookies import (
    COOKIE_SESSIONS_REQUEST_KEY,
    CookieSession,
    apply_session_cookies,
    build_clear_cookie_header,
    build_set_cookie_header,
    load_cookie_session,
    pending_cookie_sessions,
    read_cookie,
)
from social.graze.sessions.model.session import CookieSessionData
from social.graze.sessions.seal import SealedTokenCodec
from tests.test_helpers import OTHER_SECRET, TEST_SECRET, make_request

TTL = 604800


@pytest.fixture
def codec():
    return SealedTokenCodec(TEST_SECRET)


class TestReadCookie:
    def test_missing_header(self):
        assert read_cookie(None, "sid") is None
        assert read_cookie("", "sid") is None

    def test_single_cookie(self):
        assert read_cookie("sid=abc", "sid") == "abc"

    def test_among_other_cookies(self):
        assert read_cookie("theme=dark; sid=abc; lang=en", "sid") == "abc"

    def test_value_containing_equals(self):
        """Sealed values end in base64 padding; everything after the first = counts."""
        assert read_cookie("sid=abc==; theme=dark", "sid") == "abc=="

    def test_prefix_collision(self):
        """A cookie whose name merely starts with the wanted name is not a match."""
        assert read_cookie("sidebar=open", "sid") is None
        assert read_cookie("sidebar=open; sid=abc", "sid") == "abc"

    def test_absent_cookie(self):
        assert read_cookie("theme=dark", "sid") is None


class TestCookieHeaders:
    def test_set_cookie_header(self):
        assert build_set_cookie_header("sid", "abc==", 3600) == (
            "sid=abc==; Path=/; HttpOnly; SameSite=Lax; Secure; Max-Age=3600"
        )

    def test_clear_cookie_header(self):
        header = build_clear_cookie_header("sid")

        assert header.startswith("sid=;")
        assert "Max-Age=0" in header
        assert "Path=/" in header
        assert "HttpOnly" in header


class TestCookieSession:
    def test_new_session_is_anonymous(self, codec):
        session = CookieSession("sid", codec, TTL)

        assert session.did is None
        assert session.pending_header is None

    def test_save_queues_sealed_record(self, codec):
        session = CookieSession(
            "sid", codec, TTL, CookieSessionData(did="did:plc:abc", created_at=1)
        )

        session.save()

        assert session.pending_header is not None
        assert session.pending_header.startswith("sid=")
        assert f"Max-Age={TTL}" in session.pending_header
        sealed = session.pending_header.split(";", 1)[0][len("sid="):]
        assert codec.unseal(sealed) == {"did": "did:plc:abc", "created_at": 1}

    def test_destroy_clears_record(self, codec):
        session = CookieSession("sid", codec, TTL, CookieSessionData(did="did:plc:abc"))

        session.destroy()

        assert session.did is None
        assert session.pending_header == build_clear_cookie_header("sid")

    def test_apply_writes_header_once(self, codec):
        session = CookieSession("sid", codec, TTL, CookieSessionData(did="did:plc:abc"))
        session.save()
        response = web.Response()

        session.apply(response)
        session.apply(response)

        assert len(response.headers.getall(hdrs.SET_COOKIE)) == 1
        assert session.pending_header is None

    def test_apply_without_changes(self, codec):
        session = CookieSession("sid", codec, TTL)
        response = web.Response()

        session.apply(response)

        assert hdrs.SET_COOKIE not in response.headers


class TestLoadCookieSession:
    def test_request_without_cookie(self, codec):
        request = make_request()

        session = load_cookie_session(request, "sid", codec, TTL)

        assert session.did is None

    def test_request_with_valid_cookie(self, codec):
        sealed = codec.seal({"did": "did:plc:abc", "created_at": 1, "last_accessed": 2})
        request = make_request(cookie=f"theme=dark; sid={sealed}")

        session = load_cookie_session(request, "sid", codec, TTL)

        assert session.did == "did:plc:abc"
        assert session.data.created_at == 1
        assert session.data.last_accessed == 2

    def test_tampered_cookie_is_anonymous(self, codec):
        request = make_request(cookie="sid=invalid-token")

        session = load_cookie_session(request, "sid", codec, TTL)

        assert session.did is None
        assert session.pending_header is None

    def test_cookie_from_other_secret_is_anonymous(self, codec):
        sealed = SealedTokenCodec(OTHER_SECRET).seal({"did": "did:plc:abc"})
        request = make_request(cookie=f"sid={sealed}")

        assert load_cookie_session(request, "sid", codec, TTL).did is None

    def test_expired_cookie_is_anonymous(self, codec):
        sealed = codec.seal({"did": "did:plc:abc"}, issued_at=int(time.time()) - 7200)
        request = make_request(cookie=f"sid={sealed}")

        assert load_cookie_session(request, "sid", codec, 3600).did is None

    def test_malformed_record_is_anonymous(self, codec):
        sealed = codec.seal({"did": ["not", "a", "string"]})
        request = make_request(cookie=f"sid={sealed}")

        assert load_cookie_session(request, "sid", codec, TTL).did is None

    def test_session_is_cached_per_request(self, codec):
        sealed = codec.seal({"did": "did:plc:abc"})
        request = make_request(cookie=f"sid={sealed}")

        first = load_cookie_session(request, "sid", codec, TTL)
        first.destroy()
        second = load_cookie_session(request, "sid", codec, TTL)

        assert second is first
        assert second.did is None
        assert "sid" in request[COOKIE_SESSIONS_REQUEST_KEY]

    def test_request_storage_uses_typed_key(self, codec):
        request = make_request()

        with warnings.catch_warnings():
            warnings.simplefilter("error", web.NotAppKeyWarning)
            load_cookie_session(request, "sid", codec, TTL)

        assert isinstance(COOKIE_SESSIONS_REQUEST_KEY, web.RequestKey)

    def test_sessions_are_cached_per_name(self, codec):
        request = make_request()

        sid = load_cookie_session(request, "sid", codec, TTL)
        other = load_cookie_session(request, "other", codec, TTL)

        assert sid is not other


class TestApplySessionCookies:
    def test_writes_pending_sessions(self, codec):
        request = make_request()
        session = load_cookie_session(request, "sid", codec, TTL)
        load_cookie_session(request, "other", codec, TTL)
        session.data = CookieSessionData(did="did:plc:abc")
        session.save()

        assert pending_cookie_sessions(request) == [session]

        response = web.Response()
        apply_session_cookies(request, response)

        headers = response.headers.getall(hdrs.SET_COOKIE)
        assert len(headers) == 1
        assert headers[0].startswith("sid=")
        assert pending_cookie_sessions(request) == []

    def test_request_without_sessions(self):
        response = web.Response()

        apply_session_cookies(make_request(), response)

        assert hdrs.SET_COOKIE not in response.headers
