"""
Tests for the stored login session and static tokens.
"""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest

from unisrv.auth import AuthSession, AuthSessionError, StaticToken


def iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


@pytest.fixture
def session_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text(
        json.dumps(
            {
                "user_id": str(uuid4()),
                "access_token": "access-1",
                "access_token_expiry": iso(timedelta(minutes=-5)),
                "refresh_session_id": str(uuid4()),
                "refresh_token": "refresh-1",
                "refresh_token_expiry": iso(timedelta(days=7)),
                "container_registry_auth": {
                    "ghcr.io": {"username": "bob", "password": "secret"}
                },
            }
        )
    )
    return path


class TestAuthSession:
    """Loading, expiry and token refresh."""

    def test_load_missing(self, tmp_path):
        assert AuthSession.load(tmp_path / "absent.json") is None

    def test_load_unreadable(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert AuthSession.load(path) is None

    def test_registry_credentials(self, session_file):
        session = AuthSession.load(session_file)
        assert session.registry_credentials("ghcr.io") == ("bob", "secret")
        assert session.registry_credentials("quay.io") == (None, None)

    def test_expired(self, session_file):
        session = AuthSession.load(session_file)
        assert session.expired is False

        session.refresh_token_expiry = datetime.now(timezone.utc) - timedelta(seconds=1)
        assert session.expired is True
        with pytest.raises(AuthSessionError, match="expired"):
            session.ensure_auth()

    @pytest.mark.asyncio
    async def test_from_login_round_trips(self, tmp_path):
        path = tmp_path / "nested" / "session.json"
        session = AuthSession.from_login(
            {
                "user_id": str(uuid4()),
                "token": "access-1",
                "expires_at": "2099-01-01T00:00:00Z",
                "refresh_session_id": str(uuid4()),
                "refresh_token": "refresh-1",
                "refresh_expires_at": "2099-02-01T00:00:00Z",
            },
            path,
        )
        await session.save_async(path)

        loaded = AuthSession.load(path)
        assert loaded.access_token == "access-1"
        assert loaded.access_token_expiry == datetime(2099, 1, 1, tzinfo=timezone.utc)
        assert loaded.container_registry_auth == {}
        assert loaded.path == path

    @pytest.mark.asyncio
    async def test_valid_token_used_as_is(self, session_file):
        session = AuthSession.load(session_file)
        session.access_token_expiry = datetime.now(timezone.utc) + timedelta(minutes=5)

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no refresh expected")

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as http:
            assert await session.get_access_token(http) == "access-1"

    @pytest.mark.asyncio
    async def test_refresh_persists_session(self, session_file):
        session = AuthSession.load(session_file)
        new_session_id = uuid4()
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "token": "access-2",
                    "expires_at": iso(timedelta(hours=1)).replace("+00:00", "Z"),
                    "refresh_session_id": str(new_session_id),
                    "refresh_token": "refresh-2",
                    "refresh_expires_at": iso(timedelta(days=7)),
                },
            )

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as http:
            token = await session.get_access_token(http)

        assert token == "access-2"
        assert requests[0].url.path == "/auth/refresh"
        assert requests[0].headers["Authorization"] == "Bearer refresh-1"
        saved = json.loads(session_file.read_text())
        assert saved["access_token"] == "access-2"
        assert saved["refresh_session_id"] == str(new_session_id)
        assert "path" not in saved

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, session_file):
        session = AuthSession.load(session_file)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"reason": "session revoked"})

        async with httpx.AsyncClient(
            base_url="https://api.test", transport=httpx.MockTransport(handler)
        ) as http:
            with pytest.raises(AuthSessionError, match="session revoked"):
                await session.get_access_token(http)


class TestStaticToken:
    @pytest.mark.asyncio
    async def test_token_and_no_registry_credentials(self):
        token = StaticToken("abc")
        assert await token.get_access_token(None) == "abc"
        assert token.registry_credentials("ghcr.io") == (None, None)
