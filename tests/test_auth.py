from datetime import datetime, timedelta, timezone

import httpx
from sqlmodel import select

from nyx.db import get_session
from nyx.main import app
from nyx.models import AuthSession
from nyx.services.auth import GoogleClient, get_google_client, hash_password, verify_password


def test_password_hash_round_trip():
    stored = hash_password("hunter22")
    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)
    assert not verify_password("hunter22", None)
    assert not verify_password("hunter22", "garbage")


def test_sign_up_returns_session(client):
    r = client.post("/api/auth/sign-up/email", json={"name": "Alice", "email": "Alice@Example.com", "password": "password123"})
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["name"] == "Alice"
    assert body["session"]["token"]
    assert "expiresAt" in body["session"] and "createdAt" in body["session"]
    expires = datetime.fromisoformat(body["session"]["expiresAt"].replace("Z", "+00:00"))
    assert expires.utcoffset() == timedelta(0)
    assert timedelta(days=6) < expires - datetime.now(timezone.utc) <= timedelta(days=7)
    assert client.cookies.get("nyx_session") == body["session"]["token"]


def test_duplicate_email_rejected(client, sign_up):
    sign_up("Alice")
    r = client.post("/api/auth/sign-up/email", json={"name": "Alice", "email": "alice@example.com", "password": "password123"})
    assert r.status_code == 409


def test_sign_in_and_bad_password(client, sign_up):
    sign_up("Alice")
    r = client.post("/api/auth/sign-in/email", json={"email": "alice@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid email or password"

    r = client.post("/api/auth/sign-in/email", json={"email": "alice@example.com", "password": "password123"})
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "alice@example.com"


def test_session_and_sign_out(client, alice):
    r = client.get("/api/auth/session", headers=alice)
    assert r.status_code == 200
    assert r.json()["user"]["name"] == "Alice"

    assert client.get("/api/auth/session").json() is None

    r = client.post("/api/auth/sign-out", headers=alice)
    assert r.json() == {"ok": True}
    assert client.get("/api/auth/session", headers=alice).json() is None


def test_expired_session_is_dropped(client, alice):
    token = alice["Authorization"].split(" ", 1)[1]

    async def expire():
        async with get_session() as session:
            result = await session.exec(select(AuthSession).where(AuthSession.token == token))
            row = result.first()
            row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
            session.add(row)
            await session.commit()

    client.portal.call(expire)
    assert client.get("/api/auth/session", headers=alice).json() is None
    assert client.get("/api/workouts", headers=alice).json() == []


def _google_override(handler):
    async def fake_google():
        google = GoogleClient(transport=httpx.MockTransport(handler))
        try:
            yield google
        finally:
            await google.close()

    return fake_google


def test_google_sign_in_flow(client):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "google-access"})
        if request.url.path == "/v1/userinfo":
            assert request.headers["authorization"] == "Bearer google-access"
            return httpx.Response(200, json={
                "sub": "g-123",
                "email": "gina@example.com",
                "name": "Gina",
                "picture": "https://img.example.com/gina.png",
            })
        return httpx.Response(404)

    app.dependency_overrides[get_google_client] = _google_override(handler)

    r = client.get("/api/auth/sign-in/google", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"].startswith("https://accounts.google.com/")
    state = client.cookies.get("nyx_oauth_state")
    assert state and f"state={state}" in r.headers["location"]

    r = client.get("/api/auth/callback/google", params={"code": "abc", "state": state}, follow_redirects=False)
    assert r.status_code == 303
    assert client.cookies.get("nyx_session")

    session = client.get("/api/auth/session").json()
    assert session["user"]["email"] == "gina@example.com"
    assert session["user"]["image"] == "https://img.example.com/gina.png"


def test_google_callback_rejects_bad_state(client):
    app.dependency_overrides[get_google_client] = _google_override(lambda request: httpx.Response(500))
    client.get("/api/auth/sign-in/google", follow_redirects=False)
    assert client.cookies.get("nyx_oauth_state")
    r = client.get("/api/auth/callback/google", params={"code": "abc", "state": "forged"}, follow_redirects=False)
    assert r.status_code == 403


def test_google_links_existing_email_account(client, sign_up):
    sign_up("Gina", email="gina@example.com")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "t"})
        return httpx.Response(200, json={"sub": "g-9", "email": "gina@example.com", "email_verified": True})

    app.dependency_overrides[get_google_client] = _google_override(handler)
    client.get("/api/auth/sign-in/google", follow_redirects=False)
    state = client.cookies.get("nyx_oauth_state")
    client.get("/api/auth/callback/google", params={"code": "abc", "state": state}, follow_redirects=False)

    session = client.get("/api/auth/session").json()
    assert session["user"]["name"] == "Gina"
    assert session["user"]["email"] == "gina@example.com"


def test_session_timestamps_read_back_as_utc(client, alice):
    token = alice["Authorization"].split(" ", 1)[1]

    async def load():
        async with get_session() as session:
            result = await session.exec(select(AuthSession).where(AuthSession.token == token))
            return result.first()

    row = client.portal.call(load)
    assert row.created_at.tzinfo is not None
    assert row.expires_at.utcoffset() == timedelta(0)
    assert row.created_at < row.expires_at


def test_google_unverified_email_cannot_take_over_account(client, alice):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "t"})
        return httpx.Response(200, json={"sub": "other-sub", "email": "alice@example.com", "email_verified": False})

    app.dependency_overrides[get_google_client] = _google_override(handler)
    client.get("/api/auth/sign-in/google", follow_redirects=False)
    state = client.cookies.get("nyx_oauth_state")
    r = client.get("/api/auth/callback/google", params={"code": "abc", "state": state}, follow_redirects=False)
    assert r.status_code == 401
    assert r.json()["detail"] == "Google account email is not verified"
    assert client.cookies.get("nyx_session") is None
    assert client.get("/api/auth/session").json() is None
