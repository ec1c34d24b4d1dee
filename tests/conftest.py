import os
import shutil
import tempfile
from pathlib import Path

import pytest

TMP = Path(tempfile.mkdtemp(prefix="nyx-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{TMP / 'test.db'}"
os.environ["STATE_FILE"] = str(TMP / "client_state.json")
os.environ["STORAGE_DIR"] = str(TMP / "uploads")
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["GOOGLE_CLIENT_ID"] = "google-client"
os.environ["GOOGLE_CLIENT_SECRET"] = "google-secret"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"

from fastapi.testclient import TestClient  # noqa: E402

from nyx.main import app  # noqa: E402


@pytest.fixture
def client():
    (TMP / "test.db").unlink(missing_ok=True)
    (TMP / "client_state.json").unlink(missing_ok=True)
    shutil.rmtree(TMP / "uploads", ignore_errors=True)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sign_up(client):
    """Create an account and return bearer headers for it."""

    def _sign_up(name: str = "Alice", email: str | None = None, password: str = "password123"):
        email = email or f"{name.lower()}@example.com"
        r = client.post("/api/auth/sign-up/email", json={"name": name, "email": email, "password": password})
        assert r.status_code == 200, r.text
        # requests without headers should stay anonymous
        client.cookies.clear()
        return {"Authorization": f"Bearer {r.json()['session']['token']}"}

    return _sign_up


@pytest.fixture
def alice(sign_up):
    return sign_up("Alice")


@pytest.fixture
def bob(sign_up):
    return sign_up("Bob")
