import os
import tempfile
import uuid
from pathlib import Path

import pytest

# point the app at a throwaway database before coursehub.config is imported
_DB_DIR = Path(tempfile.mkdtemp(prefix="coursehub-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from coursehub.main import app
    return TestClient(app)


@pytest.fixture
def make_user(client):
    """Register and log in a fresh user; returns (user json, auth headers)."""
    def _make(role="student", name=None):
        email = f"{role}-{uuid.uuid4().hex[:8]}@example.edu"
        r = client.post('/auth/register', json={'email': email, 'password': 'pw123', 'name': name or email, 'role': role})
        assert r.status_code == 200, r.text
        login = client.post('/auth/login', json={'email': email, 'password': 'pw123'})
        assert login.status_code == 200
        return r.json(), {'Authorization': f"Bearer {login.json()['access_token']}"}
    return _make
