import os
import tempfile
import uuid
from pathlib import Path

import pytest

# must be set before the app package reads its settings
_DB_DIR = Path(tempfile.mkdtemp(prefix="academicpro-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["JWT_SECRET"] = "academicpro-test-secret-0123456789abcdef"

from sqlmodel import SQLModel, Session  # noqa: E402

from academicpro import models  # noqa: E402,F401
from academicpro.database import engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test a fresh set of empty tables."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def make_user():
    """Sign a user up through the API and return `(headers, user_id)`."""
    from fastapi.testclient import TestClient
    from academicpro.main import app

    client = TestClient(app)

    def _make(first_name="Ada", last_name="Lovelace", email=None, password="secret123"):
        email = email or f"{first_name.lower()}-{uuid.uuid4().hex[:8]}@example.com"
        r = client.post('/api/users/signup', json={
            'first_name': first_name,
            'last_name': last_name,
            'email': email,
            'password': password,
            'confirm_password': password,
        })
        assert r.status_code == 201, r.text
        body = r.json()
        return {'Authorization': f"Bearer {body['access_token']}"}, body['id']
    return _make
