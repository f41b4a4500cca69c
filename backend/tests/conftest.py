from __future__ import annotations

from pathlib import Path

import pytest

from filevault import create_app
from filevault.common.rate_limit import login_rate_limiter
from filevault.extensions import db
from filevault.models import User


ACCOUNTS = (
    ("alice", "alice@example.com", "alicepass"),
    ("bob", "bob@example.com", "bobpass123"),
    ("carol", "carol@example.com", "carolpass"),
)


@pytest.fixture
def app(tmp_path: Path):
    db_path = tmp_path / "test.db"
    storage_path = tmp_path / "storage"

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "STORAGE_ROOT": str(storage_path),
            "JWT_SECRET_KEY": "test-secret-key-at-least-32-bytes-long",
            "ALLOW_REGISTRATION": True,
            "MAX_UPLOAD_SIZE_BYTES": 5 * 1024 * 1024,
            "BLOB_GRACE_SECONDS": 0,
            "FRONTEND_ORIGINS": ["http://localhost:3000"],
        }
    )
    login_rate_limiter.clear()

    with app.app_context():
        db.create_all()

        for username, email, password in ACCOUNTS:
            user = User(username=username, email=email, is_active=True, is_admin=False)
            user.set_password(password)
            db.session.add(user)
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
    login_rate_limiter.clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(username: str = "alice") -> dict[str, str]:
        password = {name: secret for name, _, secret in ACCOUNTS}[username]
        response = client.post("/token", data={"username": username, "password": password})
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.get_json()['access_token']}"}

    return _login
