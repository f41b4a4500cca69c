from __future__ import annotations

from filevault.extensions import db
from filevault.models import AuditLog, User


def test_token_and_me(client):
    login = client.post("/token", data={"username": "alice", "password": "alicepass"})
    assert login.status_code == 200

    payload = login.get_json()
    assert payload["token_type"] == "bearer"

    me = client.get("/users/me", headers={"Authorization": f"Bearer {payload['access_token']}"})
    assert me.status_code == 200
    assert me.get_json()["username"] == "alice"
    assert me.get_json()["email"] == "alice@example.com"
    assert "password_hash" not in me.get_json()


def test_token_accepts_json_credentials(client):
    login = client.post("/token", json={"username": "Bob", "password": "bobpass123"})
    assert login.status_code == 200


def test_missing_or_invalid_token_is_rejected(client):
    missing = client.get("/users/me")
    assert missing.status_code == 401
    assert missing.get_json()["error"]["code"] == "UNAUTHENTICATED"

    invalid = client.get("/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401


def test_failed_logins_are_rate_limited(client, app):
    app.config["LOGIN_RATE_LIMIT_MAX_ATTEMPTS"] = 2

    for _ in range(2):
        failed = client.post("/token", data={"username": "alice", "password": "wrong"})
        assert failed.status_code == 401
        assert failed.get_json()["detail"] == "Incorrect username or password."

    blocked = client.post("/token", data={"username": "alice", "password": "alicepass"})
    assert blocked.status_code == 429

    with app.app_context():
        failures = AuditLog.query.filter_by(action="auth.login_failed").all()
        assert len(failures) == 2
        assert {entry.actor_ip for entry in failures} == {"127.0.0.1"}


def test_register_then_login(client, app):
    created = client.post(
        "/register",
        json={"username": "dave", "email": "dave@example.com", "password": "davepass"},
    )
    assert created.status_code == 201
    assert created.get_json()["is_admin"] is False

    login = client.post("/token", data={"username": "dave", "password": "davepass"})
    assert login.status_code == 200

    duplicate_email = client.post(
        "/register",
        json={"username": "dave2", "email": "DAVE@example.com", "password": "davepass"},
    )
    assert duplicate_email.status_code == 409
    assert duplicate_email.get_json()["error"]["code"] == "EMAIL_EXISTS"

    duplicate_name = client.post(
        "/register",
        json={"username": "ALICE", "email": "other@example.com", "password": "davepass"},
    )
    assert duplicate_name.status_code == 409
    assert duplicate_name.get_json()["error"]["code"] == "USER_EXISTS"


def test_register_validates_input_and_respects_toggle(client, app):
    short = client.post("/register", json={"username": "eve", "email": "eve@example.com", "password": "123"})
    assert short.status_code == 400
    assert short.get_json()["error"]["code"] == "INVALID_PASSWORD"

    bad_email = client.post("/register", json={"username": "eve", "email": "eve", "password": "evepass"})
    assert bad_email.status_code == 400

    app.config["ALLOW_REGISTRATION"] = False
    disabled = client.post("/register", json={"username": "eve", "email": "eve@example.com", "password": "evepass"})
    assert disabled.status_code == 403


def test_update_profile_and_password(client, app, login):
    headers = login("alice")

    taken = client.patch("/users/me", json={"email": "bob@example.com"}, headers=headers)
    assert taken.status_code == 409

    updated = client.patch("/users/me", json={"email": "alice@new.example.com"}, headers=headers)
    assert updated.status_code == 200
    assert updated.get_json()["email"] == "alice@new.example.com"

    wrong = client.patch(
        "/users/me/password",
        json={"current_password": "nope", "new_password": "freshpass"},
        headers=headers,
    )
    assert wrong.status_code == 400

    changed = client.patch(
        "/users/me/password",
        json={"current_password": "alicepass", "new_password": "freshpass"},
        headers=headers,
    )
    assert changed.status_code == 200

    assert client.post("/token", data={"username": "alice", "password": "freshpass"}).status_code == 200


def test_inactive_account_cannot_log_in_or_use_token(client, app, login):
    headers = login("bob")

    with app.app_context():
        bob = User.query.filter_by(username="bob").one()
        bob.is_active = False
        db.session.commit()

    assert client.get("/users/me", headers=headers).status_code == 401
    assert client.post("/token", data={"username": "bob", "password": "bobpass123"}).status_code == 401
