# tests/auth_test.py
# Signup, login, token checks and profile updates.

from datetime import datetime, timedelta, timezone

import jwt

import app as quizzed


def test_signup_returns_token_and_public_user(client):
    resp = client.post("/api/auth/signup", json={
        "username": "alice", "email": "Alice@Example.com", "password": "secret123"
    })
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["success"] is True
    assert data["token"]
    user = data["user"]
    assert user["email"] == "alice@example.com"
    assert user["role"] == "student"
    assert user["stats"]["totalQuizzesTaken"] == 0
    assert user["preferences"]["difficultyLevel"] == "beginner"
    assert user["profile"]["avatar"].startswith("/assets/avatars/default-")
    assert "password" not in user and "passwordHash" not in user

    payload = jwt.decode(data["token"], quizzed.app.config["JWT_SECRET"], algorithms=["HS256"])
    assert payload["userId"] == user["id"]
    assert payload["username"] == "alice"


def test_signup_validation(client):
    resp = client.post("/api/auth/signup", json={"username": "bob", "email": "bob@example.com"})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Please provide username, email, and password"

    resp = client.post("/api/auth/signup", json={"username": "bob", "email": "bob@example.com", "password": "123"})
    assert resp.status_code == 400

    resp = client.post("/api/auth/signup", json={"username": "bo", "email": "bob@example.com", "password": "secret123"})
    assert resp.status_code == 400

    resp = client.post("/api/auth/signup", json={"username": "bob", "email": "not-an-email", "password": "secret123"})
    assert resp.status_code == 400


def test_signup_rejects_duplicates(client, register):
    register()
    resp = client.post("/api/auth/signup", json={
        "username": "someone", "email": "alice@example.com", "password": "secret123"
    })
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Email already registered"

    resp = client.post("/api/auth/signup", json={
        "username": "alice", "email": "other@example.com", "password": "secret123"
    })
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Username already taken"


def test_login_flow(client, register, data_manager):
    register()
    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["message"] == "Login successful"
    assert data["user"]["username"] == "alice"
    assert data_manager.get_user_by_email("alice@example.com").last_login is not None

    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong-password"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Invalid email or password"

    resp = client.post("/api/auth/login", json={"email": "alice@example.com"})
    assert resp.status_code == 400


def test_login_accepts_username(client, register):
    register()
    resp = client.post("/api/auth/login", json={"email": "alice", "password": "secret123"})
    assert resp.status_code == 200


def test_verify_requires_bearer_token(client, auth):
    user, headers = auth
    resp = client.post("/api/auth/verify", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["user"]["id"] == user["id"]

    resp = client.post("/api/auth/verify")
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Access denied. No valid token provided."

    resp = client.post("/api/auth/verify", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Invalid token."


def test_expired_and_orphaned_tokens(client, auth, data_manager):
    user, _ = auth
    secret = quizzed.app.config["JWT_SECRET"]
    past = datetime.now(timezone.utc) - timedelta(days=8)
    expired = jwt.encode({"userId": user["id"], "username": "alice", "iat": past,
                          "exp": past + timedelta(days=7)}, secret, algorithm="HS256")
    resp = client.post("/api/auth/verify", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Token has expired. Please login again."

    data_manager.users.delete_many({})
    now = datetime.now(timezone.utc)
    orphan = jwt.encode({"userId": user["id"], "username": "alice", "iat": now,
                         "exp": now + timedelta(days=1)}, secret, algorithm="HS256")
    resp = client.post("/api/auth/verify", headers={"Authorization": f"Bearer {orphan}"})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Token is valid but user no longer exists."


def test_update_profile_changes_only_given_fields(client, auth):
    _, headers = auth
    resp = client.put("/api/auth/profile", headers=headers, json={
        "firstName": "Alice", "favoriteTopics": ["science"], "difficultyLevel": "advanced"
    })
    assert resp.status_code == 200
    user = resp.get_json()["user"]
    assert user["profile"]["firstName"] == "Alice"
    assert user["profile"]["lastName"] == ""
    assert user["preferences"] == {"favoriteTopics": ["science"], "difficultyLevel": "advanced"}

    resp = client.put("/api/auth/profile", headers=headers, json={"difficultyLevel": "wizard"})
    assert resp.status_code == 400

    resp = client.put("/api/auth/profile", headers=headers, json={"favoriteTopics": "science"})
    assert resp.status_code == 400


def test_change_password(client, auth):
    _, headers = auth
    resp = client.post("/api/auth/change-password", headers=headers,
                       json={"currentPassword": "wrong", "newPassword": "newsecret"})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Current password is incorrect"

    resp = client.post("/api/auth/change-password", headers=headers,
                       json={"currentPassword": "secret123", "newPassword": "123"})
    assert resp.status_code == 400

    resp = client.post("/api/auth/change-password", headers=headers,
                       json={"currentPassword": "secret123", "newPassword": "newsecret"})
    assert resp.status_code == 200

    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "newsecret"})
    assert resp.status_code == 200


def test_signup_rate_limit(client, monkeypatch):
    monkeypatch.setitem(quizzed.app.config, "RATE_LIMIT_ENABLED", True)
    for i in range(5):
        client.post("/api/auth/signup", json={"username": f"user{i}", "email": f"user{i}@example.com",
                                              "password": "secret123"})
    resp = client.post("/api/auth/signup", json={"username": "user9", "email": "user9@example.com",
                                                 "password": "secret123"})
    assert resp.status_code == 429
    assert resp.get_json()["success"] is False


def test_empty_bearer_token(client):
    resp = client.post("/api/auth/verify", headers={"Authorization": "Bearer "})
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Access denied. No token provided."


def test_login_rate_limit(client, register, monkeypatch):
    register()
    monkeypatch.setitem(quizzed.app.config, "RATE_LIMIT_ENABLED", True)
    for _ in range(10):
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
        assert resp.status_code == 200
    resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    assert resp.status_code == 429
    assert resp.get_json()["message"] == "Too many requests. Please try again later."


def test_optional_auth_ignores_invalid_token(client, make_question):
    make_question(topic="mathematics")
    resp = client.get("/api/quiz/topics", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 200
    topics = resp.get_json()["topics"]
    assert topics[0]["id"] == "mathematics"
    assert "studied" not in topics[0]
