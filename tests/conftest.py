# tests/conftest.py
# Shared fixtures: an in-memory MongoDB, a test client and helpers that
# register users and seed questions or finished quizzes.

from datetime import timedelta

import mongomock
import pytest

import app as quizzed


@pytest.fixture(autouse=True)
def data_manager(monkeypatch, tmp_path):
    manager = quizzed.DataManager(mongomock.MongoClient(), "quizzed_test")
    manager.ensure_indexes()
    monkeypatch.setattr(quizzed, "data_manager", manager)
    monkeypatch.setattr(quizzed, "ai_tutor", quizzed.AITutor(api_key="", model="gpt-3.5-turbo", timeout=1))
    monkeypatch.setitem(quizzed.app.config, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setitem(quizzed.app.config, "FRONTEND_DIR", str(tmp_path / "frontend"))
    quizzed.rate_limit_store.clear()
    return manager


@pytest.fixture
def client():
    return quizzed.app.test_client()


@pytest.fixture
def register(client):
    """Sign a user up and return (user_json, auth_headers)"""
    def _register(username="alice", email="alice@example.com", password="secret123"):
        resp = client.post("/api/auth/signup", json={
            "username": username, "email": email, "password": password
        })
        assert resp.status_code == 201, resp.get_json()
        body = resp.get_json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}
    return _register


@pytest.fixture
def auth(register):
    return register()


@pytest.fixture
def make_question(data_manager):
    def _make_question(topic="mathematics", difficulty="medium", correct=1, text=None, **extra):
        options = [{"text": f"Option {i}", "is_correct": i == correct} for i in range(4)]
        return data_manager.create_question(quizzed.Question(
            question_text=text or f"A {difficulty} {topic} question",
            question_type="multiple-choice",
            options=options,
            explanation="Because option 1 is right.",
            difficulty=difficulty,
            topics=[topic],
            **extra
        ))
    return _make_question


@pytest.fixture
def make_attempt(data_manager):
    """Insert a completed attempt finished `days_ago` days before now"""
    def _make_attempt(user_id, score, topic="mathematics", days_ago=0, time_spent=120, questions=None):
        completed_at = quizzed.utcnow() - timedelta(days=days_ago)
        return data_manager.create_quiz_attempt(quizzed.QuizAttempt(
            user_id=user_id,
            topic_id=topic,
            questions=[q.id for q in questions or []],
            score=score,
            time_spent=time_spent,
            started_at=completed_at - timedelta(seconds=time_spent),
            completed_at=completed_at,
            status="completed"
        ))
    return _make_attempt
