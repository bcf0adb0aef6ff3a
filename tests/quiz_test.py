# tests/quiz_test.py
# Full quiz lifecycle: topics, start, answer, complete, history.

import random

import app as quizzed
from app import Question, QuestionSelector


def start(client, headers, topic="mathematics", **body):
    resp = client.post(f"/api/quiz/start/{topic}", headers=headers, json=body)
    return resp, resp.get_json()


def test_topics_grouped_from_question_bank(client, make_question):
    make_question(topic="mathematics", difficulty="easy")
    make_question(topic="mathematics", difficulty="hard")
    make_question(topic="world history", difficulty="medium")

    data = client.get("/api/quiz/topics").get_json()
    assert data["totalTopics"] == 2
    maths, history = data["topics"]
    assert maths["id"] == "mathematics"
    assert maths["questionCount"] == 2
    assert maths["difficulty"] == "hard"
    assert maths["icon"] == "fas fa-calculator"
    assert history["id"] == "world-history"
    assert history["name"] == "World history"
    assert history["description"] == quizzed.DEFAULT_TOPIC_DESCRIPTION
    assert "studied" not in maths


def test_topics_mark_studied_for_signed_in_user(client, auth, make_question, data_manager):
    user, headers = auth
    make_question(topic="mathematics")
    stored = data_manager.get_user_by_id(user["id"])
    stored.stats["topics_studied"] = ["mathematics"]
    data_manager.save_user(stored)

    data = client.get("/api/quiz/topics", headers=headers).get_json()
    assert data["topics"][0]["studied"] is True


def test_full_quiz_lifecycle(client, auth, make_question, data_manager):
    user, headers = auth
    for _ in range(3):
        make_question(correct=1)

    resp, data = start(client, headers, questionCount=3)
    assert resp.status_code == 200
    quiz = data["quiz"]
    assert quiz["totalQuestions"] == 3
    assert quiz["timeLimit"] == 180
    assert all("isCorrect" not in opt for q in quiz["questions"] for opt in q["options"])
    assert quiz["questions"][0]["estimatedTime"] == 60

    first, second, third = quiz["questions"]
    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": quiz["id"], "questionId": first["id"], "selectedIndex": 1, "timeSpent": 10
    })
    assert resp.status_code == 200
    answer = resp.get_json()
    assert answer["isCorrect"] is True
    assert answer["correctAnswer"] == 1
    assert answer["questionAnalytics"]["successRate"] == "100.0"

    client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": quiz["id"], "questionId": second["id"], "selectedIndex": 0, "timeSpent": 20
    })
    client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": quiz["id"], "questionId": third["id"], "selectedIndex": 1, "timeSpent": 30
    })

    resp = client.post("/api/quiz/complete", headers=headers, json={"quizAttemptId": quiz["id"]})
    assert resp.status_code == 200
    results = resp.get_json()["results"]
    assert results["score"] == 67
    assert results["correctAnswers"] == 2
    assert results["totalQuestions"] == 3
    assert results["timeSpent"] == 60
    assert results["topicId"] == "mathematics"

    stats = resp.get_json()["userStats"]
    assert stats["totalQuizzesTaken"] == 1
    assert stats["totalScore"] == 67
    assert stats["topicsStudied"] == ["mathematics"]

    # Completed attempts cannot be completed or answered again
    resp = client.post("/api/quiz/complete", headers=headers, json={"quizAttemptId": quiz["id"]})
    assert resp.status_code == 404
    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": quiz["id"], "questionId": first["id"], "selectedIndex": 1
    })
    assert resp.status_code == 404

    question = data_manager.get_question(second["id"])
    assert question.analytics["total_attempts"] == 1
    assert question.analytics["correct_attempts"] == 0
    assert question.analytics["average_time"] == 20


def test_start_validation_and_empty_topic(client, auth):
    _, headers = auth
    resp, data = start(client, headers, topic="astronomy")
    assert resp.status_code == 404
    assert data["message"] == "No questions found for this topic"

    resp, _ = start(client, headers, questionCount=0)
    assert resp.status_code == 400
    resp, _ = start(client, headers, questionCount="many")
    assert resp.status_code == 400
    resp, _ = start(client, headers, difficulty="impossible")
    assert resp.status_code == 400


def test_start_filters_by_difficulty(client, auth, make_question):
    _, headers = auth
    make_question(difficulty="easy")
    make_question(difficulty="hard")
    _, data = start(client, headers, difficulty="hard")
    assert [q["difficulty"] for q in data["quiz"]["questions"]] == ["hard"]


def test_answer_replaces_earlier_answer(client, auth, make_question, data_manager):
    _, headers = auth
    make_question(correct=2)
    _, data = start(client, headers)
    quiz = data["quiz"]
    question_id = quiz["questions"][0]["id"]

    for index in (0, 2):
        client.post("/api/quiz/submit-answer", headers=headers, json={
            "quizAttemptId": quiz["id"], "questionId": question_id, "selectedIndex": index
        })

    attempt = data_manager.quiz_attempts.find_one()
    assert len(attempt["answers"]) == 1
    assert attempt["answers"][0]["is_correct"] is True


def test_submit_answer_rejects_foreign_and_bad_input(client, auth, register, make_question):
    _, headers = auth
    first = make_question(topic="mathematics")
    other = make_question(topic="science")
    _, data = start(client, headers)
    attempt_id = data["quiz"]["id"]

    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": attempt_id, "questionId": other.id, "selectedIndex": 0
    })
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Question is not part of this quiz"

    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": attempt_id, "questionId": first.id, "selectedIndex": "b"
    })
    assert resp.status_code == 400

    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": "not-an-id", "questionId": first.id, "selectedIndex": 0
    })
    assert resp.status_code == 404

    # Another user's attempt is invisible
    _, bob_headers = register("bob", "bob@example.com")
    resp = client.post("/api/quiz/submit-answer", headers=bob_headers, json={
        "quizAttemptId": attempt_id, "questionId": first.id, "selectedIndex": 0
    })
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "Quiz attempt not found or already completed"


def test_out_of_range_choice_is_wrong(client, auth, make_question):
    _, headers = auth
    question = make_question()
    _, data = start(client, headers)
    resp = client.post("/api/quiz/submit-answer", headers=headers, json={
        "quizAttemptId": data["quiz"]["id"], "questionId": question.id, "selectedIndex": 9
    })
    assert resp.get_json()["isCorrect"] is False


def test_history_pagination(client, auth, make_question, make_attempt):
    user, headers = auth
    question = make_question()
    for days_ago in range(3):
        make_attempt(user["id"], 50 + days_ago * 10, days_ago=days_ago, questions=[question])

    data = client.get("/api/quiz/history?page=1&limit=2", headers=headers).get_json()
    assert data["pagination"] == {"currentPage": 1, "totalPages": 2, "total": 3, "hasMore": True}
    assert [q["score"] for q in data["quizzes"]] == [50, 60]
    assert data["quizzes"][0]["questions"][0]["questionText"] == question.question_text
    assert data["summary"]["totalQuizzes"] == 3
    assert data["summary"]["averageScore"] == 60

    data = client.get("/api/quiz/history?page=2&limit=2", headers=headers).get_json()
    assert [q["score"] for q in data["quizzes"]] == [70]
    assert data["pagination"]["hasMore"] is False

    data = client.get("/api/quiz/history?topicId=science", headers=headers).get_json()
    assert data["quizzes"] == []


def test_recommendations(client, auth, make_attempt):
    user, headers = auth
    make_attempt(user["id"], 40, topic="mathematics")
    make_attempt(user["id"], 90, topic="science")

    data = client.get("/api/quiz/recommendations", headers=headers).get_json()
    kinds = [(r["type"], r["topicId"]) for r in data["recommendations"]]
    assert ("improvement", "mathematics") in kinds
    assert ("advancement", "advanced-science") in kinds
    assert sum(1 for kind, _ in kinds if kind == "exploration") == 2
    assert len(kinds) <= 5
    assert data["topicPerformance"]["mathematics"]["trend"] == "stable"


def test_create_question_requires_admin(client, auth, data_manager):
    user, headers = auth
    body = {
        "questionText": "What is 2 + 2?",
        "questionType": "multiple-choice",
        "options": [{"text": "3"}, {"text": "4", "isCorrect": True}],
        "difficulty": "easy",
        "topics": ["mathematics"],
        "metadata": {"subject": "Arithmetic", "estimatedTime": 30}
    }
    resp = client.post("/api/quiz/questions", headers=headers, json=body)
    assert resp.status_code == 403

    data_manager.users.update_one({"username": "alice"}, {"$set": {"role": "admin"}})
    resp = client.post("/api/quiz/questions", headers=headers, json=body)
    assert resp.status_code == 201
    question = resp.get_json()["question"]
    assert question["options"][1]["isCorrect"] is True
    assert question["metadata"]["estimatedTime"] == 30
    assert question["createdBy"] == user["id"]

    body["options"] = [{"text": "3"}, {"text": "4"}]
    resp = client.post("/api/quiz/questions", headers=headers, json=body)
    assert resp.status_code == 400


def test_adaptive_mix_follows_average_score():
    assert QuestionSelector.difficulty_mix(90, 10) == (2, 3, 5)
    assert QuestionSelector.difficulty_mix(70, 10) == (3, 5, 2)
    assert QuestionSelector.difficulty_mix(30, 10) == (5, 4, 1)


def test_adaptive_selection_tops_up_short_buckets():
    pool = [Question(question_text=f"q{i}", question_type="multiple-choice", difficulty="easy", id=str(i))
            for i in range(10)]
    history = {"average_score": 95, "total_attempts": 3, "recent_performance": [95, 95, 95]}
    selected = QuestionSelector.personalize(pool, history, 5, rng=random.Random(7))
    assert len(selected) == 5
    assert len({q.id for q in selected}) == 5


def test_selection_without_history_is_plain_sample():
    pool = [Question(question_text=f"q{i}", question_type="multiple-choice", id=str(i)) for i in range(4)]
    history = QuestionSelector.topic_history([])
    assert len(QuestionSelector.personalize(pool, history, 10)) == 4


def test_resubmitted_answer_counts_once_in_question_analytics(client, auth, make_question, data_manager):
    _, headers = auth
    question = make_question(correct=2)
    _, data = start(client, headers)

    for index in (0, 2):
        resp = client.post("/api/quiz/submit-answer", headers=headers, json={
            "quizAttemptId": data["quiz"]["id"], "questionId": question.id, "selectedIndex": index,
            "timeSpent": 10
        })
        assert resp.status_code == 200

    stored = data_manager.get_question(question.id)
    assert stored.analytics["total_attempts"] == 1
    assert stored.analytics["correct_attempts"] == 0
