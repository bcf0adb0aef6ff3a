# tests/analytics_test.py
# Pure checks of the analytics helpers, without HTTP.

from datetime import datetime, timedelta

from app import ProgressAnalytics, QuizAttempt, AITutor, round_half_up

NOW = datetime(2024, 5, 15, 12, 0, 0)


def attempt(score, days_ago=0, topic="mathematics", time_spent=120):
    return QuizAttempt(user_id="u1", topic_id=topic, score=score, time_spent=time_spent,
                       completed_at=NOW - timedelta(days=days_ago), status="completed")


def test_round_half_up_matches_math_round():
    assert round_half_up(2.5) == 3
    assert round_half_up(66.666) == 67
    assert round_half_up(-2.5) == -2
    assert round_half_up(14.2857, 1) == 14.3


def test_streak_needs_a_quiz_today():
    assert ProgressAnalytics.learning_streak([attempt(50, 1), attempt(60, 2)], NOW) == 0
    assert ProgressAnalytics.learning_streak([attempt(50, 0), attempt(60, 1), attempt(70, 3)], NOW) == 2
    # Several quizzes on one day count once
    assert ProgressAnalytics.learning_streak([attempt(50, 0), attempt(60, 0)], NOW) == 1


def test_longest_streak():
    attempts = [attempt(50, d) for d in (9, 8, 7, 6, 3, 2, 0)]
    assert ProgressAnalytics.longest_streak(attempts) == 4
    assert ProgressAnalytics.longest_streak([]) == 0


def test_score_trend():
    assert ProgressAnalytics.score_trend([70]) == "stable"
    assert ProgressAnalytics.score_trend([50, 70]) == "improving"
    assert ProgressAnalytics.score_trend([90, 90, 60, 60, 60]) == "declining"
    assert ProgressAnalytics.score_trend([70, 72, 71, 69]) == "stable"


def test_consistency_and_distribution():
    assert ProgressAnalytics.consistency_score([80, 80, 80]) == 100
    assert ProgressAnalytics.consistency_score([0, 100]) == 50
    assert ProgressAnalytics.score_distribution([0, 25, 26, 75, 76, 100]) == {
        "0-25": 2, "26-50": 1, "51-75": 1, "76-100": 2
    }


def test_regression_slope():
    assert ProgressAnalytics.regression_slope([50, 60, 70]) == 10
    assert ProgressAnalytics.regression_slope([80]) == 0


def test_milestones_use_completion_time_of_nth_quiz():
    attempts = [attempt(70, 30 - i) for i in range(12)]
    milestones = ProgressAnalytics.milestones({"total_quizzes_taken": 12}, attempts)
    assert milestones[0]["achieved"] is True
    assert milestones[0]["achievedAt"] == attempts[9].completed_at
    assert milestones[1] == {
        "type": "quizzes",
        "title": "25 Quizzes Goal",
        "achieved": False,
        "progress": 48,
        "description": "Complete 13 more quizzes to unlock this milestone",
    }
    assert len(milestones) == 2


def test_mastery_levels():
    levels = [ProgressAnalytics.mastery_level(s) for s in (95, 80, 65, 45, 10)]
    assert levels == ["expert", "advanced", "intermediate", "beginner", "novice"]


def test_weekly_data_buckets_end_today():
    weeks = ProgressAnalytics.weekly_data([attempt(80, 0), attempt(60, 6), attempt(40, 7), attempt(90, 40)], NOW)
    assert [w["quizzes"] for w in weeks] == [0, 0, 1, 2]
    assert weeks[-1]["averageScore"] == 70
    assert weeks[-1]["week"] == "2024-05-09"


def test_learning_style():
    assert AITutor.infer_learning_style([]) == "balanced"
    assert AITutor.infer_learning_style([attempt(50, time_spent=400)]) == "reflective"
    assert AITutor.infer_learning_style([attempt(50, time_spent=100)]) == "quick"
    assert AITutor.infer_learning_style([attempt(50, time_spent=200)]) == "balanced"


def test_completion_and_accuracy():
    quiz = QuizAttempt(user_id="u1", topic_id="science", questions=["a", "b", "c"])
    assert quiz.completion_percentage == 0
    assert quiz.calculate_accuracy() == 0
    quiz.record_answer({"question_id": "a", "selected_index": 0, "is_correct": True, "time_spent": 5})
    quiz.record_answer({"question_id": "b", "selected_index": 1, "is_correct": False, "time_spent": 5})
    assert quiz.completion_percentage == 67
    assert quiz.calculate_accuracy() == 50
