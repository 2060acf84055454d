import logging

import pytest
from pydantic import ValidationError

from lingodrill.database import get_db_connection
from lingodrill.exceptions import SessionNotFound
from lingodrill.log_handler import SQLiteHandler
from lingodrill.models import MultipleChoiceQuestion, SessionPayload, Tolerance, TypingQuestion
from lingodrill.persistence import SessionStore

from .conftest import make_payload, mc_question, typing_question


def test_saved_payload_loads_with_typed_questions(store):
    store.save("s1", make_payload([mc_question(1), mc_question(2)], tolerance="lenient"))

    payload = store.load("s1")
    assert payload.total == 2
    assert all(isinstance(q, MultipleChoiceQuestion) for q in payload.questions)
    assert payload.questions[0].correct_answer == "dog"
    assert payload.settings.tolerance == Tolerance.LENIENT


def test_mixed_payload_uses_explicit_types(store):
    questions = [
        dict(mc_question(1), type="multiple_choice"),
        dict(typing_question(2), type="typing"),
    ]
    store.save("s1", make_payload(questions, mode="mixed"))
    payload = store.load("s1")
    assert isinstance(payload.questions[1], TypingQuestion)


def test_mixed_payload_requires_question_types():
    with pytest.raises(ValidationError):
        SessionPayload.model_validate(make_payload([mc_question(1)], mode="mixed"))


def test_total_must_match_question_count():
    data = make_payload([mc_question(1)])
    data["total"] = 3
    with pytest.raises(ValidationError):
        SessionPayload.model_validate(data)


def test_duplicate_options_rejected():
    with pytest.raises(ValidationError):
        SessionPayload.model_validate(
            make_payload([mc_question(1, options=("dog", "dog", "cat"))])
        )


def test_missing_session_raises(store):
    with pytest.raises(SessionNotFound):
        store.load("nope")
    assert not store.exists("nope")


def test_expired_session_is_dropped(db_path):
    store = SessionStore(db_path, timeout_minutes=0)
    store.save("old", make_payload([mc_question(1)]))
    with pytest.raises(SessionNotFound):
        store.load("old")

    conn = get_db_connection(db_path)
    row = conn.execute("SELECT COUNT(*) AS n FROM practice_sessions").fetchone()
    conn.close()
    assert row["n"] == 0


def test_delete_removes_mirror(store):
    store.save("s1", make_payload([mc_question(1)]))
    assert store.exists("s1")
    store.delete("s1")
    assert not store.exists("s1")


def test_guard_allows_single_holder(guard):
    assert guard.holder() is None
    assert guard.acquire("a")
    assert guard.acquire("a")
    assert not guard.acquire("b")
    assert guard.holder() == "a"
    assert guard.is_held()
    assert guard.is_held("a") and not guard.is_held("b")


def test_guard_release_only_by_holder(guard):
    guard.acquire("a")
    guard.release("b")
    assert guard.holder() == "a"
    guard.release("a")
    assert guard.holder() is None
    assert guard.acquire("b")


def test_sqlite_log_handler_writes_rows(db_path):
    logger = logging.getLogger("lingodrill.test_db_handler")
    handler = SQLiteHandler(db_path)
    logger.addHandler(handler)
    try:
        logger.warning("guard held")
    finally:
        logger.removeHandler(handler)

    conn = get_db_connection(db_path)
    row = conn.execute("SELECT level, logger, message FROM logs").fetchone()
    conn.close()
    assert row["level"] == "WARNING"
    assert row["logger"] == "lingodrill.test_db_handler"
    assert row["message"] == "guard held"
