import asyncio
from typing import List, Optional

import pytest

from lingodrill.client import PracticeService
from lingodrill.controller import SessionController
from lingodrill.database import init_db
from lingodrill.exceptions import PracticeServiceError
from lingodrill.models import QuestionSet, SessionResult, StreakStatus
from lingodrill.persistence import SessionStore, SQLiteSessionGuard


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakePracticeService(PracticeService):
    """Records every call; failures and slow finalize are switchable."""

    def __init__(self):
        self.question_set: Optional[QuestionSet] = None
        self.answers: List[dict] = []
        self.batches: List[list] = []
        self.finalize_calls: List[tuple] = []
        self.streak_calls = 0
        self.fail_answers = False
        self.fail_finalize = 0
        self.fail_streak = False
        self.finalize_gate: Optional[asyncio.Event] = None
        self.batch_gate: Optional[asyncio.Event] = None

    async def fetch_question_set(self, config):
        if self.question_set is None:
            raise PracticeServiceError("No vocabulary available", status_code=422)
        return self.question_set

    async def submit_answer(
        self, session_id, vocabulary_id, mode, user_answer, correct_answer,
        is_correct, time_spent_ms, hint_count=0,
    ):
        if self.fail_answers:
            raise PracticeServiceError("connection reset")
        self.answers.append(
            {
                "session_id": session_id,
                "vocabulary_id": vocabulary_id,
                "mode": mode,
                "user_answer": user_answer,
                "is_correct": is_correct,
                "hint_count": hint_count,
            }
        )

    async def submit_answer_batch(self, session_id, results):
        if self.batch_gate is not None:
            await self.batch_gate.wait()
        if self.fail_answers:
            raise PracticeServiceError("connection reset")
        self.batches.append(list(results))

    async def finalize_session(self, session_id, duration_seconds):
        self.finalize_calls.append((session_id, duration_seconds))
        if self.finalize_gate is not None:
            await self.finalize_gate.wait()
        if self.fail_finalize:
            self.fail_finalize -= 1
            raise PracticeServiceError("service unavailable", status_code=503)
        correct = sum(1 for a in self.answers if a["is_correct"])
        return SessionResult(
            correct=correct,
            wrong=len(self.answers) - correct,
            skipped=0,
            total=len(self.answers),
            duration_seconds=duration_seconds,
            accuracy=0.0,
        )

    async def fetch_streak_status(self):
        self.streak_calls += 1
        if self.fail_streak:
            raise PracticeServiceError("streak down")
        return StreakStatus(current_streak=3, is_active=True, added_today=True)


async def drain(rounds: int = 10):
    """Let scheduled tasks run to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# --- Question builders ---
def mc_question(i: int, answer: str = "dog", options=("dog", "cat", "tree", "house")):
    return {
        "id": i,
        "vocabulary_id": f"v{i}",
        "prompt": f"word {i}",
        "options": list(options),
        "correct_index": list(options).index(answer),
    }


def typing_question(i: int, answer: str = "apple", **extra):
    return dict(
        {"id": i, "vocabulary_id": f"v{i}", "prompt": f"word {i}", "correct_answer": answer},
        **extra,
    )


def matching_question(qid, pair_ids):
    items = []
    for pid in pair_ids:
        items.append({"id": f"{pid}-s", "pair_id": pid, "side": "source", "text": f"{pid} en"})
        items.append({"id": f"{pid}-t", "pair_id": pid, "side": "target", "text": f"{pid} id"})
    return {"id": qid, "items": items, "pair_count": len(pair_ids)}


def make_payload(questions, mode="multiple_choice", **session_settings):
    return {
        "questions": questions,
        "total": len(questions),
        "mode": mode,
        "settings": session_settings,
    }


# --- Fixtures ---
@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "db" / "test.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return SessionStore(db_path)


@pytest.fixture
def guard(db_path):
    return SQLiteSessionGuard(db_path)


@pytest.fixture
def service():
    return FakePracticeService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_controller(store, guard, service, clock):
    created = []

    def factory(**kwargs):
        options = dict(feedback_seconds=5, tick_seconds=3600, settle_seconds=0, clock=clock)
        options.update(kwargs)
        controller = SessionController(store, guard, service, **options)
        created.append(controller)
        return controller

    yield factory
    for controller in created:
        controller.close()
