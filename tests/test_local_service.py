import random
from datetime import date, timedelta

import pandas as pd
import pytest

from lingodrill.exceptions import PracticeServiceError
from lingodrill.local_service import LocalPracticeService
from lingodrill.models import Direction, MatchOutcome, Mode, SessionConfig, SessionPayload
from lingodrill.vocabulary import VocabularyManager

TODAY = date(2026, 3, 10)


@pytest.fixture
def vocab(tmp_path):
    pd.DataFrame(
        {
            "word": ["rumah", "anjing", "kucing", "pohon", "air"],
            "translation": ["house", "dog", "cat", "tree", "water"],
            "example": ["Rumah itu besar.", "", "", "", ""],
        }
    ).to_csv(tmp_path / "basics.csv", index=False)
    pd.DataFrame({"word": ["x"], "meaning": ["y"]}).to_csv(tmp_path / "broken.csv", index=False)

    manager = VocabularyManager(str(tmp_path))
    manager.load_all()
    return manager


@pytest.fixture
def local(vocab):
    return LocalPracticeService(vocab, rng=random.Random(7), pairs_per_round=2, today=lambda: TODAY)


def test_vocabulary_skips_files_without_required_columns(vocab):
    assert [t["id"] for t in vocab.get_topics()] == ["basics"]
    words = vocab.get_words("basics")
    assert words[0] == {
        "vocabulary_id": "basics-0",
        "word": "rumah",
        "translation": "house",
        "example": "Rumah itu besar.",
        "audio_url": "",
    }


def test_vocabulary_falls_back_to_dummy_data(tmp_path):
    manager = VocabularyManager(str(tmp_path / "empty"))
    manager.load_all()
    assert manager.get_topics()[0]["id"] == "default_dummy"
    assert len(manager.get_words("default_dummy")) == 5


@pytest.mark.anyio
async def test_multiple_choice_set_is_valid_payload(local):
    config = SessionConfig(mode=Mode.MULTIPLE_CHOICE, question_count=3, topic="basics")
    question_set = await local.fetch_question_set(config)

    assert question_set.total == 3
    payload = SessionPayload.model_validate(
        {"questions": question_set.questions, "total": question_set.total, "mode": "multiple_choice"}
    )
    translations = {w["translation"] for w in local.vocab_manager.get_words("basics")}
    for question in payload.questions:
        assert len(question.options) == 4
        assert question.correct_answer in translations


@pytest.mark.anyio
async def test_reverse_direction_asks_for_source_word(local):
    config = SessionConfig(
        mode=Mode.TYPING, direction=Direction.TARGET_TO_SOURCE, question_count=5, topic="basics"
    )
    question_set = await local.fetch_question_set(config)
    pairs = {(q["prompt"], q["correct_answer"]) for q in question_set.questions}
    assert ("dog", "anjing") in pairs


@pytest.mark.anyio
async def test_matching_rounds_are_chunked(local):
    config = SessionConfig(mode=Mode.MATCHING, question_count=5, topic="basics")
    question_set = await local.fetch_question_set(config)
    assert [q["pair_count"] for q in question_set.questions] == [2, 2, 1]
    SessionPayload.model_validate(
        {"questions": question_set.questions, "total": question_set.total, "mode": "matching"}
    )


@pytest.mark.anyio
async def test_unknown_topic_falls_back_to_first(local):
    question_set = await local.fetch_question_set(SessionConfig(question_count=2, topic="missing"))
    assert question_set.total == 2


@pytest.mark.anyio
async def test_finalize_counts_answers_and_marks_activity(local):
    question_set = await local.fetch_question_set(SessionConfig(question_count=3, topic="basics"))
    sid = question_set.session_id
    await local.submit_answer(sid, "basics-0", "typing", "house", "house", True, 900)
    await local.submit_answer(sid, "basics-1", "typing", "skipped", "dog", False, 400)
    await local.submit_answer_batch(sid, [MatchOutcome(pair_id="basics-2", is_correct=True, time_spent_ms=700)])

    result = await local.finalize_session(sid, 60)
    assert (result.correct, result.wrong, result.skipped, result.total) == (2, 1, 1, 3)
    assert result.accuracy == 66.7
    assert await local.finalize_session(sid, 99) == result

    streak = await local.fetch_streak_status()
    assert streak.current_streak == 1
    assert streak.added_today


@pytest.mark.anyio
async def test_unknown_session_rejected(local):
    with pytest.raises(PracticeServiceError) as exc_info:
        await local.finalize_session("nope", 10)
    assert exc_info.value.status_code == 404


@pytest.mark.anyio
async def test_streak_counts_consecutive_days(local):
    local.activity_days = {
        TODAY - timedelta(days=1),
        TODAY - timedelta(days=2),
        TODAY - timedelta(days=5),
        TODAY - timedelta(days=6),
        TODAY - timedelta(days=7),
    }
    streak = await local.fetch_streak_status()
    assert streak.current_streak == 2
    assert streak.longest_streak == 3
    assert not streak.added_today
    assert streak.is_active
    assert streak.total_active_days == 5


@pytest.mark.anyio
async def test_no_activity_means_no_streak(local):
    streak = await local.fetch_streak_status()
    assert streak.current_streak == 0 and not streak.is_active
