import pytest

from lingodrill.exceptions import ActiveSessionConflict, InvalidQuestion, SessionNotFound
from lingodrill.globals import SessionRegistry
from lingodrill.models import Mode, QuestionSet, SessionConfig, Status
from lingodrill.session_setup import prepare_session

from .conftest import drain, matching_question, mc_question


def lopsided_pair():
    question = matching_question(1, ["a", "b"])
    # Both items of pair "b" claim the source side.
    question["items"][3]["side"] = "source"
    return question


@pytest.mark.anyio
async def test_prepare_session_stores_mirror(service, store, guard):
    service.question_set = QuestionSet(
        session_id="s1", questions=[mc_question(1), mc_question(2, "cat")], total=2
    )
    session_id = await prepare_session(SessionConfig(question_count=2), service, store, guard)

    assert session_id == "s1"
    payload = store.load("s1")
    assert payload.total == 2
    assert payload.questions[1].correct_answer == "cat"


@pytest.mark.anyio
async def test_prepare_session_refuses_while_another_is_active(service, store, guard):
    guard.acquire("running")
    service.question_set = QuestionSet(session_id="s1", questions=[mc_question(1)], total=1)

    with pytest.raises(ActiveSessionConflict) as exc_info:
        await prepare_session(SessionConfig(), service, store, guard)
    assert exc_info.value.active_session_id == "running"
    assert not store.exists("s1")


@pytest.mark.anyio
async def test_malformed_question_set_is_rejected_before_storing(service, store, guard):
    service.question_set = QuestionSet(session_id="s1", questions=[lopsided_pair()], total=1)

    with pytest.raises(InvalidQuestion, match="Malformed question set"):
        await prepare_session(SessionConfig(mode=Mode.MATCHING), service, store, guard)
    with pytest.raises(SessionNotFound):
        store.load("s1")
    assert guard.holder() is None


@pytest.mark.anyio
async def test_registry_drops_finished_sessions(service, store, guard):
    registry = SessionRegistry(store, guard, service)
    service.question_set = QuestionSet(session_id="s1", questions=[mc_question(1)], total=1)
    await prepare_session(SessionConfig(), service, store, guard)

    first = registry.open("s1")
    await first.submit_answer(0)
    await drain()
    await first.next()
    assert first.status == Status.COMPLETED
    # The result stays readable until another session opens.
    assert registry.get("s1") is first

    service.question_set = QuestionSet(session_id="s2", questions=[mc_question(1)], total=1)
    await prepare_session(SessionConfig(), service, store, guard)
    second = registry.open("s2")

    assert registry.get("s1") is None
    assert registry.get("s2") is second
    assert list(registry.controllers) == ["s2"]
    registry.close_all()
