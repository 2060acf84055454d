import asyncio

import pytest

from lingodrill.completion import CompletionOptimizer
from lingodrill.exceptions import SessionFinalizeError

from .conftest import FakePracticeService, drain


@pytest.mark.anyio
async def test_eager_completion_is_reused(service):
    optimizer = CompletionOptimizer(service, "s1")
    optimizer.begin_eager_completion(12)
    optimizer.begin_eager_completion(12)

    result = await optimizer.resolve(30)
    assert service.finalize_calls == [("s1", 12)]
    assert result.duration_seconds == 12
    assert optimizer.streak_status.current_streak == 3


@pytest.mark.anyio
async def test_resolve_without_eager_start(service):
    optimizer = CompletionOptimizer(service, "s1")
    assert not optimizer.started
    await optimizer.resolve(7)
    assert service.finalize_calls == [("s1", 7)]


@pytest.mark.anyio
async def test_concurrent_resolves_share_one_call(service):
    service.finalize_gate = asyncio.Event()
    optimizer = CompletionOptimizer(service, "s1")

    first = asyncio.ensure_future(optimizer.resolve(5))
    second = asyncio.ensure_future(optimizer.resolve(5))
    await drain()
    service.finalize_gate.set()
    results = await asyncio.gather(first, second)

    assert len(service.finalize_calls) == 1
    assert results[0] == results[1]


@pytest.mark.anyio
async def test_failed_finalize_can_be_retried(service):
    service.fail_finalize = 1
    optimizer = CompletionOptimizer(service, "s1")
    optimizer.begin_eager_completion(5)

    with pytest.raises(SessionFinalizeError) as exc_info:
        await optimizer.resolve(5)
    assert exc_info.value.retryable
    assert not optimizer.started

    result = await optimizer.resolve(6)
    assert result.duration_seconds == 6
    assert len(service.finalize_calls) == 2


@pytest.mark.anyio
async def test_eager_completion_waits_for_prior_work(service):
    released = asyncio.Event()
    optimizer = CompletionOptimizer(service, "s1")
    optimizer.begin_eager_completion(5, after=released.wait())

    await drain()
    assert service.finalize_calls == []
    released.set()
    await optimizer.resolve(5)
    assert len(service.finalize_calls) == 1


@pytest.mark.anyio
async def test_streak_refresh_failure_does_not_fail_completion(service):
    service.fail_streak = True
    optimizer = CompletionOptimizer(service, "s1")
    result = await optimizer.resolve(5)
    assert result is not None
    assert optimizer.streak_status is None


@pytest.mark.anyio
async def test_unawaited_eager_failure_is_logged(service, caplog):
    service.fail_finalize = 1
    optimizer = CompletionOptimizer(service, "s1")
    task = optimizer.begin_eager_completion(5)
    await drain()

    assert task.done()
    assert "Finalize failed for session s1" in caplog.text
    optimizer.cancel()
    assert not optimizer.started


@pytest.mark.anyio
async def test_unexpected_failure_also_allows_retry(service):
    calls = []

    async def broken_then_ok(session_id, duration_seconds):
        calls.append(session_id)
        if len(calls) == 1:
            raise KeyError("correct_answers")
        return await FakePracticeService.finalize_session(service, session_id, duration_seconds)

    service.finalize_session = broken_then_ok
    optimizer = CompletionOptimizer(service, "s1")

    with pytest.raises(KeyError):
        await optimizer.resolve(5)
    assert not optimizer.started
    assert (await optimizer.resolve(5)).duration_seconds == 5
    assert len(calls) == 2
