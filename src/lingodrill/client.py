"""The remote practice service contract and its HTTP adapter."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .config import settings
from .exceptions import PracticeServiceError
from .models import MatchOutcome, SessionConfig, QuestionSet, SessionResult, StreakStatus

logger = logging.getLogger(__name__)


class PracticeService(ABC):
    """Abstract request surface of the data service the engine talks to."""

    @abstractmethod
    async def fetch_question_set(self, config: SessionConfig) -> QuestionSet:
        pass

    @abstractmethod
    async def submit_answer(
        self,
        session_id: str,
        vocabulary_id: str,
        mode: str,
        user_answer: str,
        correct_answer: str,
        is_correct: bool,
        time_spent_ms: int,
        hint_count: int = 0,
    ) -> None:
        pass

    @abstractmethod
    async def submit_answer_batch(self, session_id: str, results: List[MatchOutcome]) -> None:
        pass

    @abstractmethod
    async def finalize_session(self, session_id: str, duration_seconds: int) -> SessionResult:
        pass

    @abstractmethod
    async def fetch_streak_status(self) -> StreakStatus:
        pass

    async def aclose(self):
        pass


class HttpPracticeService(PracticeService):
    """PracticeService over the JSON API of the remote backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.PRACTICE_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout,
            headers={"Accept": "application/json"},
        )

    async def _request(self, method: str, url: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, url, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PracticeServiceError(
                f"{method} {url} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise PracticeServiceError(f"{method} {url} failed: {e}") from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PracticeServiceError(
                f"{method} {url} returned a non-JSON body", status_code=response.status_code
            ) from e

    async def fetch_question_set(self, config: SessionConfig) -> QuestionSet:
        data = await self._request(
            "POST",
            "/practice/start",
            json={
                "mode": config.mode.value,
                "direction": config.direction.value,
                "question_count": config.question_count,
                "filters": {"topic": config.topic} if config.topic else {},
            },
        )
        if not isinstance(data, dict) or "error" in data:
            message = data.get("error") if isinstance(data, dict) else None
            raise PracticeServiceError(message or "Empty question set")
        try:
            return QuestionSet.model_validate(data)
        except ValueError as e:
            raise PracticeServiceError(f"Malformed question set: {e}") from e

    async def submit_answer(
        self,
        session_id,
        vocabulary_id,
        mode,
        user_answer,
        correct_answer,
        is_correct,
        time_spent_ms,
        hint_count=0,
    ):
        await self._request(
            "POST",
            "/practice/answer",
            json={
                "session_id": session_id,
                "vocabulary_id": vocabulary_id,
                "question_type": mode,
                "user_answer": user_answer,
                "correct_answer": correct_answer,
                "is_correct": is_correct,
                "time_spent_ms": time_spent_ms,
                "hint_count": hint_count,
            },
        )

    async def submit_answer_batch(self, session_id, results):
        await self._request(
            "POST",
            "/practice/answer-batch",
            json={
                "session_id": session_id,
                "results": [
                    {
                        "vocabulary_id": r.pair_id,
                        "is_correct": r.is_correct,
                        "time_spent_ms": r.time_spent_ms,
                    }
                    for r in results
                ],
            },
        )

    async def finalize_session(self, session_id, duration_seconds):
        data = await self._request(
            "POST",
            "/practice/complete",
            json={"session_id": session_id, "duration_seconds": duration_seconds},
        )
        try:
            return parse_session_result(data or {}, duration_seconds)
        except (AttributeError, TypeError, ValueError) as e:
            raise PracticeServiceError(f"Malformed session result: {e}") from e

    async def fetch_streak_status(self):
        try:
            return StreakStatus.model_validate(await self._request("GET", "/streak") or {})
        except ValueError as e:
            raise PracticeServiceError(f"Malformed streak status: {e}") from e

    async def aclose(self):
        await self._client.aclose()


def parse_session_result(data: Dict[str, Any], duration_seconds: int) -> SessionResult:
    """Map the backend's session record onto a SessionResult."""
    session = data.get("session", data)
    correct = int(session.get("correct_answers", session.get("correct", 0)) or 0)
    wrong = int(session.get("wrong_answers", session.get("wrong", 0)) or 0)
    total = int(session.get("total_questions", session.get("total", correct + wrong)) or 0)
    return SessionResult(
        correct=correct,
        wrong=wrong,
        skipped=int(session.get("skipped", 0) or 0),
        total=total,
        duration_seconds=int(session.get("duration_seconds", duration_seconds) or 0),
        accuracy=float(session.get("accuracy", 0) or 0),
    )
