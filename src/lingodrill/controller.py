"""
Session lifecycle for one practice run.

The controller owns the session state machine::

    loading -> question -> feedback -> question ... -> completed

Matching rounds skip ``feedback``: a finished round advances straight to the
next question (or completes the session). Network writes never block the
learner; only finalizing the session can fail visibly.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from . import validator
from .client import PracticeService
from .completion import CompletionOptimizer
from .config import settings
from .exceptions import (
    ActiveSessionConflict,
    InvalidQuestion,
    InvalidTransition,
    PracticeServiceError,
    SessionFinalizeError,
)
from .matching import MatchingEngine
from .models import (
    AnswerRecord,
    Feedback,
    ListeningQuestion,
    MatchingQuestion,
    MatchOutcome,
    Mode,
    MultipleChoiceQuestion,
    Session,
    SessionPayload,
    SessionResult,
    Status,
    Tolerance,
    TypingQuestion,
)
from .persistence import SessionGuard, SessionStore
from .timer import AutoAdvanceTimer

logger = logging.getLogger(__name__)

SKIPPED_ANSWER = "skipped"

TRANSITIONS: Dict[Status, Set[Status]] = {
    Status.LOADING: {Status.QUESTION},
    Status.QUESTION: {Status.FEEDBACK, Status.QUESTION, Status.COMPLETED},
    Status.FEEDBACK: {Status.QUESTION, Status.COMPLETED},
    Status.COMPLETED: set(),
}


# --- Graders: one per answerable question variant ---
def _choice_index(question: MultipleChoiceQuestion, raw_input: Union[str, int]) -> Optional[int]:
    """Option picked by index, by exact text, or by text unique after normalization."""
    if isinstance(raw_input, int):
        if not 0 <= raw_input < len(question.options):
            raise InvalidQuestion(f"Option {raw_input} out of range")
        return raw_input
    if raw_input in question.options:
        return question.options.index(raw_input)
    key = validator.normalize(raw_input)
    matches = [i for i, option in enumerate(question.options) if validator.normalize(option) == key]
    return matches[0] if len(matches) == 1 else None


def _grade_choice(question: MultipleChoiceQuestion, index: Optional[int], tolerance: Tolerance):
    return index == question.correct_index, question.correct_answer, []


def _grade_typing(question: TypingQuestion, answer: str, tolerance: Tolerance):
    result = validator.validate(
        answer, question.correct_answer, question.acceptable_answers, tolerance
    )
    return result.is_correct, result.matched_answer, validator.diff(answer, result.matched_answer)


def _grade_listening(question: ListeningQuestion, answer: str, tolerance: Tolerance):
    result = validator.validate(answer, question.correct_answer, [], tolerance)
    return result.is_correct, result.matched_answer, validator.diff(answer, result.matched_answer)


GRADERS: Dict[type, Callable] = {
    MultipleChoiceQuestion: _grade_choice,
    TypingQuestion: _grade_typing,
    ListeningQuestion: _grade_listening,
}


def _primary_answer(question) -> str:
    if isinstance(question, MultipleChoiceQuestion):
        return question.correct_answer
    return validator.candidate_answers(question.correct_answer)[0]


class SessionController:
    def __init__(
        self,
        store: SessionStore,
        guard: SessionGuard,
        service: PracticeService,
        feedback_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        settle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.guard = guard
        self.service = service
        self.clock = clock
        self.settle_seconds = settle_seconds

        self.session: Optional[Session] = None
        self.payload: Optional[SessionPayload] = None
        self.records: List[AnswerRecord] = []
        self.match_outcomes: List[MatchOutcome] = []
        self.skipped = 0
        self.feedback: Optional[Feedback] = None
        self.result: Optional[SessionResult] = None
        self.remote_result: Optional[SessionResult] = None
        self.error: Optional[str] = None
        self.round_progress = 0

        self.timer = AutoAdvanceTimer(self._on_countdown_expired, feedback_seconds, tick_seconds)
        self.matching: Optional[MatchingEngine] = None
        self.completion: Optional[CompletionOptimizer] = None

        self._pending: Set[asyncio.Task] = set()
        self._finishing = False
        self._round_completing = False
        self._hint_count = 0
        self._session_started = 0.0
        self._question_started = 0.0

    # --- State ---
    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session else None

    @property
    def status(self) -> Status:
        """Visible status; an out-of-range index reads as not ready."""
        if self.session is None:
            return Status.LOADING
        if self.session.status != Status.COMPLETED and self.current_question is None:
            return Status.LOADING
        return self.session.status

    @property
    def current_question(self):
        if self.session is None or self.payload is None:
            return None
        index = self.session.current_index
        if not 0 <= index < len(self.payload.questions):
            return None
        return self.payload.questions[index]

    @property
    def is_last_question(self) -> bool:
        return self.session is not None and (
            self.session.current_index == self.session.total_questions - 1
        )

    @property
    def duration_seconds(self) -> int:
        return int(self.clock() - self._session_started)

    @property
    def tolerance(self) -> Tolerance:
        return self.payload.settings.tolerance if self.payload else Tolerance(settings.DEFAULT_TOLERANCE)

    def _transition(self, status: Status):
        current = self.session.status
        if status not in TRANSITIONS[current]:
            raise InvalidTransition(f"move to {status.value}", current.value)
        self.session.status = status

    def _require(self, status: Status, action: str):
        if self.status != status:
            raise InvalidTransition(action, self.status.value)

    # --- Lifecycle ---
    def start(self, session_id: str) -> Session:
        holder = self.guard.holder()
        if holder is not None and holder != session_id:
            raise ActiveSessionConflict(holder)

        payload = self.store.load(session_id)
        if not payload.questions:
            raise InvalidQuestion(f"Session {session_id} has no questions")
        if not self.guard.acquire(session_id):
            raise ActiveSessionConflict(self.guard.holder())

        self.payload = payload
        self.session = Session(
            id=session_id,
            mode=payload.mode,
            direction=payload.direction,
            total_questions=payload.total,
            started_at=datetime.now(),
        )
        self.completion = CompletionOptimizer(self.service, session_id)
        self._session_started = self.clock()
        self._enter_question(0)
        logger.info(f"Started session {session_id} [{payload.mode.value}, {payload.total} questions]")
        return self.session

    def _enter_question(self, index: int):
        if self.matching is not None:
            self.matching.cancel()
            self.matching = None
        self.session.current_index = index
        self.feedback = None
        self.round_progress = 0
        self._hint_count = 0
        self._question_started = self.clock()

        question = self.current_question
        if isinstance(question, MatchingQuestion):
            self.matching = MatchingEngine(
                question,
                on_complete=self.complete_round,
                on_progress=self._on_round_progress,
                settle_seconds=self.settle_seconds,
                clock=self.clock,
            )
        self._transition(Status.QUESTION)

    async def submit_answer(self, raw_input: Union[str, int], hint_count: Optional[int] = None) -> Feedback:
        self._require(Status.QUESTION, "submit an answer")
        question = self.current_question
        grader = GRADERS.get(type(question))
        if grader is None:
            raise InvalidTransition("submit an answer", "matching")

        answer = str(raw_input)
        graded: Any = answer
        if isinstance(question, MultipleChoiceQuestion):
            # Options may differ only by case, so choices are graded by index.
            graded = _choice_index(question, raw_input)
            if graded is not None:
                answer = question.options[graded]
        if hint_count is not None:
            self._hint_count = max(self._hint_count, hint_count)

        is_correct, correct_answer, tokens = grader(question, graded, self.tolerance)
        return self._record(question, answer, correct_answer, is_correct, diff=tokens)

    async def skip(self) -> Feedback:
        self._require(Status.QUESTION, "skip")
        question = self.current_question
        if isinstance(question, MatchingQuestion):
            raise InvalidTransition("skip", "matching")
        return self._record(question, SKIPPED_ANSWER, _primary_answer(question), False, skipped=True)

    def _record(self, question, user_answer, correct_answer, is_correct, skipped=False, diff=None) -> Feedback:
        record = AnswerRecord(
            vocabulary_id=question.vocabulary_id,
            mode=Mode(question.type),
            user_answer=user_answer,
            correct_answer=correct_answer,
            is_correct=is_correct,
            time_spent_ms=int((self.clock() - self._question_started) * 1000),
            hint_count=self._hint_count,
            skipped=skipped,
        )
        self.records.append(record)
        if skipped:
            self.skipped += 1

        self.feedback = Feedback(
            is_correct=is_correct,
            user_answer="" if skipped else user_answer,
            correct_answer=correct_answer,
            skipped=skipped,
            diff=diff or [],
        )
        # Full countdown must be in place before feedback becomes visible.
        self.timer.reset()
        self._transition(Status.FEEDBACK)
        self.timer.start()

        self._spawn(self._submit_record(record))
        if self.is_last_question:
            pending = asyncio.gather(*self._pending, return_exceptions=True)
            self.completion.begin_eager_completion(self.duration_seconds, after=pending)
        return self.feedback

    async def next(self):
        """Leave feedback: advance to the next question or finish the session."""
        self._require(Status.FEEDBACK, "advance")
        if self._finishing:
            return None
        self.timer.reset()
        if self.session.current_index + 1 < self.session.total_questions:
            self._enter_question(self.session.current_index + 1)
            return self.current_question
        return await self.finish()

    async def finish(self) -> Optional[SessionResult]:
        """
        Finalize the session once.

        Re-entrant calls while a finish is in flight return None; a completed
        session returns its result. On failure the session stays where it was
        and SessionFinalizeError is raised so the caller can offer a retry.
        """
        if self.session is None:
            raise InvalidTransition("finish", Status.LOADING.value)
        if self.session.status == Status.COMPLETED:
            return self.result
        if self._finishing:
            return None

        self._finishing = True
        self.timer.reset()
        session_id = self.session.id
        try:
            await self._drain_pending()
            self.remote_result = await self.completion.resolve(self.duration_seconds)
        except SessionFinalizeError as e:
            self.error = "Failed to save session results. Please try again."
            logger.error(f"Finalize failed for {session_id}: {e.__cause__ or e}")
            raise
        finally:
            self._finishing = False

        self.result = self.summarize()
        self.error = None
        self.guard.release(session_id)
        self.store.delete(session_id)
        self._transition(Status.COMPLETED)
        self.close()
        logger.info(
            f"Session {session_id} completed: {self.result.correct}/{self.result.total} "
            f"in {self.result.duration_seconds}s"
        )
        return self.result

    def quit(self):
        """Abandon the session and give up the guard."""
        self.close()
        if self.completion is not None:
            self.completion.cancel()
        if self.session is not None:
            self.guard.release(self.session.id)
            logger.info(f"Session {self.session.id} abandoned at question {self.session.current_index + 1}")

    def close(self):
        """Stop every timer owned by the controller."""
        self.timer.reset()
        if self.matching is not None:
            self.matching.cancel()

    # --- Typing helpers ---
    def request_hint(self) -> str:
        """Reveal the next characters of the answer for typing/listening questions."""
        self._require(Status.QUESTION, "ask for a hint")
        question = self.current_question
        if not isinstance(question, (TypingQuestion, ListeningQuestion)):
            raise InvalidTransition("ask for a hint", question.type)
        self._hint_count += 1
        answer = _primary_answer(question)
        return answer[: min(len(answer), self._hint_count * settings.HINT_CHARS_PER_STEP)]

    def cloze_prompt(self) -> Optional[str]:
        question = self.current_question
        if not (
            isinstance(question, TypingQuestion)
            and self.payload.settings.cloze_enabled
            and question.example_sentence
        ):
            return None
        return validator.mask_cloze(
            question.example_sentence,
            validator.candidate_answers(question.correct_answer, question.acceptable_answers),
            settings.CLOZE_THRESHOLD,
            prompt=question.prompt,
        )

    # --- Matching ---
    def select_item(self, item_id: str) -> Optional[MatchOutcome]:
        self._require(Status.QUESTION, "select a card")
        if self.matching is None:
            raise InvalidTransition("select a card", self.current_question.type)
        return self.matching.select(item_id)

    async def complete_round(self, results: List[MatchOutcome], total_time_ms: int):
        """Batch-submit a finished matching round, then advance or finish."""
        if self._round_completing or self.status != Status.QUESTION:
            return
        if not isinstance(self.current_question, MatchingQuestion):
            return
        self._round_completing = True
        try:
            self.match_outcomes.extend(results)
            logger.info(
                f"Session {self.session.id} round {self.session.current_index + 1}: "
                f"{sum(r.is_correct for r in results)}/{len(results)} in {total_time_ms}ms"
            )
            try:
                await self.service.submit_answer_batch(self.session.id, results)
            except PracticeServiceError as e:
                logger.warning(f"Batch submit failed for {self.session.id}: {e}")

            if self.session.current_index + 1 < self.session.total_questions:
                self._enter_question(self.session.current_index + 1)
                return
            self.completion.begin_eager_completion(self.duration_seconds)
            try:
                await self.finish()
            except SessionFinalizeError:
                pass  # error is on self.error; the user retries finish()
        finally:
            self._round_completing = False

    def _on_round_progress(self, resolved: int):
        self.round_progress = resolved

    # --- Results ---
    def summarize(self) -> SessionResult:
        correct = sum(r.is_correct for r in self.records) + sum(
            o.is_correct for o in self.match_outcomes
        )
        total = len(self.records) + len(self.match_outcomes)
        return SessionResult(
            correct=correct,
            wrong=total - correct,
            skipped=self.skipped,
            total=total,
            duration_seconds=self.duration_seconds,
            accuracy=round(correct / total * 100, 1) if total else 0.0,
        )

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of the session for the presentation layer."""
        status = self.status
        question = self.current_question if status != Status.COMPLETED else None
        view: Dict[str, Any] = {
            "session_id": self.session_id,
            "status": status.value,
            "mode": self.session.mode.value if self.session else None,
            "current_index": self.session.current_index if self.session else 0,
            "total_questions": self.session.total_questions if self.session else 0,
            "question": question.model_dump(mode="json") if question is not None else None,
            "cloze_prompt": self.cloze_prompt() if question is not None else None,
            "feedback": self.feedback.model_dump(mode="json") if self.feedback else None,
            "countdown": self.timer.remaining if status == Status.FEEDBACK else None,
            "skipped": self.skipped,
            "result": self.result.model_dump() if self.result else None,
            "error": self.error,
        }
        if self.matching is not None and status == Status.QUESTION:
            state = self.matching.state
            view["matching"] = {
                "selected": state.selected.id if state.selected else None,
                "matched_pairs": sorted(state.matched_pairs),
                "wrong_items": sorted(state.wrong_items),
                "resolved_pairs": self.matching.resolved_pairs,
            }
        return view

    # --- Background work ---
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _drain_pending(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _submit_record(self, record: AnswerRecord):
        try:
            await self.service.submit_answer(
                self.session.id,
                record.vocabulary_id,
                record.mode.value,
                record.user_answer,
                record.correct_answer,
                record.is_correct,
                record.time_spent_ms,
                record.hint_count,
            )
        except PracticeServiceError as e:
            logger.warning(f"Answer submit failed for {record.vocabulary_id}: {e}")

    async def _on_countdown_expired(self):
        if self.status != Status.FEEDBACK:
            return
        try:
            await self.next()
        except SessionFinalizeError:
            pass  # error is on self.error; the user retries finish()
