"""
Offline stand-in for the remote practice backend.

Question sets are generated from the CSV vocabulary sets; answers, sessions and
activity days live in memory. It implements the same ``PracticeService``
contract as the HTTP adapter, so the engine cannot tell them apart.
"""

import logging
import random
import uuid
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Set

from .client import PracticeService
from .config import settings
from .exceptions import PracticeServiceError
from .models import Direction, Mode, QuestionSet, SessionConfig, SessionResult, StreakStatus
from .vocabulary import VocabularyManager

logger = logging.getLogger(__name__)

Word = Dict[str, str]


def _sides(word: Word, direction: Direction):
    """(prompt, answer) for a word in the requested direction."""
    if direction == Direction.TARGET_TO_SOURCE:
        return word["translation"], word["word"]
    return word["word"], word["translation"]


# --- Strategy Pattern: Question Generators ---
class QuestionGenerator(ABC):
    """Abstract Base Class for the per-mode question builders."""

    def __init__(self, rng: random.Random):
        self.rng = rng

    @abstractmethod
    def generate(self, words: List[Word], pool: List[Word], direction: Direction) -> List[Dict[str, Any]]:
        pass

    def _generate_options(self, correct: str, pool: List[Word], direction: Direction) -> List[str]:
        """Helper to generate random distractors."""
        answers = {_sides(w, direction)[1] for w in pool}
        answers.discard(correct)

        num_options = 3
        if len(answers) < num_options:
            incorrect = sorted(answers)
            while len(incorrect) < num_options:
                incorrect.append(f"Option {len(incorrect) + 1}")
        else:
            incorrect = self.rng.sample(sorted(answers), num_options)

        options = [correct] + incorrect
        self.rng.shuffle(options)
        return options


class MultipleChoiceGenerator(QuestionGenerator):
    def generate(self, words, pool, direction):
        questions = []
        for i, word in enumerate(words):
            prompt, answer = _sides(word, direction)
            options = self._generate_options(answer, pool, direction)
            questions.append(
                {
                    "type": Mode.MULTIPLE_CHOICE.value,
                    "id": i + 1,
                    "vocabulary_id": word["vocabulary_id"],
                    "prompt": prompt,
                    "options": options,
                    "correct_index": options.index(answer),
                }
            )
        return questions


class TypingGenerator(QuestionGenerator):
    def generate(self, words, pool, direction):
        questions = []
        for i, word in enumerate(words):
            prompt, answer = _sides(word, direction)
            questions.append(
                {
                    "type": Mode.TYPING.value,
                    "id": i + 1,
                    "vocabulary_id": word["vocabulary_id"],
                    "prompt": prompt,
                    "correct_answer": answer,
                    "example_sentence": word.get("example") or None,
                }
            )
        return questions


class ListeningGenerator(QuestionGenerator):
    """Dictation: the learner hears the word and types it."""

    def generate(self, words, pool, direction):
        return [
            {
                "type": Mode.LISTENING.value,
                "id": i + 1,
                "vocabulary_id": word["vocabulary_id"],
                "audio_url": word.get("audio_url") or None,
                "correct_answer": word["word"],
                "translation": word["translation"],
            }
            for i, word in enumerate(words)
        ]


class MatchingGenerator(QuestionGenerator):
    def __init__(self, rng: random.Random, pairs_per_round: int):
        super().__init__(rng)
        self.pairs_per_round = max(1, pairs_per_round)

    def generate(self, words, pool, direction):
        rounds = []
        for start in range(0, len(words), self.pairs_per_round):
            chunk = words[start:start + self.pairs_per_round]
            items = []
            for word in chunk:
                source, target = _sides(word, direction)
                vid = word["vocabulary_id"]
                items.append({"id": f"{vid}-s", "pair_id": vid, "side": "source", "text": source})
                items.append({"id": f"{vid}-t", "pair_id": vid, "side": "target", "text": target})
            self.rng.shuffle(items)
            rounds.append(
                {
                    "type": Mode.MATCHING.value,
                    "id": str(uuid.uuid4()),
                    "items": items,
                    "pair_count": len(chunk),
                }
            )
        return rounds


class MixedGenerator(QuestionGenerator):
    """One of multiple choice, typing or listening per word."""

    def generate(self, words, pool, direction):
        builders = [
            MultipleChoiceGenerator(self.rng),
            TypingGenerator(self.rng),
            ListeningGenerator(self.rng),
        ]
        questions = []
        for i, word in enumerate(words):
            question = self.rng.choice(builders).generate([word], pool, direction)[0]
            question["id"] = i + 1
            questions.append(question)
        return questions


class GeneratorFactory:
    """Factory to select the appropriate generator."""

    @staticmethod
    def create(mode: Mode, rng: random.Random, pairs_per_round: Optional[int] = None) -> QuestionGenerator:
        if mode == Mode.TYPING:
            return TypingGenerator(rng)
        if mode == Mode.LISTENING:
            return ListeningGenerator(rng)
        if mode == Mode.MATCHING:
            return MatchingGenerator(rng, pairs_per_round or settings.MATCH_PAIRS_PER_ROUND)
        if mode == Mode.MIXED:
            return MixedGenerator(rng)
        return MultipleChoiceGenerator(rng)


# --- Service ---
class LocalPracticeService(PracticeService):
    def __init__(
        self,
        vocab_manager: VocabularyManager,
        rng: Optional[random.Random] = None,
        pairs_per_round: Optional[int] = None,
        today=date.today,
    ):
        self.vocab_manager = vocab_manager
        self.rng = rng or random.Random()
        self.pairs_per_round = pairs_per_round
        self.today = today
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.activity_days: Set[date] = set()

    def _get_session(self, session_id: str) -> Dict[str, Any]:
        session = self.sessions.get(session_id)
        if session is None:
            raise PracticeServiceError(f"Unknown session {session_id}", status_code=404)
        return session

    async def fetch_question_set(self, config: SessionConfig) -> QuestionSet:
        topic = config.topic
        if not topic or not self.vocab_manager.get_words(topic):
            # Fallback to first available
            topics = self.vocab_manager.get_topics()
            topic = topics[0]["id"] if topics else None
        pool = self.vocab_manager.get_words(topic) if topic else []
        if not pool:
            raise PracticeServiceError("No vocabulary available for the selected filters", status_code=422)

        words = self.rng.sample(pool, min(config.question_count, len(pool)))
        generator = GeneratorFactory.create(config.mode, self.rng, self.pairs_per_round)
        questions = generator.generate(words, pool, config.direction)

        session_id = str(uuid.uuid4())
        self.sessions[session_id] = {
            "topic": topic,
            "mode": config.mode.value,
            "total": len(questions),
            "answers": [],
            "status": "in_progress",
            "result": None,
        }
        logger.info(f"New session: {session_id} [Topic: {topic}, Mode: {config.mode.value}]")
        return QuestionSet(session_id=session_id, questions=questions, total=len(questions))

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
        self._get_session(session_id)["answers"].append(
            {
                "vocabulary_id": vocabulary_id,
                "question_type": mode,
                "user_answer": user_answer,
                "correct_answer": correct_answer,
                "is_correct": is_correct,
                "time_spent_ms": time_spent_ms,
                "hint_count": hint_count,
            }
        )

    async def submit_answer_batch(self, session_id, results):
        answers = self._get_session(session_id)["answers"]
        for r in results:
            answers.append(
                {
                    "vocabulary_id": r.pair_id,
                    "question_type": Mode.MATCHING.value,
                    "is_correct": r.is_correct,
                    "time_spent_ms": r.time_spent_ms,
                }
            )

    async def finalize_session(self, session_id, duration_seconds):
        session = self._get_session(session_id)
        if session["result"] is not None:
            return session["result"]

        answers = session["answers"]
        correct = sum(1 for a in answers if a["is_correct"])
        wrong = len(answers) - correct
        result = SessionResult(
            correct=correct,
            wrong=wrong,
            skipped=sum(1 for a in answers if a.get("user_answer") == "skipped"),
            total=len(answers),
            duration_seconds=duration_seconds,
            accuracy=round(correct / len(answers) * 100, 1) if answers else 0.0,
        )
        session["status"] = "completed"
        session["result"] = result
        self.activity_days.add(self.today())
        return result

    async def fetch_streak_status(self) -> StreakStatus:
        today = self.today()
        days = sorted(self.activity_days)
        if not days:
            return StreakStatus()

        longest = run = 1
        for prev, cur in zip(days, days[1:]):
            run = run + 1 if cur - prev == timedelta(days=1) else 1
            longest = max(longest, run)

        current = 0
        cursor = today if today in self.activity_days else today - timedelta(days=1)
        while cursor in self.activity_days:
            current += 1
            cursor -= timedelta(days=1)

        return StreakStatus(
            current_streak=current,
            longest_streak=longest,
            added_today=today in self.activity_days,
            is_active=current > 0,
            last_activity_date=days[-1],
            total_active_days=len(days),
        )
