from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .exceptions import InvalidQuestion


# --- Enums ---
class Mode(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TYPING = "typing"
    LISTENING = "listening"
    MATCHING = "matching"
    MIXED = "mixed"


class Direction(str, Enum):
    SOURCE_TO_TARGET = "source_to_target"
    TARGET_TO_SOURCE = "target_to_source"


class Tolerance(str, Enum):
    STRICT = "strict"
    NORMAL = "normal"
    LENIENT = "lenient"


class Status(str, Enum):
    LOADING = "loading"
    QUESTION = "question"
    FEEDBACK = "feedback"
    COMPLETED = "completed"


class Side(str, Enum):
    SOURCE = "source"
    TARGET = "target"


# --- Questions ---
class MultipleChoiceQuestion(BaseModel):
    type: Literal["multiple_choice"] = "multiple_choice"
    id: Union[int, str]
    vocabulary_id: str
    prompt: str
    options: List[str]
    correct_index: int

    @model_validator(mode="after")
    def _check_options(self):
        if len(set(self.options)) != len(self.options):
            raise InvalidQuestion(f"Question {self.id}: options must be unique")
        if not 0 <= self.correct_index < len(self.options):
            raise InvalidQuestion(f"Question {self.id}: correct_index out of range")
        return self

    @property
    def correct_answer(self) -> str:
        return self.options[self.correct_index]


class TypingQuestion(BaseModel):
    type: Literal["typing"] = "typing"
    id: Union[int, str]
    vocabulary_id: str
    prompt: str
    correct_answer: str
    acceptable_answers: List[str] = []
    example_sentence: Optional[str] = None


class ListeningQuestion(BaseModel):
    type: Literal["listening"] = "listening"
    id: Union[int, str]
    vocabulary_id: str
    audio_url: Optional[str] = None
    correct_answer: str
    translation: str = ""


class MatchItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    pair_id: str
    side: Side
    text: str


class MatchingQuestion(BaseModel):
    type: Literal["matching"] = "matching"
    id: Union[int, str]
    items: List[MatchItem]
    pair_count: int

    @model_validator(mode="after")
    def _check_pairs(self):
        sides: Dict[str, List[Side]] = {}
        for item in self.items:
            sides.setdefault(item.pair_id, []).append(item.side)
        for pair_id, pair_sides in sides.items():
            if sorted(pair_sides) != [Side.SOURCE, Side.TARGET]:
                raise InvalidQuestion(
                    f"Pair {pair_id} must have exactly one source and one target item"
                )
        if len(sides) != self.pair_count:
            raise InvalidQuestion(
                f"Question {self.id}: pair_count {self.pair_count} != {len(sides)} pairs"
            )
        return self

    def partner_of(self, item: MatchItem) -> Optional[MatchItem]:
        return next(
            (i for i in self.items if i.pair_id == item.pair_id and i.id != item.id),
            None,
        )


Question = Annotated[
    Union[MultipleChoiceQuestion, TypingQuestion, ListeningQuestion, MatchingQuestion],
    Field(discriminator="type"),
]


# --- Session data ---
class SessionSettings(BaseModel):
    tolerance: Tolerance = Tolerance.NORMAL
    cloze_enabled: bool = False


class SessionPayload(BaseModel):
    """Local mirror written by the setup step and read once by the engine."""

    questions: List[Question]
    total: int
    mode: Mode
    direction: Direction = Direction.SOURCE_TO_TARGET
    settings: SessionSettings = SessionSettings()

    @model_validator(mode="before")
    @classmethod
    def _tag_questions(cls, data: Any) -> Any:
        # Untagged questions take the variant of the session mode.
        if isinstance(data, dict) and data.get("mode") and data.get("mode") != "mixed":
            mode = data["mode"].value if isinstance(data["mode"], Enum) else data["mode"]
            questions = []
            for q in data.get("questions") or []:
                if isinstance(q, dict) and "type" not in q:
                    q = dict(q, type=mode)
                questions.append(q)
            data = dict(data, questions=questions)
        return data

    @model_validator(mode="after")
    def _check_total(self):
        if self.total != len(self.questions):
            raise InvalidQuestion(
                f"Payload total {self.total} != {len(self.questions)} questions"
            )
        return self


class Session(BaseModel):
    id: str
    mode: Mode
    direction: Direction
    total_questions: int
    started_at: datetime
    current_index: int = 0
    status: Status = Status.LOADING


# --- Records & results ---
class AnswerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    vocabulary_id: str
    mode: Mode
    user_answer: str
    correct_answer: str
    is_correct: bool
    time_spent_ms: int
    hint_count: int = 0
    skipped: bool = False


class MatchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    pair_id: str
    is_correct: bool
    time_spent_ms: int


class FeedbackToken(BaseModel):
    char: str
    status: Literal["correct", "wrong", "missing"]


class ValidationResult(BaseModel):
    is_correct: bool
    matched_answer: str
    similarity: float


class Feedback(BaseModel):
    is_correct: bool
    user_answer: str
    correct_answer: str
    skipped: bool = False
    diff: List[FeedbackToken] = []


class SessionResult(BaseModel):
    correct: int
    wrong: int
    skipped: int
    total: int
    duration_seconds: int
    accuracy: float


class StreakStatus(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    added_today: bool = False
    is_active: bool = False
    last_activity_date: Optional[date] = None
    total_active_days: int = 0


class SessionConfig(BaseModel):
    """Parameters the setup step sends when asking for a question set."""

    mode: Mode = Mode.MULTIPLE_CHOICE
    direction: Direction = Direction.SOURCE_TO_TARGET
    question_count: int = Field(10, ge=1, le=100)
    topic: Optional[str] = None
    settings: SessionSettings = SessionSettings()


class QuestionSet(BaseModel):
    session_id: str
    questions: List[Dict[str, Any]]
    total: int
