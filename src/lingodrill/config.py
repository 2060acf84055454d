import os


class Settings:
    PROJECT_NAME: str = "lingodrill"
    DEBUG: bool = os.environ.get("LINGODRILL_DEBUG", "") == "1"
    LOG_DIR: str = "log"
    LOG_FILE: str = "lingodrill.log"
    LOG_TO_DB: bool = True
    DB_DIR: str = os.environ.get("LINGODRILL_DB_DIR", "db")
    DB_FILE: str = "lingodrill.db"
    VOCAB_DIR: str = "vocabulary"
    QUESTION_COUNT: int = 10
    SESSION_TIMEOUT_MINUTES: int = 120
    ROOT_PATH: str = os.environ.get("ROOT_PATH", "")

    # Remote practice service; empty means the local CSV-backed service.
    PRACTICE_API_URL: str = os.environ.get("PRACTICE_API_URL", "")
    HTTP_TIMEOUT_SECONDS: float = 10.0

    FEEDBACK_SECONDS: int = 5
    TICK_SECONDS: float = 1.0
    MATCH_SETTLE_SECONDS: float = 1.0
    MATCH_PAIRS_PER_ROUND: int = 5
    CLOZE_THRESHOLD: float = 0.6
    DEFAULT_TOLERANCE: str = "normal"
    HINT_CHARS_PER_STEP: int = 2


settings = Settings()
