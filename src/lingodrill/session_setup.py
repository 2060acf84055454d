import logging

from pydantic import ValidationError

from .client import PracticeService
from .exceptions import ActiveSessionConflict, InvalidQuestion
from .models import SessionConfig, SessionPayload
from .persistence import SessionGuard, SessionStore

logger = logging.getLogger(__name__)


async def prepare_session(
    config: SessionConfig,
    service: PracticeService,
    store: SessionStore,
    guard: SessionGuard,
) -> str:
    """
    Fetch a question set and write the local mirror the engine starts from.

    Refuses while another session holds the guard, so the learner is sent back
    to it instead of orphaning its progress. A question set that does not
    validate raises InvalidQuestion and nothing is stored.
    """
    active = guard.holder()
    if active is not None:
        raise ActiveSessionConflict(active)

    question_set = await service.fetch_question_set(config)
    try:
        payload = SessionPayload.model_validate(
            {
                "questions": question_set.questions,
                "total": question_set.total,
                "mode": config.mode,
                "direction": config.direction,
                "settings": config.settings,
            }
        )
    except ValidationError as e:
        logger.error(f"Rejected question set for {question_set.session_id}: {e.error_count()} errors")
        raise InvalidQuestion(f"Malformed question set: {e.errors()[0]['msg']}") from e

    store.save(question_set.session_id, payload)
    logger.info(f"Prepared session {question_set.session_id} with {question_set.total} questions")
    return question_set.session_id
