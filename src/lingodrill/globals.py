import logging
from typing import Dict, Optional

from .client import HttpPracticeService, PracticeService
from .config import settings
from .controller import SessionController
from .local_service import LocalPracticeService
from .models import Status
from .persistence import SessionGuard, SessionStore, SQLiteSessionGuard
from .vocabulary import VocabularyManager

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live controllers by session id, sharing one store, guard and service."""

    def __init__(self, store: SessionStore, guard: SessionGuard, service: PracticeService):
        self.store = store
        self.guard = guard
        self.service = service
        self.controllers: Dict[str, SessionController] = {}

    def get(self, session_id: str) -> Optional[SessionController]:
        return self.controllers.get(session_id)

    def open(self, session_id: str) -> SessionController:
        """Return the running controller for a session, starting it on first use."""
        controller = self.controllers.get(session_id)
        if controller is not None:
            return controller
        self.evict_completed()
        controller = SessionController(self.store, self.guard, self.service)
        controller.start(session_id)
        self.controllers[session_id] = controller
        return controller

    def discard(self, session_id: str):
        controller = self.controllers.pop(session_id, None)
        if controller is not None:
            controller.close()

    def evict_completed(self):
        """Drop finished sessions; their result stays readable until the next session opens."""
        for session_id, controller in list(self.controllers.items()):
            if controller.status == Status.COMPLETED:
                self.discard(session_id)

    def close_all(self):
        for session_id in list(self.controllers):
            self.discard(session_id)


def build_service(vocab: VocabularyManager) -> PracticeService:
    if settings.PRACTICE_API_URL:
        logger.info(f"Using remote practice service at {settings.PRACTICE_API_URL}")
        return HttpPracticeService(settings.PRACTICE_API_URL)
    return LocalPracticeService(vocab)


vocab_manager = VocabularyManager(f"{settings.VOCAB_DIR}")
registry = SessionRegistry(SessionStore(), SQLiteSessionGuard(), build_service(vocab_manager))
