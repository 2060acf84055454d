import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from .config import settings
from .database import init_db
from .globals import SessionRegistry, registry as default_registry, vocab_manager
from .log_handler import SQLiteHandler
from .router import router
from .vocabulary import VocabularyManager


# --- Logging Setup ---
def setup_logging(db_path: Optional[str] = None):
    logger = logging.getLogger("lingodrill")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return

    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)

    if settings.LOG_TO_DB:
        db_handler = SQLiteHandler(db_path, level=logging.WARNING)
        db_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(db_handler)
    # Also configure root logger to see logs from other libraries
    logging.basicConfig(level=logging.INFO)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.vocab_manager.load_all()
    yield
    app.state.registry.close_all()
    await app.state.registry.service.aclose()


def _is_session_surface(path: str, session_id: str) -> bool:
    surface = f"/sessions/{session_id}"
    return path == surface or path.startswith(surface + "/")


# --- App Factory ---
def create_app(
    registry: Optional[SessionRegistry] = None,
    vocab: Optional[VocabularyManager] = None,
    db_path: Optional[str] = None,
) -> FastAPI:
    init_db(db_path)
    setup_logging(db_path)
    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
        root_path=settings.ROOT_PATH,
    )
    app.state.registry = registry or default_registry
    app.state.vocab_manager = vocab or vocab_manager

    @app.middleware("http")
    async def session_guard(request: Request, call_next):
        # Navigation away from a running session goes back to it.
        active = app.state.registry.guard.holder()
        path = request.url.path
        if (
            active is not None
            and request.method == "GET"
            and not path.startswith("/api/")
            and not _is_session_surface(path, active)
        ):
            return RedirectResponse(url=f"/sessions/{active}", status_code=302)
        return await call_next(request)

    app.include_router(router)

    return app
