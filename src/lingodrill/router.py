import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from .exceptions import (
    ActiveSessionConflict,
    InvalidQuestion,
    InvalidTransition,
    PracticeServiceError,
    SessionFinalizeError,
    SessionNotFound,
)
from .globals import SessionRegistry
from .models import SessionConfig
from .session_setup import prepare_session
from .vocabulary import VocabularyManager

logger = logging.getLogger(__name__)

router = APIRouter()


class AnswerIn(BaseModel):
    answer: Union[int, str]
    hint_count: Optional[int] = None


class SelectIn(BaseModel):
    item_id: str


# --- Dependencies ---
def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_vocab(request: Request) -> VocabularyManager:
    return request.app.state.vocab_manager


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def _session_url(session_id: str) -> str:
    return f"/sessions/{session_id}"


# --- Routes ---
@router.get("/")
async def home(
    registry: SessionRegistry = Depends(get_registry),
    vocab: VocabularyManager = Depends(get_vocab),
):
    return {"topics": vocab.get_topics(), "active_session_id": registry.guard.holder()}


@router.get("/api/topics")
async def get_topics(vocab: VocabularyManager = Depends(get_vocab)):
    return vocab.get_topics()


@router.post("/api/sessions")
async def create_session(config: SessionConfig, registry: SessionRegistry = Depends(get_registry)):
    try:
        session_id = await prepare_session(config, registry.service, registry.store, registry.guard)
    except ActiveSessionConflict as e:
        return _error(
            409, str(e), active_session_id=e.active_session_id, url=_session_url(e.active_session_id)
        )
    except (PracticeServiceError, InvalidQuestion) as e:
        logger.error(f"Session setup failed: {e}")
        return _error(502, str(e))
    return JSONResponse({"session_id": session_id, "url": _session_url(session_id)}, status_code=201)


@router.get("/sessions/{session_id}")
async def session_page(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Entry point of the session surface: resume, redirect to the active one, or back to setup."""
    try:
        controller = registry.open(session_id)
    except ActiveSessionConflict as e:
        return RedirectResponse(url=_session_url(e.active_session_id), status_code=302)
    except (SessionNotFound, InvalidQuestion) as e:
        logger.warning(f"Cannot open session {session_id}: {e}")
        # A stale guard would bounce every page back here.
        registry.guard.release(session_id)
        return RedirectResponse(url="/", status_code=302)
    return controller.snapshot()


def _run(registry: SessionRegistry, session_id: str):
    controller = registry.get(session_id)
    if controller is None:
        return None, _error(404, f"Session {session_id} is not running")
    return controller, None


@router.get("/api/sessions/{session_id}")
async def session_state(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    return error or controller.snapshot()


@router.post("/api/sessions/{session_id}/answer")
async def submit_answer(session_id: str, body: AnswerIn, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        await controller.submit_answer(body.answer, body.hint_count)
    except (InvalidTransition, InvalidQuestion) as e:
        return _error(409, str(e))
    return controller.snapshot()


@router.post("/api/sessions/{session_id}/skip")
async def skip_question(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        await controller.skip()
    except InvalidTransition as e:
        return _error(409, str(e))
    return controller.snapshot()


@router.post("/api/sessions/{session_id}/hint")
async def request_hint(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        hint = controller.request_hint()
    except InvalidTransition as e:
        return _error(409, str(e))
    return {"hint": hint}


@router.post("/api/sessions/{session_id}/matching/select")
async def select_item(session_id: str, body: SelectIn, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        controller.select_item(body.item_id)
    except InvalidTransition as e:
        return _error(409, str(e))
    return controller.snapshot()


@router.post("/api/sessions/{session_id}/next")
async def next_question(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        await controller.next()
    except InvalidTransition as e:
        return _error(409, str(e))
    except SessionFinalizeError as e:
        return _error(502, controller.error or str(e), retryable=True)
    return controller.snapshot()


@router.post("/api/sessions/{session_id}/finish")
async def finish_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    try:
        await controller.finish()
    except InvalidTransition as e:
        return _error(409, str(e))
    except SessionFinalizeError as e:
        return _error(502, controller.error or str(e), retryable=True)
    return controller.snapshot()


@router.post("/api/sessions/{session_id}/quit")
async def quit_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    controller, error = _run(registry, session_id)
    if error:
        return error
    controller.quit()
    registry.discard(session_id)
    return {"status": "success"}
