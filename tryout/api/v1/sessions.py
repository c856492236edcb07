"""
Tryout session endpoints.

Every endpoint delegates to ``SessionController``; engine exceptions are
mapped onto HTTP responses by the application's exception handler.
"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from tryout.api.v1._dependencies import (
    Clock,
    Sleep,
    get_clock,
    get_countdown_sleep,
    get_session_controller,
    get_session_factory,
)
from tryout.core.auth import get_current_user_id
from tryout.core.datetime_utils import format_countdown
from tryout.core.engine.controller import SessionController
from tryout.core.engine.ticker import CountdownTicker
from tryout.core.engine.timer import TimerCheckpointState, timer_urgency
from tryout.core.graceful_failure import graceful_failure
from tryout.schemas.results import ScoreResultResponse, SubmissionResponse
from tryout.schemas.sessions import (
    AnswerResponse,
    CountdownEvent,
    NavigateRequest,
    NavigationResponse,
    SelectAnswerRequest,
    SessionResponse,
    StartSessionRequest,
    TimerStateResponse,
)

router = APIRouter()
T = TypeVar("T")
logger = logging.getLogger(__name__)


@router.post("/start", response_model=SessionResponse)
def start_session(
    request: StartSessionRequest,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Start a tryout session for the current user.

    Idempotent: while the user has a live session for the package that
    session is reconciled and returned with ``resumed`` set.

    Raises:
        HTTPException: 404 if the package does not exist
    """
    view = controller.start_session(user_id, request.package_id)
    return SessionResponse.from_view(view)


@router.get("/active", response_model=Optional[SessionResponse])
def get_active_session(
    package_id: int = Query(..., ge=1, description="Tryout package ID"),
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Get the user's live session for a package, or null if there is none.
    """
    view = controller.get_active_session(user_id, package_id)
    return SessionResponse.from_view(view) if view is not None else None


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """Get a session after reconciling its timer."""
    return SessionResponse.from_view(controller.get_session(session_id, user_id))


@router.put("/{session_id}/answers/{question_id}", response_model=AnswerResponse)
def select_answer(
    session_id: int,
    question_id: int,
    request: SelectAnswerRequest,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Select an option for a question. A later selection replaces an earlier one.

    Raises:
        HTTPException: 409 if the session is not in progress or time is up,
            400 if the option is not one of the question's options
    """
    entry = controller.select_answer(session_id, user_id, question_id, request.option_key)
    return AnswerResponse.from_entry(entry)


@router.delete("/{session_id}/answers/{question_id}", response_model=AnswerResponse)
def clear_answer(
    session_id: int,
    question_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """Clear the selected option of a question."""
    entry = controller.clear_answer(session_id, user_id, question_id)
    return AnswerResponse.from_entry(entry)


@router.post("/{session_id}/answers/{question_id}/flag", response_model=AnswerResponse)
def toggle_flag(
    session_id: int,
    question_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """Toggle the review flag of a question."""
    entry = controller.toggle_flag(session_id, user_id, question_id)
    return AnswerResponse.from_entry(entry)


@router.post("/{session_id}/navigate", response_model=NavigationResponse)
def navigate(
    session_id: int,
    request: NavigateRequest,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Move to a question by index. Navigation never submits the session.

    Raises:
        HTTPException: 400 if the index is out of range
    """
    state = controller.navigate_to(session_id, user_id, request.index)
    return NavigationResponse.from_state(state)


@router.post("/{session_id}/heartbeat", response_model=TimerStateResponse)
def heartbeat(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Reconcile the timer on the server and return the authoritative state.

    Clients call this periodically and render their own countdown in between.
    """
    return TimerStateResponse.from_state(controller.heartbeat(session_id, user_id))


def _run_with_controller(
    session_factory: Callable[[], Session],
    clock: Clock,
    operation: Callable[[SessionController], T],
) -> T:
    db = session_factory()
    try:
        return operation(SessionController(db, clock=clock))
    finally:
        db.close()


def _countdown_event(
    session_id: int, remaining: float, duration_seconds: float, expired: bool
) -> str:
    event = CountdownEvent(
        session_id=session_id,
        remaining_seconds=round(remaining, 3),
        display=format_countdown(remaining),
        urgency=timer_urgency(remaining, duration_seconds).value,
        expired=expired,
    )
    return f"data: {event.model_dump_json()}\n\n"


@router.get("/{session_id}/countdown")
def stream_countdown(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
    clock: Clock = Depends(get_clock),
    sleep: Sleep = Depends(get_countdown_sleep),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Stream the live countdown as server-sent events.

    One event per tick. Checkpoints are written in the background while the
    stream is open; when the time runs out the session is submitted and a
    final ``expired`` event closes the stream. If the session is submitted
    or abandoned elsewhere, the stream stops at its next checkpoint and
    closes with the session's frozen state.
    """
    view, timer = controller.open_timer(session_id, user_id)

    def in_thread(operation: Callable[[SessionController], T]) -> Awaitable[T]:
        return asyncio.to_thread(_run_with_controller, session_factory, clock, operation)

    async def events() -> AsyncIterator[str]:
        if timer is None:
            # Not running: one event with the frozen state
            yield _countdown_event(
                session_id,
                view.timer.remaining_seconds,
                view.duration_seconds,
                view.timer.expired,
            )
            return

        async def persist(state: TimerCheckpointState) -> None:
            running = await in_thread(lambda c: c.save_live_checkpoint(session_id, state))
            if not running:
                ticker.stop()

        ticker = CountdownTicker(timer, clock=clock, persist=persist, sleep=sleep)
        expired = False
        async for tick in ticker.ticks():
            expired = tick.expired
            yield _countdown_event(
                session_id, tick.remaining_seconds, timer.duration_seconds, tick.expired
            )

        ended_elsewhere = ticker.stopped
        if expired and not ended_elsewhere:
            with graceful_failure(
                "submit expired session after countdown",
                logger,
                context={"session_id": session_id},
            ):
                outcome = await in_thread(lambda c: c.expire_if_due(session_id))
                ended_elsewhere = outcome is None

        if ended_elsewhere:
            final_event: Optional[str] = None
            with graceful_failure(
                "load final countdown state",
                logger,
                context={"session_id": session_id},
            ):
                final = await in_thread(lambda c: c.get_session(session_id, user_id))
                final_event = _countdown_event(
                    session_id,
                    final.timer.remaining_seconds,
                    final.duration_seconds,
                    final.timer.expired,
                )
            if final_event is not None:
                yield final_event

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{session_id}/submit", response_model=SubmissionResponse)
def submit_session(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Submit the session for scoring.

    Repeating the call returns the existing result with
    ``already_submitted`` set.

    Raises:
        HTTPException: 409 if the session was abandoned, 503 (retryable) if
            the result could not be saved yet
    """
    return SubmissionResponse.from_outcome(controller.submit(session_id, user_id))


@router.post("/{session_id}/abandon", response_model=SessionResponse)
def abandon_session(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """Abandon an in-progress session. No result is recorded."""
    return SessionResponse.from_view(controller.abandon(session_id, user_id))


@router.get("/{session_id}/result", response_model=ScoreResultResponse)
def get_result(
    session_id: int,
    user_id: str = Depends(get_current_user_id),
    controller: SessionController = Depends(get_session_controller),
):
    """
    Get the score result of a completed session.

    Raises:
        HTTPException: 404 if the session has not completed
    """
    return ScoreResultResponse.model_validate(controller.get_score_result(session_id, user_id))
