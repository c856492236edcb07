"""
Shared dependencies for tryout endpoints.

The clock, the countdown sleep and the session factory are dependencies so
tests can swap in a controllable clock and a per-test database.
"""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from tryout.core.datetime_utils import utc_now
from tryout.core.engine.controller import SessionController
from tryout.models import SessionLocal, get_db
from tryout.services.ranking_service import RankingService

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def get_clock() -> Clock:
    """Wall clock used for timer reconciliation."""
    return utc_now


def get_countdown_sleep() -> Sleep:
    """Pause between countdown ticks."""
    return asyncio.sleep


def get_session_factory() -> Callable[[], Session]:
    """Factory for database sessions that outlive the request (streams)."""
    return SessionLocal


def get_session_controller(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionController:
    return SessionController(db, clock=clock)


def get_ranking_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> RankingService:
    return RankingService(db, clock=clock)
