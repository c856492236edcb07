"""
Package leaderboard endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tryout.api.v1._dependencies import get_ranking_service
from tryout.core.auth import get_current_user_id
from tryout.core.config import settings
from tryout.core.error_responses import ErrorMessages, raise_not_found
from tryout.models import get_db
from tryout.schemas.rankings import RankingEntryResponse, RankingListResponse
from tryout.services.question_bank import SqlQuestionBank
from tryout.services.ranking_service import RankingService

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_package(db: Session, package_id: int) -> None:
    # Raises PackageNotFound, mapped to 404
    SqlQuestionBank(db).get_package(package_id)


@router.get("/{package_id}/rankings", response_model=RankingListResponse)
def get_rankings(
    package_id: int,
    limit: Optional[int] = Query(
        default=None,
        ge=1,
        le=settings.RANKINGS_MAX_LIMIT,
        description="Maximum number of entries to return",
    ),
    offset: int = Query(default=0, ge=0, description="Number of entries to skip"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: RankingService = Depends(get_ranking_service),
):
    """
    Get a page of a package's leaderboard in rank order.

    Ties share a rank (standard competition ranking: 90, 90, 80 rank 1, 1, 3).
    """
    _require_package(db, package_id)
    page = service.get_rankings(
        package_id, limit or settings.RANKINGS_DEFAULT_LIMIT, offset
    )
    return RankingListResponse(
        package_id=page.package_id,
        entries=[RankingEntryResponse.model_validate(e) for e in page.entries],
        total_participants=page.total_participants,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/{package_id}/rankings/me", response_model=RankingEntryResponse)
def get_my_rank(
    package_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: RankingService = Depends(get_ranking_service),
):
    """
    Get the current user's best leaderboard entry in a package.

    Raises:
        HTTPException: 404 if the user has no completed session in the package
    """
    _require_package(db, package_id)
    entry = service.get_user_rank(package_id, user_id)
    if entry is None:
        raise_not_found(ErrorMessages.RANKING_NOT_FOUND)
    return RankingEntryResponse.model_validate(entry)


@router.post("/{package_id}/rankings/recompute", response_model=RankingListResponse)
def recompute_rankings(
    package_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service: RankingService = Depends(get_ranking_service),
):
    """
    Rebuild a package's leaderboard from the latest completed results.

    Returns the first page of the new leaderboard.
    """
    _require_package(db, package_id)
    logger.info(
        f"Ranking recompute requested by {user_id} for package {package_id}",
        extra={"package_id": package_id, "user_identifier": user_id},
    )
    entries = service.recompute_rankings(package_id)
    limit = settings.RANKINGS_DEFAULT_LIMIT
    return RankingListResponse(
        package_id=package_id,
        entries=[RankingEntryResponse.model_validate(e) for e in entries[:limit]],
        total_participants=len(entries),
        limit=limit,
        offset=0,
    )
