"""
Votes router — cast, switch, and remove ballots; read live tallies.

Endpoints:
    GET    /api/votes/stats/{idea_id}    → tallies (+ caller's vote when signed in)
    GET    /api/votes/top                → ideas ranked by live score
    GET    /api/votes/user/me            → caller's recent ballots
    POST   /api/votes/{idea_id}          → cast or overwrite a ballot
    PATCH  /api/votes/{idea_id}/switch   → flip an existing ballot
    DELETE /api/votes/{idea_id}          → remove a ballot
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.database import QueryExecutor, get_executor
from app.errors import NotFoundError
from app.routers.auth import get_current_user_id, get_optional_user_id
from app.schemas.vote import VoteCast, VoteStats
from app.services.ideas import IdeaRepository
from app.services.votes import VoteAggregates, VoteLedger

router = APIRouter(prefix="/api/votes", tags=["votes"])


def _error(status_code: int, message: str, code: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"message": message, "code": code})


def _stats_payload(stats: VoteStats) -> dict:
    # userVote is only present when stats were computed for a caller
    return stats.model_dump(by_alias=True, mode="json", exclude_unset=True)


async def _check_can_vote(db: QueryExecutor, idea_id: int, user_id: int) -> None:
    author_id = await IdeaRepository(db).get_author_id(idea_id)
    if author_id is None:
        raise _error(status.HTTP_404_NOT_FOUND, "Idea not found", "IDEA_NOT_FOUND")
    if author_id == user_id:
        raise _error(status.HTTP_400_BAD_REQUEST, "Cannot vote on your own idea", "CANNOT_VOTE_OWN_IDEA")


# ═══════════════════════════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════════════════════════

@router.get("/stats/{idea_id}")
async def get_vote_stats(
    idea_id: int = Path(ge=1),
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    if not await IdeaRepository(db).exists(idea_id):
        raise _error(status.HTTP_404_NOT_FOUND, "Idea not found", "IDEA_NOT_FOUND")

    stats = await VoteAggregates(db).stats_for(idea_id, user_id)
    return {"success": True, "data": {"stats": _stats_payload(stats)}}


@router.get("/top")
async def get_top_voted_ideas(
    limit: int = Query(default=10, ge=1),
    db: QueryExecutor = Depends(get_executor),
):
    top = await VoteAggregates(db).top_voted(min(limit, 50))
    return {
        "success": True,
        "data": {"topIdeas": [item.model_dump(by_alias=True) for item in top]},
    }


@router.get("/user/me")
async def get_user_votes(
    limit: int = Query(default=50, ge=1),
    user_id: int = Depends(get_current_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    votes = await VoteLedger(db).votes_by_user(user_id, min(limit, 100))
    return {
        "success": True,
        "data": {"votes": [vote.model_dump(by_alias=True, mode="json") for vote in votes]},
    }


# ═══════════════════════════════════════════════════════════════
#  Mutations
# ═══════════════════════════════════════════════════════════════

@router.post("/{idea_id}")
async def cast_vote(
    body: VoteCast,
    idea_id: int = Path(ge=1),
    user_id: int = Depends(get_current_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    await _check_can_vote(db, idea_id, user_id)

    try:
        vote = await VoteLedger(db).cast(user_id, idea_id, body.vote_type)
    except NotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, e.message, e.code)

    stats = await VoteAggregates(db).stats_for(idea_id, user_id)
    return {
        "success": True,
        "message": "Vote cast successfully",
        "data": {
            "vote": vote.model_dump(by_alias=True, mode="json"),
            "stats": _stats_payload(stats),
        },
    }


@router.patch("/{idea_id}/switch")
async def switch_vote(
    idea_id: int = Path(ge=1),
    user_id: int = Depends(get_current_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    await _check_can_vote(db, idea_id, user_id)

    try:
        vote = await VoteLedger(db).switch(user_id, idea_id)
    except NotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, e.message, e.code)

    stats = await VoteAggregates(db).stats_for(idea_id, user_id)
    return {
        "success": True,
        "message": "Vote switched successfully",
        "data": {
            "vote": vote.model_dump(by_alias=True, mode="json"),
            "stats": _stats_payload(stats),
        },
    }


@router.delete("/{idea_id}")
async def remove_vote(
    idea_id: int = Path(ge=1),
    user_id: int = Depends(get_current_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    try:
        await VoteLedger(db).remove(user_id, idea_id)
    except NotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, e.message, e.code)

    stats = await VoteAggregates(db).stats_for(idea_id, user_id)
    return {
        "success": True,
        "message": "Vote removed successfully",
        "data": {"stats": _stats_payload(stats)},
    }
