"""
Ideas router — the listing and submission surface that voting hangs off.

Endpoints:
    GET  /api/ideas                   → filtered, sorted, paginated list
    GET  /api/ideas/user/{user_id}    → one author's ideas
    GET  /api/ideas/{idea_id}         → one idea with its live vote stats
    POST /api/ideas                   → submit an idea
"""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.config import settings
from app.database import QueryExecutor, get_executor
from app.errors import InvalidTagsError
from app.routers.auth import get_current_user_id, get_optional_user_id
from app.schemas.idea import IdeaCreate, IdeaFilters, IdeaSort, Pagination
from app.services.ideas import IdeaRepository
from app.services.votes import VoteAggregates

router = APIRouter(prefix="/api/ideas", tags=["ideas"])


def _pagination(page: int, limit: Optional[int]) -> Pagination:
    limit = min(limit or settings.PAGINATION_DEFAULT_LIMIT, settings.PAGINATION_MAX_LIMIT)
    return Pagination(page=page, limit=limit)


@router.get("")
async def list_ideas(
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    sort_by: Literal["votes", "date", "alphabetical"] = Query(default="votes", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    tags: List[str] = Query(default=[]),
    search: Optional[str] = None,
    author_id: Optional[int] = Query(default=None, alias="authorId"),
    db: QueryExecutor = Depends(get_executor),
):
    result = await IdeaRepository(db).find_all(
        IdeaFilters(tags=tags, author_id=author_id, search=search),
        IdeaSort(sort_by=sort_by, sort_order=sort_order),
        _pagination(page, limit),
    )
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}


@router.get("/user/{user_id}")
async def list_ideas_by_user(
    user_id: int = Path(ge=1),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    sort_by: Literal["votes", "date", "alphabetical"] = Query(default="date", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    db: QueryExecutor = Depends(get_executor),
):
    result = await IdeaRepository(db).find_by_author(
        user_id,
        IdeaSort(sort_by=sort_by, sort_order=sort_order),
        _pagination(page, limit),
    )
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}


@router.get("/{idea_id}")
async def get_idea(
    idea_id: int = Path(ge=1),
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    idea = await IdeaRepository(db).find_by_id(idea_id)
    if not idea:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Idea not found", "code": "IDEA_NOT_FOUND"},
        )

    stats = await VoteAggregates(db).stats_for(idea_id, user_id)
    return {
        "success": True,
        "data": {
            "idea": idea.model_dump(by_alias=True, mode="json"),
            "stats": stats.model_dump(by_alias=True, mode="json", exclude_unset=True),
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_idea(
    body: IdeaCreate,
    user_id: int = Depends(get_current_user_id),
    db: QueryExecutor = Depends(get_executor),
):
    repo = IdeaRepository(db)
    try:
        created = await repo.create(body, author_id=user_id)
    except InvalidTagsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "code": e.code},
        )

    idea = await repo.find_by_id(created.id)
    return {
        "success": True,
        "message": "Idea created successfully",
        "data": {"idea": idea.model_dump(by_alias=True, mode="json")},
    }
