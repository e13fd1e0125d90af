"""Idea Pydantic schemas — submission, listing, and output."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.user import UserPublic
from app.schemas.vote import CAMEL


class IdeaCreate(BaseModel):
    title: str = Field(min_length=5, max_length=255)
    description: str = Field(min_length=10, max_length=5000)
    tags: List[str] = Field(default_factory=list, max_length=10)


class IdeaUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=255)
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)
    tags: Optional[List[str]] = Field(default=None, max_length=10)


class IdeaOut(BaseModel):
    id: int
    title: str
    description: str
    author_id: int
    author: Optional[UserPublic] = None
    tags: List[str] = []
    vote_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = CAMEL


class IdeaFilters(BaseModel):
    tags: List[str] = []
    author_id: Optional[int] = None
    search: Optional[str] = None


class IdeaSort(BaseModel):
    sort_by: Literal["votes", "date", "alphabetical"] = "votes"
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)


class IdeaPage(BaseModel):
    ideas: List[IdeaOut]
    total: int
    page: int
    limit: int
    total_pages: int

    model_config = CAMEL
