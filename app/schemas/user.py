"""User Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel

from app.schemas.vote import CAMEL


class UserCreate(BaseModel):
    username: str
    email: str
    password_hash: str
    is_admin: bool = False


class UserPublic(BaseModel):
    """Public user representation embedded in idea responses."""
    id: int
    username: str
    email: str
    is_admin: bool = False
    created_at: datetime

    model_config = CAMEL
