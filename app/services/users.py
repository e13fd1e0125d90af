"""User repository — just enough account storage for ideas and votes to reference."""

from typing import Optional

from app.database import Queryable
from app.schemas.user import UserCreate, UserPublic
from app.services.ideas import IdeaRepository


def row_to_user(row: dict) -> UserPublic:
    return UserPublic(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        is_admin=row["is_admin"],
        created_at=row["created_at"],
    )


class UserRepository:
    def __init__(self, db: Queryable):
        self.db = db

    async def create(self, data: UserCreate) -> UserPublic:
        row = await self.db.insert_and_fetch("users", data.model_dump())
        return row_to_user(row)

    async def find_by_id(self, user_id: int) -> Optional[UserPublic]:
        result = await self.db.query(
            "SELECT id, username, email, is_admin, created_at FROM users WHERE id = $1",
            [user_id],
        )
        row = result.first()
        return row_to_user(row) if row else None

    async def delete(self, user_id: int) -> bool:
        """Delete a user; their ballots cascade, so re-sync the ideas they voted on."""

        async def work(tx) -> bool:
            voted = await tx.query("SELECT DISTINCT idea_id FROM votes WHERE user_id = $1", [user_id])
            result = await tx.query("DELETE FROM users WHERE id = $1", [user_id])
            ideas = IdeaRepository(tx)
            for row in voted.rows:
                await ideas.sync_vote_count(row["idea_id"])
            return result.row_count > 0

        return await self.db.run_in_transaction(work)
