"""
Vote ledger and live vote aggregates.

Per (user, idea) a ballot is absent, an upvote, or a downvote.  The
``UNIQUE(user_id, idea_id)`` constraint is the only thing preventing a second
ballot, so every write is a single conflict-aware statement rather than a
read followed by a write:

* ``cast``   – upsert on (user_id, idea_id)
* ``switch`` – one ``UPDATE … SET vote_type = CASE …``
* ``remove`` – one ``DELETE``

Each mutation runs in a transaction scope together with the re-sync of
``ideas.vote_count``, so the stored count never drifts from the ballots.
"""

import logging
from typing import List, Optional, Union

from app.database import Queryable
from app.errors import NotFoundError
from app.models.vote import VoteType
from app.schemas.vote import TopVotedIdea, VoteOut, VoteStats
from app.services.ideas import IdeaRepository

logger = logging.getLogger(__name__)

VOTE_COLUMNS = "id, user_id, idea_id, vote_type, created_at"

FLIP_VOTE_TYPE = "CASE vote_type WHEN 'upvote' THEN 'downvote' ELSE 'upvote' END"

VOTE_COUNTS = """
    SELECT
        COUNT(CASE WHEN vote_type = 'upvote' THEN 1 END) AS upvotes,
        COUNT(CASE WHEN vote_type = 'downvote' THEN 1 END) AS downvotes
    FROM votes
    WHERE idea_id = $1
"""

TOP_VOTED = """
    SELECT
        idea_id,
        COUNT(CASE WHEN vote_type = 'upvote' THEN 1 END)
            - COUNT(CASE WHEN vote_type = 'downvote' THEN 1 END) AS vote_count
    FROM votes
    GROUP BY idea_id
    ORDER BY vote_count DESC, idea_id ASC
    LIMIT $1
"""


def row_to_vote(row: dict) -> VoteOut:
    return VoteOut(
        id=row["id"],
        user_id=row["user_id"],
        idea_id=row["idea_id"],
        vote_type=row["vote_type"],
        created_at=row["created_at"],
    )


async def _require_idea(db: Queryable, idea_id: int) -> None:
    if not await IdeaRepository(db).exists(idea_id):
        raise NotFoundError("Idea not found", "IDEA_NOT_FOUND")


class VoteLedger:
    """Creates, overwrites, flips, and deletes individual ballots."""

    def __init__(self, db: Queryable):
        self.db = db

    # ── Mutations ──

    async def cast(self, user_id: int, idea_id: int, vote_type: Union[VoteType, str]) -> VoteOut:
        """Record ``vote_type``; an existing ballot is overwritten, never duplicated."""
        vote_type = VoteType(vote_type)

        async def work(tx) -> VoteOut:
            await _require_idea(tx, idea_id)
            row = await tx.insert_and_fetch(
                "votes",
                {"user_id": user_id, "idea_id": idea_id, "vote_type": vote_type.value},
                conflict_on=("user_id", "idea_id"),
                on_conflict_set={
                    "vote_type": "EXCLUDED.vote_type",
                    "created_at": "CURRENT_TIMESTAMP",
                },
            )
            await IdeaRepository(tx).sync_vote_count(idea_id)
            return row_to_vote(row)

        vote = await self.db.run_in_transaction(work)
        logger.info(f"User {user_id} cast {vote.vote_type.value} on idea {idea_id}")
        return vote

    async def remove(self, user_id: int, idea_id: int) -> None:
        async def work(tx) -> None:
            await _require_idea(tx, idea_id)
            result = await tx.query(
                "DELETE FROM votes WHERE user_id = $1 AND idea_id = $2",
                [user_id, idea_id],
            )
            if not result.row_count:
                raise NotFoundError("No vote found to remove", "NO_VOTE_FOUND")
            await IdeaRepository(tx).sync_vote_count(idea_id)

        await self.db.run_in_transaction(work)
        logger.info(f"User {user_id} removed vote on idea {idea_id}")

    async def switch(self, user_id: int, idea_id: int) -> VoteOut:
        """Flip an existing ballot in place and return it."""

        async def work(tx) -> VoteOut:
            await _require_idea(tx, idea_id)
            row = await tx.update_and_fetch(
                "votes",
                {"user_id": user_id, "idea_id": idea_id},
                expressions={
                    "vote_type": FLIP_VOTE_TYPE,
                    "created_at": "CURRENT_TIMESTAMP",
                },
            )
            if row is None:
                raise NotFoundError("No existing vote to switch", "NO_VOTE_TO_SWITCH")
            await IdeaRepository(tx).sync_vote_count(idea_id)
            return row_to_vote(row)

        vote = await self.db.run_in_transaction(work)
        logger.info(f"User {user_id} switched vote on idea {idea_id} to {vote.vote_type.value}")
        return vote

    # ── Reads ──

    async def find(self, user_id: int, idea_id: int) -> Optional[VoteOut]:
        result = await self.db.query(
            f"SELECT {VOTE_COLUMNS} FROM votes WHERE user_id = $1 AND idea_id = $2",
            [user_id, idea_id],
        )
        row = result.first()
        return row_to_vote(row) if row else None

    async def has_voted(self, user_id: int, idea_id: int) -> bool:
        return await self.find(user_id, idea_id) is not None

    async def vote_type_for(self, user_id: int, idea_id: int) -> Optional[VoteType]:
        vote = await self.find(user_id, idea_id)
        return vote.vote_type if vote else None

    async def votes_by_user(self, user_id: int, limit: int = 50) -> List[VoteOut]:
        result = await self.db.query(
            f"SELECT {VOTE_COLUMNS} FROM votes WHERE user_id = $1 "
            "ORDER BY created_at DESC, id DESC LIMIT $2",
            [user_id, limit],
        )
        return [row_to_vote(row) for row in result.rows]

    async def votes_by_idea(self, idea_id: int, limit: int = 100) -> List[VoteOut]:
        result = await self.db.query(
            f"SELECT {VOTE_COLUMNS} FROM votes WHERE idea_id = $1 "
            "ORDER BY created_at DESC, id DESC LIMIT $2",
            [idea_id, limit],
        )
        return [row_to_vote(row) for row in result.rows]


class VoteAggregates:
    """Tallies computed from the votes table on every call; nothing is cached."""

    def __init__(self, db: Queryable):
        self.db = db

    async def stats_for(self, idea_id: int, user_id: Optional[int] = None) -> VoteStats:
        row = (await self.db.query(VOTE_COUNTS, [idea_id])).first() or {}
        upvotes = int(row.get("upvotes") or 0)
        downvotes = int(row.get("downvotes") or 0)

        if user_id is None:
            return VoteStats(upvotes=upvotes, downvotes=downvotes, total=upvotes - downvotes)

        user_vote = await VoteLedger(self.db).vote_type_for(user_id, idea_id)
        return VoteStats(
            upvotes=upvotes,
            downvotes=downvotes,
            total=upvotes - downvotes,
            user_vote=user_vote,
        )

    async def top_voted(self, limit: int = 10) -> List[TopVotedIdea]:
        result = await self.db.query(TOP_VOTED, [limit])
        return [
            TopVotedIdea(idea_id=row["idea_id"], vote_count=int(row["vote_count"]))
            for row in result.rows
        ]
