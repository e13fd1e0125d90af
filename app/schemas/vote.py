"""Vote Pydantic schemas — ballots and derived tallies."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from app.models.vote import VoteType

CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


class VoteCast(BaseModel):
    vote_type: VoteType

    model_config = CAMEL


class VoteOut(BaseModel):
    id: int
    user_id: int
    idea_id: int
    vote_type: VoteType
    created_at: datetime

    model_config = CAMEL


class VoteStats(BaseModel):
    """
    Live tally for one idea, recomputed from the votes table on every read.

    ``user_vote`` is only set when stats were requested for a specific user;
    it is then ``None`` if that user has not voted.
    """
    upvotes: int = 0
    downvotes: int = 0
    total: int = 0
    user_vote: Optional[VoteType] = None

    model_config = CAMEL


class TopVotedIdea(BaseModel):
    idea_id: int
    vote_count: int

    model_config = CAMEL
