"""
Ideas Tracker – SQLAlchemy ORM models package.

The models define the schema only; all queries go through
``app.database.QueryExecutor``.  Importing this package registers every table
on ``Base.metadata``.
"""

from app.models.user import User        # noqa: F401
from app.models.idea import Idea        # noqa: F401
from app.models.vote import Vote, VoteType  # noqa: F401
