"""
Persistence-layer error taxonomy.

Storage errors are never wrapped: a unique-constraint rejection surfaces as
SQLAlchemy's ``IntegrityError`` and any other execution failure (bad SQL, lost
connection, lock timeout) as ``DBAPIError``.  They are re-exported here under
the names the service layer uses.
"""

from sqlalchemy.exc import DBAPIError as AdapterFailure  # noqa: F401
from sqlalchemy.exc import IntegrityError as ConflictViolation  # noqa: F401


class PersistenceError(Exception):
    """Base class for domain errors raised by repositories and the vote ledger."""

    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(PersistenceError):
    """An operation referenced an idea or vote that does not exist."""

    code = "NOT_FOUND"


class InvalidTagsError(PersistenceError):
    """An idea referenced tag ids that are not in the tag catalogue."""

    code = "INVALID_TAGS"

    def __init__(self, invalid_tags):
        super().__init__(f"Invalid tags: {', '.join(invalid_tags)}")
        self.invalid_tags = list(invalid_tags)
