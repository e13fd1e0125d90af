"""
Idea repository — filtering, sorting, and paginating ideas over a QueryExecutor.

Tags are stored as a JSON-encoded list in a text column, so tag filtering is a
LIKE match on the quoted tag id inside that text rather than set membership.
"""

import json
import math
from typing import List, Optional

from app.database import Queryable
from app.errors import InvalidTagsError
from app.schemas.idea import IdeaCreate, IdeaFilters, IdeaOut, IdeaPage, IdeaSort, IdeaUpdate, Pagination
from app.schemas.user import UserPublic
from app.utils.tags import validate_tags

SORT_COLUMNS = {
    "votes": "i.vote_count",
    "date": "i.created_at",
    "alphabetical": "i.title",
}

IDEA_WITH_AUTHOR = """
    SELECT
        i.id, i.title, i.description, i.author_id, i.tags, i.vote_count,
        i.created_at, i.updated_at,
        u.username, u.email, u.is_admin, u.created_at AS user_created_at
    FROM ideas i
    LEFT JOIN users u ON i.author_id = u.id
"""

# upvotes - downvotes, recomputed from the ballots themselves
SYNC_VOTE_COUNT = """
    UPDATE ideas SET vote_count = (
        SELECT COUNT(CASE WHEN vote_type = 'upvote' THEN 1 END)
             - COUNT(CASE WHEN vote_type = 'downvote' THEN 1 END)
        FROM votes
        WHERE idea_id = $1
    )
    WHERE id = $1
"""


def parse_tags(raw) -> List[str]:
    if isinstance(raw, list):
        return raw
    try:
        tags = json.loads(raw or "[]")
    except ValueError:
        return []
    return tags if isinstance(tags, list) else []


def row_to_idea(row: dict) -> IdeaOut:
    author = None
    if row.get("username"):
        author = UserPublic(
            id=row["author_id"],
            username=row["username"],
            email=row["email"],
            is_admin=row["is_admin"],
            created_at=row["user_created_at"],
        )
    return IdeaOut(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        author_id=row["author_id"],
        author=author,
        tags=parse_tags(row["tags"]),
        vote_count=row["vote_count"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class IdeaRepository:
    def __init__(self, db: Queryable):
        self.db = db

    async def create(self, data: IdeaCreate, author_id: int) -> IdeaOut:
        invalid = validate_tags(data.tags)
        if invalid:
            raise InvalidTagsError(invalid)

        row = await self.db.insert_and_fetch(
            "ideas",
            {
                "title": data.title,
                "description": data.description,
                "author_id": author_id,
                "tags": json.dumps(data.tags),
            },
        )
        return row_to_idea(row)

    async def find_by_id(self, idea_id: int, include_author: bool = True) -> Optional[IdeaOut]:
        if include_author:
            sql = IDEA_WITH_AUTHOR + " WHERE i.id = $1"
        else:
            sql = "SELECT * FROM ideas WHERE id = $1"
        row = (await self.db.query(sql, [idea_id])).first()
        return row_to_idea(row) if row else None

    async def find_all(
        self,
        filters: Optional[IdeaFilters] = None,
        sort: Optional[IdeaSort] = None,
        pagination: Optional[Pagination] = None,
    ) -> IdeaPage:
        filters = filters or IdeaFilters()
        sort = sort or IdeaSort()
        pagination = pagination or Pagination()

        conditions: List[str] = []
        params: list = []

        def bind(value) -> str:
            params.append(value)
            return f"${len(params)}"

        if filters.tags:
            # any-of; the quotes keep "tech" from matching "technology"
            tag_matches = [f"i.tags LIKE {bind(f'%{json.dumps(tag)}%')}" for tag in filters.tags]
            conditions.append(f"({' OR '.join(tag_matches)})")

        if filters.author_id is not None:
            conditions.append(f"i.author_id = {bind(filters.author_id)}")

        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                f"(LOWER(i.title) LIKE {bind(pattern)} OR LOWER(i.description) LIKE {bind(pattern)})"
            )

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        direction = sort.sort_order.upper()
        order_by = f"ORDER BY {SORT_COLUMNS[sort.sort_by]} {direction}, i.id {direction}"

        count = await self.db.query(f"SELECT COUNT(*) AS total FROM ideas i {where}", params)
        total = int(count.first()["total"])

        offset = (pagination.page - 1) * pagination.limit
        limit_marker = bind(pagination.limit)
        offset_marker = bind(offset)
        result = await self.db.query(
            f"{IDEA_WITH_AUTHOR} {where} {order_by} LIMIT {limit_marker} OFFSET {offset_marker}",
            params,
        )

        return IdeaPage(
            ideas=[row_to_idea(row) for row in result.rows],
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=math.ceil(total / pagination.limit),
        )

    async def find_by_author(
        self,
        author_id: int,
        sort: Optional[IdeaSort] = None,
        pagination: Optional[Pagination] = None,
    ) -> IdeaPage:
        return await self.find_all(
            IdeaFilters(author_id=author_id),
            sort or IdeaSort(sort_by="date", sort_order="desc"),
            pagination,
        )

    async def update(self, idea_id: int, updates: IdeaUpdate) -> Optional[IdeaOut]:
        values = updates.model_dump(exclude_none=True)
        if not values:
            return await self.find_by_id(idea_id)

        if "tags" in values:
            invalid = validate_tags(values["tags"])
            if invalid:
                raise InvalidTagsError(invalid)
            values["tags"] = json.dumps(values["tags"])

        row = await self.db.update_and_fetch(
            "ideas",
            {"id": idea_id},
            values=values,
            expressions={"updated_at": "CURRENT_TIMESTAMP"},
        )
        return row_to_idea(row) if row else None

    async def delete(self, idea_id: int) -> bool:
        result = await self.db.query("DELETE FROM ideas WHERE id = $1", [idea_id])
        return result.row_count > 0

    async def exists(self, idea_id: int) -> bool:
        result = await self.db.query("SELECT 1 AS found FROM ideas WHERE id = $1", [idea_id])
        return bool(result.rows)

    async def get_author_id(self, idea_id: int) -> Optional[int]:
        row = (await self.db.query("SELECT author_id FROM ideas WHERE id = $1", [idea_id])).first()
        return row["author_id"] if row else None

    async def sync_vote_count(self, idea_id: int) -> None:
        """Bring ``ideas.vote_count`` back in line with the votes table."""
        await self.db.query(SYNC_VOTE_COUNT, [idea_id])
