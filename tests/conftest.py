# tests/conftest.py
import asyncio
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jose import jwt

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import settings  # noqa: E402
from app.database import create_executor  # noqa: E402
from app.schemas.idea import IdeaCreate  # noqa: E402
from app.schemas.user import UserCreate  # noqa: E402
from app.services.ideas import IdeaRepository  # noqa: E402
from app.services.users import UserRepository  # noqa: E402

settings.ENVIRONMENT = "test"


@pytest.fixture
def database_url(tmp_path):
    """Temporary SQLite file, one per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'ideas.db'}"


@pytest.fixture
def run_db(database_url):
    """Run ``scenario(executor)`` against a fresh database inside its own event loop."""

    def runner(scenario):
        async def main():
            executor = create_executor(database_url)
            await executor.create_schema()
            try:
                return await scenario(executor)
            finally:
                await executor.dispose()

        return asyncio.run(main())

    return runner


async def make_user(executor, name: str):
    return await UserRepository(executor).create(
        UserCreate(username=name, email=f"{name}@example.com", password_hash="not-a-real-hash")
    )


async def make_idea(executor, author_id: int, title: str = "Better coffee machine", tags=None):
    return await IdeaRepository(executor).create(
        IdeaCreate(
            title=title,
            description="Replace the office kettle with a proper espresso machine.",
            tags=tags if tags is not None else ["improvement"],
        ),
        author_id=author_id,
    )


async def seed(executor, voters: int = 2):
    """One author, ``voters`` other users, and one idea owned by the author."""
    author = await make_user(executor, "author")
    voter_list = [await make_user(executor, f"voter{n}") for n in range(1, voters + 1)]
    idea = await make_idea(executor, author.id)
    return author, voter_list, idea


def auth_header(user_id: int) -> dict:
    token = jwt.encode({"sub": str(user_id)}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(database_url, monkeypatch):
    """TestClient whose lifespan builds its executor on the temporary database."""
    monkeypatch.setattr(settings, "DATABASE_URL", database_url)
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
