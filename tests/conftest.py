import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no external API keys for tests
os.environ["DEEPGRAM_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["LLM_PROVIDER"] = "auto"
os.environ["LLM_TOOLKIT_URL"] = ""
os.environ["LLM_MODEL_FAST"] = ""
os.environ["LLM_MODEL_STANDARD"] = ""
os.environ["LLM_MODEL_HIGH"] = ""
os.environ["DUMMY_MODE"] = "false"
os.environ["DATABASE_PATH"] = ":memory:"

from beacon.database import close_db, init_db
from beacon.main import app
from beacon.services.session_store import SQLiteSessionStore


class ScriptedLLM:
    """Stands in for LLMClient: returns queued completions and records every prompt.

    Queue an Exception instance to have that call raise it.
    """

    provider = "scripted"

    def __init__(self, *responses, available: bool = True):
        self.responses = list(responses)
        self._available = available
        self.calls: list[dict] = []

    def available(self) -> bool:
        return self._available

    async def complete_text(self, *, system, user, max_tokens=2048, tier=None):
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens, "tier": tier})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import beacon.database as db_mod

    # Close any existing connection
    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest_asyncio.fixture
async def store(db):
    return SQLiteSessionStore(db)


@pytest.fixture
def client(db):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
