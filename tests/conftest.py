from unittest.mock import AsyncMock, patch

import httpx
import pytest
from httpx import ASGITransport

TOKENS = {"good-token": "user-1", "other-token": "user-2"}


@pytest.fixture
def mock_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "donotstay.db"))
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("INTERNAL_API_KEY", "relay-secret")


@pytest.fixture
def llm():
    """Replaces the Claude call; tests set return_value to an LLMCompletion."""
    with patch("app.services.claude.ClaudeService.complete", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
async def client(mock_env, llm):
    from app.main import app, lifespan

    async def _resolve(token):
        return TOKENS.get(token)

    async with lifespan(app):
        # No real Supabase lookups in integration tests
        with patch("app.services.identity.SupabaseIdentityService.resolve", new=AsyncMock(side_effect=_resolve)):
            async with httpx.AsyncClient(
                transport=ASGITransport(app=app),
                base_url="http://test",
            ) as c:
                yield c
