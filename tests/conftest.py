"""Test-specific fixtures."""

import os

import pytest

from reviewsync.config import reset_settings
from reviewsync.db import core as db_core

TEST_JWT_SECRET = "test-secret-key-for-unit-tests-only"


@pytest.fixture(autouse=True, scope="session")
def _lock_test_env():
    """Deterministic, network-free configuration for every test."""
    os.environ["ENV"] = "test"
    os.environ["JWT_SECRET"] = TEST_JWT_SECRET
    os.environ["OAUTH_STATE_SECRET"] = "test-state-secret"
    os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
    os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
    os.environ["GOOGLE_REDIRECT_URI"] = "http://testserver/v1/google/auth/callback"
    os.environ["SETTINGS_URL"] = "http://dashboard.test/settings"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["OPENAI_API_KEY"] = "test"
    os.environ.pop("GOOGLE_MOCK_POST", None)
    os.environ.pop("TOKENS_ENCRYPTION_KEY", None)
    os.environ.pop("BUSINESS_TIMEZONE", None)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
async def db():
    """Fresh in-memory database for one test."""
    db_core.configure_engine("sqlite+aiosqlite:///:memory:")
    await db_core.init_models()
    yield
    await db_core.dispose_engine()
