"""
Pytest configuration and fixtures for datalayer tests.
"""

import pytest

from datalayer.client import DataClient
from datalayer.db.supabase_adapter import SupabaseProvider
from fakes import FakeSupabaseClient


@pytest.fixture
def fake_db():
    """Fresh in-memory Supabase client with the unique constraints of the schema."""
    db = FakeSupabaseClient()
    db.unique = {
        "organizations": ["slug", "domain"],
        "users": ["email"],
    }
    return db


@pytest.fixture
async def provider(fake_db):
    """Connected SupabaseProvider backed by the fake client."""

    async def factory():
        return fake_db

    prov = SupabaseProvider(client_factory=factory, default_page_size=20, subscribe_timeout=1.0)
    await prov.connect()
    yield prov
    await prov.disconnect()


@pytest.fixture
def client(provider):
    return DataClient(provider)


@pytest.fixture
def make_rows():
    def _make(count, **extra):
        return [{"title": f"row-{i:02d}", "position": i, "deleted_at": None, **extra} for i in range(count)]

    return _make
