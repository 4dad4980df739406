from __future__ import annotations

from typing import AsyncIterator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from opsportal.apps.api.deps import get_directory_store
from opsportal.apps.api.main import create_app
from opsportal.core.config import get_settings
from opsportal.persistence.store import DirectoryStore


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    # Tests that monkeypatch env vars must see fresh settings.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def store(tmp_path) -> AsyncIterator[DirectoryStore]:
    # A file-backed SQLite database per test so concurrent connections share state.
    directory_store = DirectoryStore(f"sqlite+aiosqlite:///{tmp_path / 'directory.db'}")
    await directory_store.create_schema()
    yield directory_store
    await directory_store.dispose()


@pytest.fixture
async def client(store: DirectoryStore) -> AsyncIterator[AsyncClient]:
    app = create_app()
    app.dependency_overrides[get_directory_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
