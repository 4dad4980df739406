from __future__ import annotations

from opsportal.persistence.store import DirectoryStore


_store: DirectoryStore | None = None


def get_store() -> DirectoryStore:
    # One shared store per process; handlers receive it through dependency injection.
    global _store
    if _store is None:
        _store = DirectoryStore()
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.dispose()
        _store = None
