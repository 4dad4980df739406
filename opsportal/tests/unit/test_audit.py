from __future__ import annotations

import pytest

from opsportal.core.errors import UnavailableError
from opsportal.services.audit import list_events, record_event, sanitize_metadata
from opsportal.tests.utils.directory import seed_team


def test_sanitize_metadata_redacts_nested_keys() -> None:
    sanitized = sanitize_metadata(
        {
            "Authorization": "Bearer opss_x",
            "status_id": "s1",
            "nested": {"comment": "private", "items": [{"api_token": "t", "ok": 1}]},
        }
    )
    assert sanitized == {
        "Authorization": "[REDACTED]",
        "status_id": "s1",
        "nested": {"comment": "[REDACTED]", "items": [{"api_token": "[REDACTED]", "ok": 1}]},
    }


def test_free_text_keys_match_by_exact_name() -> None:
    sanitized = sanitize_metadata({"context": "api", "text": "note", "Comment": "c", "history_length": 2})
    assert sanitized == {"context": "api", "text": "[REDACTED]", "Comment": "[REDACTED]", "history_length": 2}


@pytest.mark.asyncio
async def test_record_and_list_events_per_team(store) -> None:
    team = await seed_team(store)
    other = await seed_team(store)
    await record_event(store, team_id=team.id, actor_id="u1", event_type="license.purchased", metadata={"n": 1})
    await record_event(store, team_id=team.id, actor_id="u1", event_type="alert.status_changed")
    await record_event(store, team_id=other.id, actor_id="u2", event_type="license.purchased")

    events = await list_events(store, team.id)
    assert {event.event_type for event in events} == {"license.purchased", "alert.status_changed"}
    assert all(event.team_id == team.id for event in events)

    filtered = await list_events(store, team.id, event_type="license.purchased")
    assert [event.metadata_json for event in filtered] == [{"n": 1}]


@pytest.mark.asyncio
async def test_audit_can_be_disabled(store, monkeypatch) -> None:
    team = await seed_team(store)
    monkeypatch.setenv("AUDIT_ENABLED", "false")
    await record_event(store, team_id=team.id, actor_id=None, event_type="team.updated")
    assert await list_events(store, team.id) == []


@pytest.mark.asyncio
async def test_audit_write_failure_is_best_effort(store) -> None:
    team = await seed_team(store)
    await store.drop_schema()
    # Best-effort writes log and move on; strict writes surface the failure.
    await record_event(store, team_id=team.id, actor_id=None, event_type="team.updated")
    with pytest.raises(UnavailableError):
        await record_event(store, team_id=team.id, actor_id=None, event_type="team.updated", best_effort=False)
