from __future__ import annotations

import asyncio

import pytest

from opsportal.core.errors import ConflictError, NotFoundError, ValidationError
from opsportal.services.auth.sessions import Principal
from opsportal.services.status_workflow import StatusDefinition, StatusWorkflowEngine, normalize_code
from opsportal.tests.utils.directory import seed_team


DEFAULTS = [
    {"name": "Open", "code": "open", "is_default": True},
    {"name": "In Review", "code": "in  review"},
]


def test_normalize_code() -> None:
    assert normalize_code("  in  review ") == "IN_REVIEW"
    assert normalize_code("closed") == "CLOSED"


@pytest.mark.asyncio
async def test_define_defaults_once(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)

    created = await engine.define_defaults(team.id, DEFAULTS)
    assert [row.code for row in created] == ["OPEN", "IN_REVIEW"]
    assert [row.order for row in created] == [0, 1]

    with pytest.raises(ConflictError):
        await engine.define_defaults(team.id, [{"name": "Other", "code": "other"}])
    statuses = await engine.list_statuses(team.id)
    assert [(row.code, row.is_default) for row in statuses] == [("OPEN", True), ("IN_REVIEW", False)]


@pytest.mark.asyncio
async def test_define_defaults_validation(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    with pytest.raises(ValidationError):
        await engine.define_defaults(team.id, [])
    with pytest.raises(ValidationError):
        await engine.define_defaults(team.id, [{"name": "", "code": "x"}])
    with pytest.raises(ValidationError):
        await engine.define_defaults(
            team.id,
            [
                StatusDefinition(name="A", code="a", is_default=True),
                StatusDefinition(name="B", code="b", is_default=True),
            ],
        )
    with pytest.raises(ConflictError) as exc_info:
        await engine.define_defaults(team.id, [{"name": "A", "code": "in review"}, {"name": "B", "code": "IN_REVIEW"}])
    assert exc_info.value.details["status_code"] == "IN_REVIEW"
    with pytest.raises(NotFoundError):
        await engine.define_defaults("missing", DEFAULTS)
    assert await engine.list_statuses(team.id) == []


@pytest.mark.asyncio
async def test_define_defaults_without_default_leaves_none(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    await engine.define_defaults(team.id, [{"name": "Open", "code": "open"}])
    assert await engine.get_default_status(team.id) is None
    record = await engine.open_record(team.id, "Gate left open")
    assert record.status_id is None


@pytest.mark.asyncio
async def test_create_status_moves_default(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    await engine.define_defaults(team.id, DEFAULTS)

    with pytest.raises(ConflictError) as exc_info:
        await engine.create_status(team.id, {"name": "Open again", "code": "OPEN"})
    assert exc_info.value.code == "STATUS_CODE_EXISTS"

    closed = await engine.create_status(team.id, {"name": "Closed", "code": "closed", "is_default": True})
    assert closed.order == 2
    default = await engine.get_default_status(team.id)
    assert default.id == closed.id
    defaults = [row for row in await engine.list_statuses(team.id) if row.is_default]
    assert len(defaults) == 1


@pytest.mark.asyncio
async def test_concurrent_default_creation_keeps_one_default(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)

    await asyncio.gather(
        *(
            engine.create_status(team.id, {"name": f"S{index}", "code": f"s{index}", "is_default": True})
            for index in range(5)
        )
    )
    statuses = await engine.list_statuses(team.id)
    assert len(statuses) == 5
    assert sum(1 for row in statuses if row.is_default) == 1


@pytest.mark.asyncio
async def test_update_and_delete_status(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    open_status, review = await engine.define_defaults(team.id, DEFAULTS)

    with pytest.raises(ValidationError):
        await engine.update_status(team.id, review.id, {"code": "NEW"})
    updated = await engine.update_status(team.id, review.id, {"name": "Reviewing", "is_default": True})
    assert updated.name == "Reviewing"
    assert (await engine.get_default_status(team.id)).id == review.id

    with pytest.raises(ValidationError):
        await engine.delete_status(team.id, review.id)

    record = await engine.open_record(team.id, "Missing vest")
    await engine.transition(record.id, open_status.id, "reopened", team_id=team.id)
    with pytest.raises(ConflictError) as exc_info:
        await engine.delete_status(team.id, open_status.id)
    assert exc_info.value.code == "STATUS_IN_USE"

    with pytest.raises(NotFoundError):
        await engine.delete_status(team.id, "missing")


@pytest.mark.asyncio
async def test_transition_appends_history(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    open_status, review = await engine.define_defaults(team.id, DEFAULTS)
    record = await engine.open_record(team.id, "No hard hat", severity="low")
    assert record.status_id == open_status.id
    assert record.severity == "LOW"
    actor = Principal(user_id="u1", email="ana@example.com", name="Ana")

    first = await engine.transition(record.id, review.id, "  looking  ", "high", actor)
    snapshot = list(first.comments)
    assert snapshot[0]["text"] == "looking"
    assert snapshot[0]["user"] == "Ana"
    assert snapshot[0]["statusFrom"] == open_status.id
    assert snapshot[0]["statusTo"] == review.id
    assert snapshot[0]["timestamp"].endswith("Z")
    assert first.severity == "HIGH"

    second = await engine.transition(
        record.id, open_status.id, "back", "urgent", Principal(user_id="u2", email="bo@example.com", name=None)
    )
    assert len(second.comments) == 2
    assert second.comments[0] == snapshot[0]
    assert second.comments[1]["user"] == "bo@example.com"
    # Unknown severities are ignored.
    assert second.severity == "HIGH"

    third = await engine.transition(record.id, review.id, "again")
    assert third.comments[2]["user"] == "Unknown User"
    assert await engine.history(record.id) == third.comments


@pytest.mark.asyncio
async def test_transition_from_no_status_records_null(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    record = await engine.open_record(team.id, "Fence down")
    status = await engine.create_status(team.id, {"name": "Open", "code": "open"})
    updated = await engine.transition(record.id, status.id, "triaged")
    assert updated.comments[0]["statusFrom"] == "null"


@pytest.mark.asyncio
async def test_empty_comment_rejected_without_change(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    open_status, review = await engine.define_defaults(team.id, DEFAULTS)
    record = await engine.open_record(team.id, "Gloves missing")

    for comment in ("", "   ", None):
        with pytest.raises(ValidationError):
            await engine.transition(record.id, review.id, comment)
    assert await engine.history(record.id) == []
    [reloaded] = await engine.list_records(team.id)
    assert reloaded.status_id == open_status.id


@pytest.mark.asyncio
async def test_transition_rejects_foreign_status_and_scope(store) -> None:
    team = await seed_team(store)
    other = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    await engine.define_defaults(team.id, DEFAULTS)
    [foreign, _] = await engine.define_defaults(other.id, DEFAULTS)
    record = await engine.open_record(team.id, "Ladder unsecured")

    with pytest.raises(NotFoundError):
        await engine.transition(record.id, foreign.id, "move")
    with pytest.raises(NotFoundError):
        await engine.transition("missing", foreign.id, "move")
    with pytest.raises(NotFoundError):
        await engine.transition(record.id, foreign.id, "move", team_id=other.id)
    assert await engine.history(record.id) == []


@pytest.mark.asyncio
async def test_concurrent_transitions_append_every_entry(store) -> None:
    team = await seed_team(store)
    engine = StatusWorkflowEngine(store)
    open_status, review = await engine.define_defaults(team.id, DEFAULTS)
    record = await engine.open_record(team.id, "Spill")

    await asyncio.gather(
        *(
            engine.transition(record.id, review.id if index % 2 else open_status.id, f"step {index}")
            for index in range(6)
        )
    )
    history = await engine.history(record.id)
    assert sorted(entry["text"] for entry in history) == [f"step {index}" for index in range(6)]
