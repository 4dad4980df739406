from __future__ import annotations


class TeamPredicateError(RuntimeError):
    # Surface queries that would run without a team scope.

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_team_id(team_id: str | None) -> None:
    # Every team-scoped query must carry a non-empty team id.
    if not team_id:
        raise TeamPredicateError("Team predicate required but team_id is missing")


def team_predicate(model, team_id: str) -> object:
    # Build team predicates through a single helper to guarantee scoping coverage.
    require_team_id(team_id)
    return model.team_id == team_id
