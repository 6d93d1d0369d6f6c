"""match_etl.crossref

Cross-reference checks for an event's team and player against the match
it is recorded on.
"""

from __future__ import annotations

from match_etl.shared import AmbiguousMatchError, ReferentialIntegrityError

TEAM_NOT_IN_MATCH = "Team does not belong to this match."
PLAYER_NOT_ASSIGNED = "Player is not assigned to this match."
PLAYER_AMBIGUOUS = "Player is assigned to more than one team in this match."
ASSIGNMENT_MISMATCH = "Player assignment does not match the provided team."


def resolve_event_team(
    store,
    match_id: str,
    team_id: str | None,
    player_id: str | None,
) -> str | None:
    """Return the effective team id for an event, or raise.

    - team given: it must be owned by the match
    - player given: exactly one of the match's teams must have them assigned
    - both given: the assignment team must be the given team
    - player only: the assignment team becomes the event's team
    """
    if team_id:
        team = store.find_team(team_id)
        if team is None or team.match_id != match_id:
            raise ReferentialIntegrityError(TEAM_NOT_IN_MATCH)

    if not player_id:
        return team_id or None

    try:
        assigned_team_id = store.find_assignment(player_id, match_id)
    except AmbiguousMatchError:
        raise ReferentialIntegrityError(PLAYER_AMBIGUOUS) from None
    if assigned_team_id is None:
        raise ReferentialIntegrityError(PLAYER_NOT_ASSIGNED)

    if not team_id:
        return assigned_team_id
    if team_id != assigned_team_id:
        raise ReferentialIntegrityError(ASSIGNMENT_MISMATCH)
    return team_id
