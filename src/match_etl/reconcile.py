"""match_etl.reconcile

Team reconciliation for a match.

Given the team ids a match currently owns and the incoming team list of a
create/update payload, compute the full delete / update / create plan up
front, then apply it in that order inside the caller's atomic unit:

  1. any incoming id the match does not own   → reject, nothing applied
  2. owned ids not mentioned in the payload    → delete
  3. incoming descriptors with an owned id     → update
  4. incoming descriptors without an id        → create under the match

A create payload only creates: descriptor ids are ignored there.
An absent team list leaves the match's teams untouched.  This module is the
only code path that creates, updates or deletes teams.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace

from match_etl.normalize import Field
from match_etl.records import TeamInput
from match_etl.shared import ReferentialIntegrityError

log = logging.getLogger(__name__)

NOT_OWNED_MESSAGE = "One or more teams do not belong to this match."


@dataclass(frozen=True)
class TeamPlan:
    match_id: str
    to_delete: tuple[str, ...] = ()
    to_update: tuple[TeamInput, ...] = ()
    to_create: tuple[TeamInput, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.to_delete or self.to_update or self.to_create)


def plan_team_reconciliation(
    match_id: str,
    owned_ids: Iterable[str],
    incoming: Field[list[TeamInput]],
) -> TeamPlan | None:
    """Return the plan, or None when the payload carried no team list.

    Raises ReferentialIntegrityError before anything is planned if a
    descriptor names a team the match does not own, or names one twice.
    """
    if incoming.is_absent:
        return None

    owned = set(owned_ids)
    descriptors = list(incoming.value or [])

    referenced: set[str] = set()
    for team in descriptors:
        if team.id is None:
            continue
        if team.id not in owned:
            raise ReferentialIntegrityError(NOT_OWNED_MESSAGE)
        if team.id in referenced:
            raise ReferentialIntegrityError(f"Team {team.id} is listed more than once.")
        referenced.add(team.id)

    return TeamPlan(
        match_id=match_id,
        to_delete=tuple(sorted(owned - referenced)),
        to_update=tuple(t for t in descriptors if t.id is not None),
        to_create=tuple(t for t in descriptors if t.id is None),
    )


def plan_team_creation(
    match_id: str, incoming: Field[list[TeamInput]]
) -> TeamPlan | None:
    """Plan the initial teams of a new match.

    A new match owns nothing to update, so descriptor ids are dropped and
    every descriptor is created.
    """
    if incoming.is_absent or not incoming.value:
        return None
    return TeamPlan(
        match_id=match_id,
        to_create=tuple(replace(t, id=None) for t in incoming.value),
    )


def apply_team_plan(store, plan: TeamPlan) -> list[str]:
    """Apply a plan: deletes, then updates, then creates.

    Caller runs this inside store.run_atomic.  Returns the ids of created
    teams in payload order.
    """
    if plan.to_delete:
        store.delete_teams(plan.to_delete)
    for team in plan.to_update:
        store.update_team(team.id, team)
    created = [store.create_team(plan.match_id, team) for team in plan.to_create]

    log.info(
        "match %s teams reconciled: deleted=%d updated=%d created=%d",
        plan.match_id, len(plan.to_delete), len(plan.to_update), len(created),
    )
    return created
