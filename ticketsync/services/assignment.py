"""Least-loaded operator selection for newly created tickets."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from ticketsync.core.logging import log_debug
from ticketsync.repositories import platforms as platforms_repo
from ticketsync.repositories import tickets as tickets_repo
from ticketsync.repositories import users as users_repo
from ticketsync.schemas.enums import STAFF_TYPES


def select_least_loaded(candidates: Sequence[int], workloads: Mapping[int, int]) -> int | None:
    """Pick the candidate with the fewest open tickets; the earliest one wins ties."""

    chosen: int | None = None
    lowest: int | None = None
    for candidate in candidates:
        if not candidate:
            continue
        load = workloads.get(candidate, 0)
        if lowest is None or load < lowest:
            chosen = candidate
            lowest = load
    return chosen


class AutoAssignmentEngine:
    """Recommends an operator for a ticket without changing any state."""

    def __init__(
        self,
        *,
        tickets=tickets_repo,
        users=users_repo,
        platforms=platforms_repo,
    ) -> None:
        self._tickets = tickets
        self._users = users
        self._platforms = platforms

    async def operator_pool(self) -> list[dict[str, Any]]:
        return await self._users.list_users_by_types(STAFF_TYPES)

    async def recommend(
        self, platform_id: int, pool: Iterable[Mapping[str, Any]] | None = None
    ) -> int | None:
        if pool is None:
            pool = await self.operator_pool()
        staff_ids = {int(member["id"]) for member in pool}
        preferred = await self._platforms.list_preferred_user_ids(platform_id)
        candidates = [user_id for user_id in preferred if user_id and user_id in staff_ids]
        if not candidates:
            log_debug("No preferred operators for platform", platform_id=platform_id)
            return None
        workloads = await self._tickets.count_open_tickets_by_operator(candidates)
        chosen = select_least_loaded(candidates, workloads)
        log_debug(
            "Auto-assignment recommendation",
            platform_id=platform_id,
            candidates=candidates,
            chosen=chosen,
        )
        return chosen
