from __future__ import annotations

from typing import Any

from ticketsync.core.database import db
from ticketsync.repositories._rows import coerce_ints

PlatformRecord = dict[str, Any]


def _normalise_platform(row: dict[str, Any]) -> PlatformRecord:
    record = dict(row)
    coerce_ints(record, ("id",))
    return record


async def get_platform(platform_id: int) -> PlatformRecord | None:
    row = await db.fetch_one("SELECT * FROM platforms WHERE id = %s", (platform_id,))
    return _normalise_platform(row) if row else None


async def list_platforms_by_name(name: str) -> list[PlatformRecord]:
    rows = await db.fetch_all(
        "SELECT * FROM platforms WHERE name = %s ORDER BY id", (name,)
    )
    return [_normalise_platform(row) for row in rows]


async def create_platform(*, name: str, repository_url: str = "") -> PlatformRecord:
    platform_id = await db.execute_returning_lastrowid(
        "INSERT INTO platforms (name, repository_url) VALUES (%s, %s)",
        (name, repository_url),
    )
    return {"id": platform_id, "name": name, "repository_url": repository_url}


async def list_preferred_user_ids(platform_id: int) -> list[int]:
    """Users that marked ``platform_id`` as preferred, in the order they did so."""

    rows = await db.fetch_all(
        "SELECT user_id FROM user_platforms WHERE platform_id = %s ORDER BY id",
        (platform_id,),
    )
    return [int(row["user_id"]) for row in rows]


async def add_preferred_platform(user_id: int, platform_id: int) -> None:
    await db.execute(
        "INSERT INTO user_platforms (user_id, platform_id) VALUES (%s, %s)",
        (user_id, platform_id),
    )
