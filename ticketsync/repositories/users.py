from __future__ import annotations

from typing import Any, Iterable

from ticketsync.core.database import db
from ticketsync.repositories._rows import coerce_ints

UserRecord = dict[str, Any]


def _normalise_user(row: dict[str, Any]) -> UserRecord:
    record = dict(row)
    coerce_ints(record, ("id",))
    record["is_blocked"] = bool(record.get("is_blocked"))
    if record.get("email"):
        record["email"] = str(record["email"]).strip()
    return record


async def get_user_by_id(user_id: int) -> UserRecord | None:
    row = await db.fetch_one("SELECT * FROM users WHERE id = %s", (user_id,))
    return _normalise_user(row) if row else None


async def list_users_by_types(user_types: Iterable[str]) -> list[UserRecord]:
    """Users whose ``user_type`` is one of ``user_types``, in id order."""

    types = [getattr(value, "value", value) for value in user_types]
    if not types:
        return []
    placeholders = ", ".join(["%s"] * len(types))
    rows = await db.fetch_all(
        f"SELECT * FROM users WHERE user_type IN ({placeholders}) ORDER BY id",
        tuple(types),
    )
    return [_normalise_user(row) for row in rows]


async def find_users_mentioned_in(identity: str) -> list[UserRecord]:
    """Users whose email appears, case-insensitively, inside ``identity``.

    Tracker identities look like ``"Jane Doe <jane@example.com>"``.
    """
    if not identity:
        return []
    rows = await db.fetch_all(
        "SELECT * FROM users WHERE INSTR(LOWER(%s), LOWER(email)) > 0 ORDER BY id",
        (identity,),
    )
    return [_normalise_user(row) for row in rows]


async def create_user(
    *,
    email: str,
    username: str,
    name: str = "",
    surname: str = "",
    user_type: str = "User",
    is_blocked: bool = False,
) -> UserRecord:
    user_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO users (email, username, name, surname, user_type, is_blocked)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (email, username, name, surname, getattr(user_type, "value", user_type), int(is_blocked)),
    )
    return _normalise_user(
        {
            "id": user_id,
            "email": email,
            "username": username,
            "name": name,
            "surname": surname,
            "user_type": getattr(user_type, "value", user_type),
            "is_blocked": is_blocked,
        }
    )
