"""Caller identity for the REST and webhook surfaces.

Authentication happens upstream (reverse proxy or gateway); by the time a
request arrives here the authenticated user id sits in a trusted header.
Tracker webhooks authenticate with HTTP Basic credentials instead.
"""
from __future__ import annotations

import hmac
from typing import Iterable, Mapping

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ticketsync.core.config import get_settings
from ticketsync.core.logging import log_warning
from ticketsync.repositories import users as user_repo
from ticketsync.schemas.enums import STAFF_TYPES, UserType

_webhook_basic = HTTPBasic(auto_error=False)

USER_TOPIC_PREFIX = "user_"


def caller_id_from_headers(headers: Mapping[str, str]) -> int | None:
    raw_value = (headers.get(get_settings().identity_header) or "").strip()
    try:
        return int(raw_value)
    except ValueError:
        return None


def topics_denied_to(caller_id: int | None, topics: Iterable[str]) -> list[str]:
    """Personal ``user_{id}`` topics in ``topics`` that do not belong to the caller."""

    own_topic = f"{USER_TOPIC_PREFIX}{caller_id}" if caller_id is not None else None
    denied = []
    for topic in topics:
        cleaned = topic.strip().lower()
        if cleaned.startswith(USER_TOPIC_PREFIX) and cleaned != own_topic:
            denied.append(cleaned)
    return denied


async def get_current_user(request: Request) -> dict:
    user_id = caller_id_from_headers(request.headers)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    user = await user_repo.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.get("is_blocked"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")
    return user


def is_staff(user: dict) -> bool:
    try:
        return UserType(user.get("user_type")) in STAFF_TYPES
    except ValueError:
        return False


async def require_operator_or_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if not is_staff(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator or admin privileges required",
        )
    return current_user


async def require_webhook_credentials(
    credentials: HTTPBasicCredentials | None = Depends(_webhook_basic),
) -> None:
    settings = get_settings()
    expected_user = settings.webhook_username or ""
    expected_password = settings.webhook_password or ""
    if not expected_user or not expected_password:
        log_warning("Rejecting webhook call; webhook credentials are not configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Webhook authentication failed")
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook authentication failed",
            headers={"WWW-Authenticate": "Basic"},
        )
    user_ok = hmac.compare_digest(credentials.username.encode(), expected_user.encode())
    password_ok = hmac.compare_digest(credentials.password.encode(), expected_password.encode())
    if not (user_ok and password_ok):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook authentication failed",
            headers={"WWW-Authenticate": "Basic"},
        )
