"""Translate Azure DevOps service hook events into ticket lifecycle calls.

Every lifecycle call made from here runs with ``sync_tracker=False``: the
change originated in the tracker, so pushing it back would echo. Events caused
by our own writes are recognised by the service principal in the actor field
and acknowledged without any change.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from ticketsync.core.config import Settings, get_settings
from ticketsync.core.errors import ConflictError, NotFoundError, ValidationError
from ticketsync.core.logging import log_info, log_warning
from ticketsync.repositories import platforms as platforms_repo
from ticketsync.repositories import tickets as tickets_repo
from ticketsync.repositories import users as users_repo
from ticketsync.schemas.tickets import TicketChanges, TicketDraft
from ticketsync.schemas.webhooks import WorkItemEvent
from ticketsync.services.field_mapping import (
    priority_from_tracker,
    status_from_tracker,
    type_from_tracker,
)
from ticketsync.services.sanitization import sanitize_description_within
from ticketsync.services.tickets import TicketLifecycleService, lifecycle_service

CREATED_DATE = "System.CreatedDate"
CREATED_BY = "System.CreatedBy"
CHANGED_BY = "System.ChangedBy"
ASSIGNED_TO = "System.AssignedTo"
TEAM_PROJECT = "System.TeamProject"
WORK_ITEM_TYPE = "System.WorkItemType"
TITLE = "System.Title"
DESCRIPTION = "System.Description"
PRIORITY = "Microsoft.VSTS.Common.Priority"
STATE = "System.State"

_REQUIRED_CREATED = (CREATED_DATE, CREATED_BY, TEAM_PROJECT, WORK_ITEM_TYPE, TITLE, PRIORITY, STATE)
_REQUIRED_UPDATED = (CHANGED_BY, TEAM_PROJECT, WORK_ITEM_TYPE, TITLE, PRIORITY, STATE)
_REQUIRED_DELETED = (CHANGED_BY,)

_EMAIL_IN_IDENTITY = re.compile(r"<(?P<email>[^<>]+?)>")

TITLE_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 5000


class WebhookStatus(str, Enum):
    IGNORED = "ignored"
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(slots=True)
class WebhookResult:
    status: WebhookStatus
    ticket_id: int | None = None


def _field_value(raw: Any) -> Any:
    """Unwrap update payload pairs (``{"oldValue", "newValue"}``) and identity objects."""

    if isinstance(raw, Mapping):
        if "newValue" in raw:
            return _field_value(raw.get("newValue"))
        if "uniqueName" in raw or "displayName" in raw:
            display = str(raw.get("displayName") or "").strip()
            unique = str(raw.get("uniqueName") or "").strip()
            return f"{display} <{unique}>" if unique else display
    return raw


def extract_fields(event: WorkItemEvent) -> dict[str, Any]:
    """Merge revision fields under the top-level resource fields."""

    merged: dict[str, Any] = {}
    revision = event.resource.revision or {}
    revision_fields = revision.get("fields") if isinstance(revision, Mapping) else None
    if isinstance(revision_fields, Mapping):
        merged.update({key: _field_value(value) for key, value in revision_fields.items()})
    merged.update({key: _field_value(value) for key, value in event.resource.fields.items()})
    return merged


def work_item_id_of(event: WorkItemEvent) -> int | None:
    return event.resource.work_item_id or event.resource.id


def email_in_identity(identity: str) -> str | None:
    match = _EMAIL_IN_IDENTITY.search(identity or "")
    return match.group("email").strip() if match else None


def _require(fields: Mapping[str, Any], names: tuple[str, ...], work_item_id: int | None) -> None:
    missing = [name for name in names if fields.get(name) in (None, "")]
    if not work_item_id:
        missing.insert(0, "resource.id")
    if missing:
        raise ValidationError(f"Webhook payload is missing required fields: {', '.join(missing)}")


class WebhookSyncAdapter:
    def __init__(
        self,
        *,
        lifecycle: TicketLifecycleService | None = None,
        tickets=tickets_repo,
        users=users_repo,
        platforms=platforms_repo,
        settings: Settings | None = None,
    ) -> None:
        self._lifecycle = lifecycle or lifecycle_service
        self._tickets = tickets
        self._users = users
        self._platforms = platforms
        self._settings = settings or get_settings()

    def is_self_echo(self, actor: Any) -> bool:
        principal = (self._settings.webhook_service_principal or "").strip().lower()
        if not principal:
            return False
        return principal in str(actor or "").lower()

    async def resolve_user(self, identity: Any) -> dict[str, Any]:
        identity = str(identity or "").strip()
        matches = await self._users.find_users_mentioned_in(identity)
        if len(matches) > 1:
            email = email_in_identity(identity)
            if email:
                matches = [user for user in matches if user["email"].lower() == email.lower()]
        if len(matches) != 1:
            raise ValidationError(
                f"Unable to resolve a single user for identity {identity!r} ({len(matches)} matches)"
            )
        return matches[0]

    async def resolve_platform(self, project: Any) -> dict[str, Any]:
        platforms = await self._platforms.list_platforms_by_name(str(project or "").strip())
        if len(platforms) != 1:
            raise ValidationError(
                f"Unable to resolve a single platform for project {project!r} ({len(platforms)} matches)"
            )
        return platforms[0]

    def _title(self, fields: Mapping[str, Any]) -> str:
        title = str(fields.get(TITLE) or "").strip()
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Work item title exceeds {TITLE_MAX_LENGTH} characters")
        return title

    async def _description(self, fields: Mapping[str, Any], work_item_id: int) -> str:
        description = await sanitize_description_within(fields.get(DESCRIPTION))
        if len(description) > DESCRIPTION_MAX_LENGTH:
            log_warning(
                "Truncating work item description",
                work_item_id=work_item_id,
                length=len(description),
            )
            description = description[:DESCRIPTION_MAX_LENGTH]
        return description

    async def handle_created(self, event: WorkItemEvent) -> WebhookResult:
        fields = extract_fields(event)
        work_item_id = work_item_id_of(event)
        _require(fields, _REQUIRED_CREATED, work_item_id)

        if self.is_self_echo(fields[CREATED_BY]):
            log_info("Ignoring work item created by this service", work_item_id=work_item_id)
            return WebhookResult(WebhookStatus.IGNORED)
        if await self._tickets.get_ticket_by_work_item(work_item_id):
            raise ConflictError(f"Work item {work_item_id} is already linked to a ticket")

        creator = await self.resolve_user(fields[CREATED_BY])
        platform = await self.resolve_platform(fields[TEAM_PROJECT])
        draft = TicketDraft(
            ticket_type=type_from_tracker(fields[WORK_ITEM_TYPE]),
            title=self._title(fields),
            description=await self._description(fields, work_item_id),
            priority=priority_from_tracker(fields[PRIORITY]),
            platform_id=platform["id"],
            creator_user_id=creator["id"],
            work_item_id=work_item_id,
        )
        result = await self._lifecycle.create_ticket(draft, sync_tracker=False)
        log_info(
            "Ticket created from work item",
            work_item_id=work_item_id,
            ticket_id=result.ticket["id"],
        )
        return WebhookResult(WebhookStatus.CREATED, result.ticket["id"])

    async def handle_updated(self, event: WorkItemEvent) -> WebhookResult:
        fields = extract_fields(event)
        work_item_id = work_item_id_of(event)
        _require(fields, _REQUIRED_UPDATED, work_item_id)

        if self.is_self_echo(fields[CHANGED_BY]):
            log_info("Ignoring work item update made by this service", work_item_id=work_item_id)
            return WebhookResult(WebhookStatus.IGNORED)
        ticket = await self._tickets.get_ticket_by_work_item(work_item_id)
        if not ticket:
            raise NotFoundError(f"No ticket is linked to work item {work_item_id}")

        editor = await self.resolve_user(fields[CHANGED_BY])
        platform = await self.resolve_platform(fields[TEAM_PROJECT])
        operator_id = None
        if fields.get(ASSIGNED_TO):
            operator_id = (await self.resolve_user(fields[ASSIGNED_TO]))["id"]

        changes = TicketChanges(
            ticket_type=type_from_tracker(fields[WORK_ITEM_TYPE]),
            title=self._title(fields),
            description=await self._description(fields, work_item_id),
            priority=priority_from_tracker(fields[PRIORITY]),
            status=status_from_tracker(fields[STATE]),
            platform_id=platform["id"],
            operator_user_id=operator_id,
        )
        await self._lifecycle.update_ticket(
            ticket["id"],
            changes,
            editor["id"],
            expected_version=ticket["version"],
            sync_tracker=False,
        )
        return WebhookResult(WebhookStatus.UPDATED, ticket["id"])

    async def handle_deleted(self, event: WorkItemEvent) -> WebhookResult:
        fields = extract_fields(event)
        work_item_id = work_item_id_of(event)
        _require(fields, _REQUIRED_DELETED, work_item_id)

        if self.is_self_echo(fields[CHANGED_BY]):
            log_info("Ignoring work item deletion made by this service", work_item_id=work_item_id)
            return WebhookResult(WebhookStatus.IGNORED)
        ticket = await self._tickets.get_ticket_by_work_item(work_item_id)
        if not ticket:
            raise NotFoundError(f"No ticket is linked to work item {work_item_id}")

        await self._lifecycle.delete_ticket(ticket["id"], sync_tracker=False)
        return WebhookResult(WebhookStatus.DELETED, ticket["id"])


webhook_adapter = WebhookSyncAdapter()
