"""Ticket conversation replies, mirrored to work item comments."""
from __future__ import annotations

from typing import Any

from ticketsync.core.errors import NotFoundError, ValidationError
from ticketsync.core.logging import log_error
from ticketsync.repositories import platforms as platforms_repo
from ticketsync.repositories import replies as replies_repo
from ticketsync.repositories import tickets as tickets_repo
from ticketsync.repositories import users as users_repo
from ticketsync.services.realtime import realtime_publisher, ticket_topic
from ticketsync.services.tickets import TrackerSync
from ticketsync.services.tracker import (
    AzureDevOpsClient,
    TrackerAPIError,
    TrackerConfigurationError,
)

REPLY_CREATED_EVENT = "ReplyCreated"


class ReplyService:
    def __init__(
        self,
        *,
        replies=replies_repo,
        tickets=tickets_repo,
        users=users_repo,
        platforms=platforms_repo,
        tracker: AzureDevOpsClient | None = None,
        publisher=realtime_publisher,
    ) -> None:
        self._replies = replies
        self._tickets = tickets
        self._users = users
        self._platforms = platforms
        self._tracker = tracker or AzureDevOpsClient()
        self._publisher = publisher

    async def list_replies(self, ticket_id: int) -> list[dict[str, Any]]:
        if not await self._tickets.get_ticket(ticket_id):
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return await self._replies.list_replies(ticket_id)

    async def create_reply(
        self,
        ticket_id: int,
        author_id: int,
        message: str,
        *,
        sync_tracker: bool = True,
    ) -> tuple[dict[str, Any], TrackerSync]:
        ticket = await self._tickets.get_ticket(ticket_id)
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        author = await self._users.get_user_by_id(author_id)
        if not author:
            raise ValidationError(f"Author {author_id} does not exist")
        text = (message or "").strip()
        if not text:
            raise ValidationError("Reply message cannot be empty")

        reply = await self._replies.create_reply(
            ticket_id=ticket_id, author_user_id=author_id, message=text
        )
        await self._publisher.publish(
            ticket_topic(ticket_id),
            REPLY_CREATED_EVENT,
            {"id": reply["id"], "ticket_id": ticket_id, "author_user_id": author_id},
        )

        tracker_sync = TrackerSync.SKIPPED
        if sync_tracker and ticket.get("work_item_id") and self._tracker.is_configured():
            tracker_sync = await self._push_comment(ticket, author, text)
        return reply, tracker_sync

    async def _push_comment(
        self, ticket: dict[str, Any], author: dict[str, Any], message: str
    ) -> TrackerSync:
        platform = await self._platforms.get_platform(ticket["platform_id"])
        if not platform:
            return TrackerSync.SKIPPED
        author_name = " ".join(
            part for part in (author.get("name"), author.get("surname")) if part
        ) or author["username"]
        try:
            await self._tracker.add_comment(
                ticket["work_item_id"],
                project=platform["name"],
                author_name=author_name,
                author_email=author["email"],
                message=message,
            )
        except TrackerConfigurationError:
            return TrackerSync.SKIPPED
        except TrackerAPIError as exc:
            log_error(
                "Unable to add work item comment",
                ticket_id=ticket["id"],
                work_item_id=ticket["work_item_id"],
                error=str(exc),
            )
            return TrackerSync.FAILED
        return TrackerSync.OK


reply_service = ReplyService()
