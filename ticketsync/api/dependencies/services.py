from __future__ import annotations

from ticketsync.services.replies import ReplyService, reply_service
from ticketsync.services.tickets import TicketLifecycleService, lifecycle_service
from ticketsync.services.webhook_sync import WebhookSyncAdapter, webhook_adapter


def get_lifecycle_service() -> TicketLifecycleService:
    return lifecycle_service


def get_reply_service() -> ReplyService:
    return reply_service


def get_webhook_adapter() -> WebhookSyncAdapter:
    return webhook_adapter
