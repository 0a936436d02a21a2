from . import notifications, tickets, webhooks

__all__ = [
    "notifications",
    "tickets",
    "webhooks",
]
