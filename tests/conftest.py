import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SQLITE_PATH", str(Path(tempfile.gettempdir()) / "ticketsync-tests.db"))
os.environ.setdefault("WEBHOOK_USERNAME", "tracker-hook")
os.environ.setdefault("WEBHOOK_PASSWORD", "tracker-secret")
os.environ.setdefault("WEBHOOK_SERVICE_PRINCIPAL", "ticketsync-service")
os.environ.setdefault("IDENTITY_HEADER", "X-Authenticated-User-Id")

from ticketsync.core.errors import ConflictError  # noqa: E402
from ticketsync.services.tracker import TrackerAPIError  # noqa: E402


class InMemoryStore:
    """Stand-in for the repository modules used by the lifecycle services.

    Method names mirror ``ticketsync.repositories.*`` so one instance can be
    passed wherever a repository module is expected.
    """

    def __init__(self):
        self.tickets: dict[int, dict] = {}
        self.users: dict[int, dict] = {}
        self.platforms: dict[int, dict] = {}
        self.preferred: list[tuple[int, int]] = []
        self.edits: list[dict] = []
        self.notifications: list[dict] = []
        self.user_notifications: list[dict] = []
        self.replies: list[dict] = []
        self._next_ticket_id = 1

    # seeding helpers
    def add_user(self, user_id, *, user_type="User", email=None, username=None):
        self.users[user_id] = {
            "id": user_id,
            "email": email or f"user{user_id}@example.com",
            "username": username or f"user{user_id}",
            "name": f"Name{user_id}",
            "surname": f"Surname{user_id}",
            "user_type": user_type,
            "is_blocked": False,
        }
        return self.users[user_id]

    def add_platform(self, platform_id, name="Portal"):
        self.platforms[platform_id] = {"id": platform_id, "name": name, "repository_url": ""}
        return self.platforms[platform_id]

    def prefer(self, user_id, platform_id):
        self.preferred.append((user_id, platform_id))

    def add_ticket(self, **overrides):
        ticket_id = overrides.pop("id", self._next_ticket_id)
        self._next_ticket_id = max(self._next_ticket_id, ticket_id + 1)
        record = {
            "id": ticket_id,
            "ticket_type": "Bug",
            "title": "Broken login",
            "description": "",
            "priority": "Low",
            "status": "Unassigned",
            "work_item_id": None,
            "platform_id": 1,
            "creator_user_id": 1,
            "operator_user_id": None,
            "version": 1,
            "created_at": None,
            "updated_at": None,
        }
        record.update(overrides)
        self.tickets[ticket_id] = record
        return dict(record)

    def notifications_for(self, receiver_id):
        by_id = {notification["id"]: notification for notification in self.notifications}
        return [
            by_id[row["notification_id"]]["message"]
            for row in self.user_notifications
            if row["receiver_user_id"] == receiver_id
        ]

    # tickets repository
    async def create_ticket(self, **fields):
        values = {key: getattr(value, "value", value) for key, value in fields.items()}
        work_item_id = values.get("work_item_id")
        if work_item_id is not None and any(
            ticket["work_item_id"] == work_item_id for ticket in self.tickets.values()
        ):
            raise ConflictError(f"Work item {work_item_id} is already linked to a ticket")
        return self.add_ticket(**values)

    async def get_ticket(self, ticket_id):
        ticket = self.tickets.get(ticket_id)
        return dict(ticket) if ticket else None

    async def get_ticket_by_work_item(self, work_item_id):
        for ticket in self.tickets.values():
            if ticket["work_item_id"] == work_item_id:
                return dict(ticket)
        return None

    async def update_ticket_if_version(self, ticket_id, expected_version, **fields):
        ticket = self.tickets.get(ticket_id)
        if not ticket or ticket["version"] != expected_version:
            return 0
        ticket.update({key: getattr(value, "value", value) for key, value in fields.items()})
        ticket["version"] += 1
        return 1

    async def delete_ticket(self, ticket_id):
        if self.tickets.pop(ticket_id, None) is None:
            return False
        notification_ids = {n["id"] for n in self.notifications if n["ticket_id"] == ticket_id}
        self.notifications = [n for n in self.notifications if n["ticket_id"] != ticket_id]
        self.user_notifications = [
            row for row in self.user_notifications if row["notification_id"] not in notification_ids
        ]
        self.edits = [edit for edit in self.edits if edit["ticket_id"] != ticket_id]
        return True

    async def list_tickets(self, *, status=None, platform_id=None, operator_user_id=None,
                           creator_user_id=None, limit=100, offset=0):
        wanted = {
            "status": getattr(status, "value", status),
            "platform_id": platform_id,
            "operator_user_id": operator_user_id,
            "creator_user_id": creator_user_id,
        }
        rows = [
            dict(ticket)
            for _, ticket in sorted(self.tickets.items(), reverse=True)
            if all(value is None or ticket[key] == value for key, value in wanted.items())
        ]
        return rows[offset:offset + limit]

    async def count_open_tickets_by_operator(self, operator_ids):
        counts = {operator_id: 0 for operator_id in operator_ids}
        for ticket in self.tickets.values():
            if ticket["status"] != "Closed" and ticket["operator_user_id"] in counts:
                counts[ticket["operator_user_id"]] += 1
        return counts

    # users repository
    async def get_user_by_id(self, user_id):
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def list_users_by_types(self, user_types):
        wanted = {getattr(value, "value", value) for value in user_types}
        return [dict(user) for _, user in sorted(self.users.items()) if user["user_type"] in wanted]

    async def find_users_mentioned_in(self, identity):
        lowered = identity.lower()
        return [
            dict(user)
            for _, user in sorted(self.users.items())
            if user["email"].lower() in lowered
        ]

    # platforms repository
    async def get_platform(self, platform_id):
        platform = self.platforms.get(platform_id)
        return dict(platform) if platform else None

    async def list_platforms_by_name(self, name):
        return [dict(p) for p in self.platforms.values() if p["name"] == name]

    async def list_preferred_user_ids(self, platform_id):
        return [user_id for user_id, pid in self.preferred if pid == platform_id]

    # edits repository
    async def create_edit(self, **fields):
        record = {key: getattr(value, "value", value) for key, value in fields.items()}
        record["id"] = len(self.edits) + 1
        self.edits.append(record)
        return record

    async def list_edits_for_ticket(self, ticket_id):
        return [dict(edit) for edit in self.edits if edit["ticket_id"] == ticket_id]

    # notifications repository
    async def create_notification(self, *, ticket_id, user_id, message):
        record = {
            "id": len(self.notifications) + 1,
            "ticket_id": ticket_id,
            "user_id": user_id,
            "message": message,
        }
        self.notifications.append(record)
        return record

    async def create_user_notification(self, *, notification_id, receiver_user_id):
        for row in self.user_notifications:
            if (row["notification_id"], row["receiver_user_id"]) == (notification_id, receiver_user_id):
                raise AssertionError("duplicate user notification")
        record = {
            "id": len(self.user_notifications) + 1,
            "notification_id": notification_id,
            "receiver_user_id": receiver_user_id,
            "is_read": False,
        }
        self.user_notifications.append(record)
        return record

    def _joined(self, row):
        notification = next(n for n in self.notifications if n["id"] == row["notification_id"])
        return {
            **row,
            "ticket_id": notification["ticket_id"],
            "user_id": notification["user_id"],
            "message": notification["message"],
            "created_at": None,
        }

    async def list_user_notifications_for_ticket(self, ticket_id):
        ids = {n["id"] for n in self.notifications if n["ticket_id"] == ticket_id}
        return [self._joined(row) for row in self.user_notifications if row["notification_id"] in ids]

    async def list_user_notifications_for_receiver(self, receiver_user_id, *, unread_only=False):
        return [
            self._joined(row)
            for row in reversed(self.user_notifications)
            if row["receiver_user_id"] == receiver_user_id and not (unread_only and row["is_read"])
        ]

    async def get_user_notification(self, user_notification_id):
        for row in self.user_notifications:
            if row["id"] == user_notification_id:
                return self._joined(row)
        return None

    async def mark_user_notification_read(self, user_notification_id):
        for row in self.user_notifications:
            if row["id"] == user_notification_id:
                row["is_read"] = True

    # replies repository
    async def create_reply(self, *, ticket_id, author_user_id, message):
        record = {
            "id": len(self.replies) + 1,
            "ticket_id": ticket_id,
            "author_user_id": author_user_id,
            "message": message,
            "created_at": None,
        }
        self.replies.append(record)
        return record

    async def list_replies(self, ticket_id):
        return [dict(reply) for reply in self.replies if reply["ticket_id"] == ticket_id]


class RecordingPublisher:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def publish(self, topic, event, data=None):
        self.events.append((topic, event, dict(data or {})))

    def names(self, topic=None):
        return [event for t, event, _ in self.events if topic is None or t == topic]


class FakeTracker:
    def __init__(self, *, configured=True, fail=False, work_item_id=900):
        self.configured = configured
        self.fail = fail
        self.work_item_id = work_item_id
        self.calls: list[tuple] = []

    def is_configured(self):
        return self.configured

    def _maybe_fail(self):
        if self.fail:
            raise TrackerAPIError("tracker unavailable", status_code=503)

    async def create_work_item(self, ticket, *, project, operator=None):
        self.calls.append(("create", ticket["id"], project, operator["id"] if operator else None))
        self._maybe_fail()
        return self.work_item_id

    async def update_work_item(self, ticket, *, project):
        self.calls.append(("update", ticket["work_item_id"], project))
        self._maybe_fail()

    async def update_work_item_operator(self, work_item_id, operator):
        self.calls.append(("operator", work_item_id, operator["id"] if operator else None))
        self._maybe_fail()

    async def add_comment(self, work_item_id, *, project, author_name, author_email, message):
        self.calls.append(("comment", work_item_id, author_name, author_email, message))
        self._maybe_fail()

    async def delete_work_item(self, work_item_id):
        self.calls.append(("delete", work_item_id))
        self._maybe_fail()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def tracker():
    return FakeTracker(configured=False)


@pytest.fixture
def build_lifecycle(store, publisher):
    from ticketsync.services.edits import EditRecorder
    from ticketsync.services.tickets import TicketLifecycleService

    def _build(tracker=None):
        return TicketLifecycleService(
            tickets=store,
            users=store,
            platforms=store,
            notifications=store,
            edits=EditRecorder(store),
            tracker=tracker or FakeTracker(configured=False),
            publisher=publisher,
        )

    return _build
