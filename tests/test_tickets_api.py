import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import ticketsync.main as main_module
from conftest import FakeTracker
from ticketsync.api.dependencies import auth as auth_dependencies
from ticketsync.api.dependencies.database import require_database
from ticketsync.api.dependencies.services import get_lifecycle_service, get_webhook_adapter
from ticketsync.api.routes import notifications as notifications_routes
from ticketsync.api.routes import tickets as tickets_routes
from ticketsync.core.config import Settings
from ticketsync.core.database import db
from ticketsync.main import app
from ticketsync.services.webhook_sync import WebhookSyncAdapter

IDENTITY = "X-Authenticated-User-Id"
WEBHOOK_AUTH = ("tracker-hook", "tracker-secret")


@pytest.fixture(autouse=True)
def mock_startup(monkeypatch):
    async def fake_connect():
        return None

    async def fake_run_migrations():
        return None

    monkeypatch.setattr(db, "connect", fake_connect)
    monkeypatch.setattr(db, "run_migrations", fake_run_migrations)
    monkeypatch.setattr(main_module.realtime_publisher, "start_relay", lambda: None)


@pytest.fixture
def tracker():
    return FakeTracker(configured=False)


@pytest.fixture
def client(monkeypatch, store, publisher, build_lifecycle, tracker):
    store.add_user(1, email="alice@example.com")
    store.add_user(2, user_type="Operator", email="bob@example.com")
    store.add_user(3, email="carol@example.com")
    store.add_platform(1, name="Contoso")
    store.prefer(2, 1)

    lifecycle = build_lifecycle(tracker)
    adapter = WebhookSyncAdapter(
        lifecycle=lifecycle, tickets=store, users=store, platforms=store, settings=Settings()
    )

    async def _no_database():
        return None

    monkeypatch.setattr(auth_dependencies, "user_repo", store)
    monkeypatch.setattr(tickets_routes, "tickets_repo", store)
    monkeypatch.setattr(tickets_routes, "edits_repo", store)
    monkeypatch.setattr(notifications_routes, "notifications_repo", store)
    monkeypatch.setattr(notifications_routes, "realtime_publisher", publisher)
    app.dependency_overrides[require_database] = _no_database
    app.dependency_overrides[get_lifecycle_service] = lambda: lifecycle
    app.dependency_overrides[get_webhook_adapter] = lambda: adapter
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(user_id):
    return {IDENTITY: str(user_id)}


def _update_body(**overrides):
    body = {
        "ticket_type": "Bug",
        "title": "Broken login",
        "description": "Still broken",
        "priority": "Medium",
        "status": "WaitingOperator",
        "platform_id": 1,
        "operator_user_id": 2,
        "requester": 1,
    }
    body.update(overrides)
    return body


def _webhook_created(created_by="Alice <alice@example.com>", work_item_id=500):
    return {
        "eventType": "workitem.created",
        "resource": {
            "id": work_item_id,
            "fields": {
                "System.CreatedDate": "2024-05-01T10:00:00Z",
                "System.CreatedBy": created_by,
                "System.TeamProject": "Contoso",
                "System.WorkItemType": "Task",
                "System.Title": "Add export button",
                "Microsoft.VSTS.Common.Priority": 3,
                "System.State": "To Do",
            },
        },
    }


def test_create_ticket_returns_created_ticket(client, store):
    response = client.post(
        "/api/tickets",
        json={"title": "Login fails", "platform_id": 1, "priority": "High"},
        headers=_as(1),
    )

    assert response.status_code == 201
    assert response.headers["X-Tracker-Sync"] == "skipped"
    body = response.json()
    assert body["status"] == "WaitingOperator"
    assert body["operator_user_id"] == 2
    assert body["creator_user_id"] == 1
    assert body["tracker_sync"] == "skipped"
    assert len(store.tickets) == 1


def test_create_ticket_rejects_requester_field(client, store):
    response = client.post(
        "/api/tickets",
        json={"title": "Login fails", "platform_id": 1, "requester": 1},
        headers=_as(1),
    )

    assert response.status_code == 400
    assert store.tickets == {}


def test_create_ticket_requires_identity(client):
    response = client.post("/api/tickets", json={"title": "Login fails", "platform_id": 1})

    assert response.status_code == 401


def test_create_ticket_with_unknown_platform(client):
    response = client.post(
        "/api/tickets", json={"title": "Login fails", "platform_id": 9}, headers=_as(1)
    )

    assert response.status_code == 400


def test_blocked_user_is_forbidden(client, store):
    store.users[3]["is_blocked"] = True

    response = client.get("/api/tickets", headers=_as(3))

    assert response.status_code == 403


def test_list_tickets_is_scoped_for_plain_users(client, store):
    store.add_ticket(id=1, creator_user_id=1)
    store.add_ticket(id=2, creator_user_id=3)

    own = client.get("/api/tickets", headers=_as(1)).json()
    everyone = client.get("/api/tickets", headers=_as(2)).json()

    assert [item["id"] for item in own["items"]] == [1]
    assert sorted(item["id"] for item in everyone["items"]) == [1, 2]
    assert client.get("/api/tickets/2", headers=_as(1)).status_code == 404


def test_update_ticket_requires_requester(client, store):
    store.add_ticket(id=1, creator_user_id=1)
    body = _update_body()
    body.pop("requester")

    response = client.put("/api/tickets/1", json=body, headers=_as(1))

    assert response.status_code == 400
    assert store.tickets[1]["version"] == 1


def test_update_ticket_returns_no_content(client, store):
    store.add_ticket(id=1, creator_user_id=1)

    response = client.put("/api/tickets/1", json=_update_body(version=1), headers=_as(1))

    assert response.status_code == 204
    assert response.headers["X-Tracker-Sync"] == "skipped"
    assert store.tickets[1]["operator_user_id"] == 2
    assert store.tickets[1]["version"] == 2


def test_update_ticket_with_stale_version_conflicts(client, store):
    store.add_ticket(id=1, creator_user_id=1, version=3)

    response = client.put("/api/tickets/1", json=_update_body(version=2), headers=_as(1))

    assert response.status_code == 409
    assert store.tickets[1]["version"] == 3


def test_plain_user_cannot_edit_on_behalf_of_someone_else(client, store):
    store.add_ticket(id=1, creator_user_id=1)

    response = client.put("/api/tickets/1", json=_update_body(requester=2), headers=_as(1))

    assert response.status_code == 403


def test_update_missing_ticket(client):
    response = client.put("/api/tickets/42", json=_update_body(), headers=_as(2))

    assert response.status_code == 404


def test_delete_requires_staff(client, store):
    store.add_ticket(id=1, creator_user_id=1)

    assert client.delete("/api/tickets/1", headers=_as(1)).status_code == 403
    assert client.delete("/api/tickets/1", headers=_as(2)).status_code == 204
    assert store.tickets == {}


def test_ticket_edits_are_listed(client, store):
    client.post("/api/tickets", json={"title": "Login fails", "platform_id": 1}, headers=_as(1))

    response = client.get("/api/tickets/1/edits", headers=_as(1))

    assert response.status_code == 200
    assert [edit["description"] for edit in response.json()] == [
        "TICKET_CREATED_EDIT",
        "TICKET_AUTO_ASSIGNED_EDIT",
    ]


def test_notifications_inbox_and_mark_read(client, store, publisher):
    client.post("/api/tickets", json={"title": "Login fails", "platform_id": 1}, headers=_as(1))

    inbox = client.get("/api/notifications", headers=_as(2)).json()
    assert sorted(item["message"] for item in inbox) == [
        "TICKET_ASSIGNED_TO_YOU_BY_SYSTEM_NOTIFICATION",
        "TICKET_CREATED_NOTIFICATION",
    ]

    target = inbox[0]["id"]
    assert client.put(f"/api/notifications/{target}/read", headers=_as(1)).status_code == 404
    assert client.put(f"/api/notifications/{target}/read", headers=_as(2)).status_code == 204
    unread = client.get("/api/notifications", params={"unread_only": True}, headers=_as(2)).json()
    assert len(unread) == 1
    assert unread[0]["id"] != target
    assert publisher.names("user_2")[-1] == "UserNotificationUpdated"


def test_webhook_requires_credentials(client, store):
    assert client.post("/api/webhook/ticket/created", json=_webhook_created()).status_code == 401
    response = client.post(
        "/api/webhook/ticket/created", json=_webhook_created(), auth=("tracker-hook", "wrong")
    )
    assert response.status_code == 401
    assert store.tickets == {}


def test_webhook_created_then_duplicate_conflicts(client, store, tracker):
    first = client.post("/api/webhook/ticket/created", json=_webhook_created(), auth=WEBHOOK_AUTH)
    second = client.post("/api/webhook/ticket/created", json=_webhook_created(), auth=WEBHOOK_AUTH)

    assert first.status_code == 201
    assert first.json()["status"] == "created"
    assert second.status_code == 409
    assert len(store.tickets) == 1
    ticket = next(iter(store.tickets.values()))
    assert ticket["work_item_id"] == 500
    assert ticket["ticket_type"] == "Feature"


def test_webhook_self_echo_is_acknowledged(client, store):
    response = client.post(
        "/api/webhook/ticket/created",
        json=_webhook_created(created_by="Sync <ticketsync-service@contoso.com>"),
        auth=WEBHOOK_AUTH,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert store.tickets == {}


def test_webhook_update_for_unknown_work_item(client):
    payload = {
        "eventType": "workitem.updated",
        "resource": {
            "workItemId": 404,
            "fields": {
                "System.ChangedBy": "Alice <alice@example.com>",
                "System.TeamProject": "Contoso",
                "System.WorkItemType": "Issue",
                "System.Title": "Anything",
                "Microsoft.VSTS.Common.Priority": 2,
                "System.State": "Doing",
            },
        },
    }

    response = client.post("/api/webhook/ticket/updated", json=payload, auth=WEBHOOK_AUTH)

    assert response.status_code == 404


def test_webhook_deleted_removes_ticket(client, store):
    store.add_ticket(id=4, work_item_id=77)
    payload = {"resource": {"id": 77, "fields": {"System.ChangedBy": "Bob <bob@example.com>"}}}

    response = client.post("/api/webhook/ticket/deleted", json=payload, auth=WEBHOOK_AUTH)

    assert response.status_code == 204
    assert store.tickets == {}


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_topics_denied_to_only_allows_own_user_topic():
    topics = ["tickets", "ticket_4", "User_1", " user_2 "]

    assert auth_dependencies.topics_denied_to(1, topics) == ["user_2"]
    assert auth_dependencies.topics_denied_to(None, topics) == ["user_1", "user_2"]


def test_realtime_rejects_another_users_topic(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/realtime?topics=tickets,user_2", headers=_as(1)):
            pass

    assert excinfo.value.code == 1008


def test_realtime_accepts_own_user_topic(client):
    with client.websocket_connect("/ws/realtime?topics=tickets,user_1", headers=_as(1)) as websocket:
        websocket.send_text("ping")
