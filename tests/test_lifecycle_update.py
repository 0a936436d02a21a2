import pytest

from conftest import FakeTracker
from ticketsync.core.errors import ConflictError, NotFoundError, ValidationError
from ticketsync.schemas.enums import Priority, Status, TicketType
from ticketsync.schemas.tickets import TicketChanges
from ticketsync.services.tickets import TrackerSync, reconcile_status


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def seeded(store):
    store.add_user(1)
    store.add_user(2, user_type="Operator")
    store.add_user(3, user_type="Operator")
    store.add_user(5, user_type="Admin")
    store.add_user(6)
    store.add_platform(1)
    store.add_ticket(
        id=10,
        creator_user_id=1,
        operator_user_id=2,
        status="WaitingOperator",
    )
    return store


def _changes(**overrides):
    values = {
        "ticket_type": TicketType.BUG,
        "title": "Broken login",
        "description": "Still broken",
        "priority": Priority.MEDIUM,
        "status": Status.WAITING_OPERATOR,
        "platform_id": 1,
        "operator_user_id": 2,
    }
    values.update(overrides)
    return TicketChanges(**values)


@pytest.mark.parametrize(
    ("status", "operator_id", "expected"),
    [
        (Status.WAITING_USER, None, Status.UNASSIGNED),
        (Status.CLOSED, None, Status.CLOSED),
        (Status.UNASSIGNED, 4, Status.WAITING_OPERATOR),
        (Status.WAITING_USER, 4, Status.WAITING_USER),
        ("Unassigned", None, Status.UNASSIGNED),
    ],
)
def test_reconcile_status(status, operator_id, expected):
    assert reconcile_status(status, operator_id) is expected


@pytest.mark.anyio
async def test_creator_edit_notifies_operator_and_bumps_version(seeded, build_lifecycle):
    result = await build_lifecycle().update_ticket(10, _changes(), requester_id=1)

    assert result.ticket["version"] == 2
    assert result.ticket["description"] == "Still broken"
    assert result.ticket["priority"] == "Medium"
    assert seeded.notifications_for(2) == ["TICKET_EDITED_NOTIFICATION"]
    assert seeded.notifications_for(1) == []
    assert [(e["description"], e["user_id"]) for e in seeded.edits] == [("TICKET_EDITED_EDIT", 1)]


@pytest.mark.anyio
async def test_operator_edit_notifies_creator(seeded, build_lifecycle):
    await build_lifecycle().update_ticket(10, _changes(status=Status.WAITING_USER), requester_id=2)

    assert seeded.notifications_for(1) == ["TICKET_EDITED_NOTIFICATION"]
    assert seeded.notifications_for(2) == []
    assert seeded.edits[0]["old_status"] == "WaitingOperator"
    assert seeded.edits[0]["new_status"] == "WaitingUser"


@pytest.mark.anyio
async def test_third_party_edit_notifies_creator_and_operator(seeded, build_lifecycle):
    await build_lifecycle().update_ticket(10, _changes(), requester_id=5)

    assert seeded.notifications_for(1) == ["TICKET_EDITED_NOTIFICATION"]
    assert seeded.notifications_for(2) == ["TICKET_EDITED_NOTIFICATION"]
    assert seeded.notifications_for(5) == []


@pytest.mark.anyio
async def test_reassignment_writes_two_edits_and_operator_notifications(seeded, build_lifecycle):
    result = await build_lifecycle().update_ticket(
        10, _changes(operator_user_id=3), requester_id=5
    )

    assert result.ticket["operator_user_id"] == 3
    assert result.ticket["status"] == "WaitingOperator"
    assert seeded.notifications_for(3) == [
        "TICKET_EDITED_NOTIFICATION",
        "TICKET_ASSIGNED_TO_YOU_NOTIFICATION",
    ]
    assert seeded.notifications_for(1) == [
        "TICKET_EDITED_NOTIFICATION",
        "TICKET_ASSIGNED_NOTIFICATION",
    ]
    assert seeded.notifications_for(2) == ["TICKET_ASSIGNED_NOTIFICATION"]
    assert [(e["description"], e["user_id"]) for e in seeded.edits] == [
        ("TICKET_EDITED_EDIT", 5),
        ("TICKET_ASSIGNED_EDIT", 3),
    ]


@pytest.mark.anyio
async def test_unassignment_returns_ticket_to_pool(seeded, build_lifecycle):
    result = await build_lifecycle().update_ticket(
        10, _changes(status=Status.WAITING_USER, operator_user_id=None), requester_id=5
    )

    assert result.ticket["status"] == "Unassigned"
    assert result.ticket["operator_user_id"] is None
    unassigned = [n for n in seeded.notifications if n["message"] == "TICKET_UNASSIGNED_NOTIFICATION"]
    assert len(unassigned) == 1
    for receiver in (1, 2, 3, 5):
        assert "TICKET_UNASSIGNED_NOTIFICATION" in seeded.notifications_for(receiver)
    assert [e["description"] for e in seeded.edits] == [
        "TICKET_EDITED_EDIT",
        "TICKET_UNASSIGNED_EDIT",
    ]
    assert seeded.edits[1]["new_status"] == "Unassigned"


@pytest.mark.anyio
async def test_stale_version_is_rejected_without_side_effects(seeded, publisher, build_lifecycle):
    seeded.tickets[10]["version"] = 4

    with pytest.raises(ConflictError):
        await build_lifecycle().update_ticket(10, _changes(), requester_id=1, expected_version=3)

    assert seeded.tickets[10]["description"] == ""
    assert seeded.notifications == []
    assert seeded.edits == []
    assert publisher.events == []


@pytest.mark.anyio
async def test_update_of_missing_ticket(seeded, build_lifecycle):
    with pytest.raises(NotFoundError):
        await build_lifecycle().update_ticket(99, _changes(), requester_id=1)


@pytest.mark.anyio
async def test_plain_user_cannot_become_operator(seeded, build_lifecycle):
    with pytest.raises(ValidationError):
        await build_lifecycle().update_ticket(10, _changes(operator_user_id=6), requester_id=5)

    assert seeded.tickets[10]["operator_user_id"] == 2


@pytest.mark.anyio
async def test_unknown_requester_is_rejected(seeded, build_lifecycle):
    with pytest.raises(ValidationError):
        await build_lifecycle().update_ticket(10, _changes(), requester_id=42)


@pytest.mark.anyio
async def test_update_pushes_fields_and_operator_to_tracker(seeded, publisher, build_lifecycle):
    seeded.tickets[10]["work_item_id"] = 55
    tracker = FakeTracker()

    result = await build_lifecycle(tracker).update_ticket(
        10, _changes(operator_user_id=3), requester_id=5
    )

    assert result.tracker_sync is TrackerSync.OK
    assert tracker.calls == [("update", 55, "Portal"), ("operator", 55, 3)]
    assert publisher.names("tickets") == ["TicketUpdated"]


@pytest.mark.anyio
async def test_update_without_operator_change_skips_assignment_push(seeded, build_lifecycle):
    seeded.tickets[10]["work_item_id"] = 55
    tracker = FakeTracker()

    await build_lifecycle(tracker).update_ticket(10, _changes(), requester_id=1)

    assert tracker.calls == [("update", 55, "Portal")]


@pytest.mark.anyio
async def test_tracker_failure_keeps_local_update(seeded, build_lifecycle):
    seeded.tickets[10]["work_item_id"] = 55

    result = await build_lifecycle(FakeTracker(fail=True)).update_ticket(
        10, _changes(), requester_id=1
    )

    assert result.tracker_sync is TrackerSync.FAILED
    assert seeded.tickets[10]["description"] == "Still broken"


@pytest.mark.anyio
async def test_unlinked_ticket_is_not_pushed(seeded, build_lifecycle):
    tracker = FakeTracker()

    result = await build_lifecycle(tracker).update_ticket(10, _changes(), requester_id=1)

    assert result.tracker_sync is TrackerSync.SKIPPED
    assert tracker.calls == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("operator_id", "operator_edit"),
    [(None, "TICKET_UNASSIGNED_EDIT"), (3, "TICKET_ASSIGNED_EDIT")],
)
async def test_operator_change_on_closed_ticket_records_closed_status(
    seeded, build_lifecycle, operator_id, operator_edit
):
    seeded.tickets[10]["status"] = "Closed"

    result = await build_lifecycle().update_ticket(
        10, _changes(status=Status.CLOSED, operator_user_id=operator_id), requester_id=5
    )

    assert result.ticket["status"] == "Closed"
    assert [(e["description"], e["old_status"], e["new_status"]) for e in seeded.edits] == [
        ("TICKET_EDITED_EDIT", "Closed", "Closed"),
        (operator_edit, "Closed", "Closed"),
    ]
