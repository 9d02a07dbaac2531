import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.entities import FamilyGroup
from app.services.notifications import NotificationType, notify
from app.services.realtime import RealtimeBroker
from conftest import ALICE, BOB, CAROL, DAVE, invite_and_accept


def test_fanout_reaches_every_member_but_the_sender(client, family_id, broker):
    invite_and_accept(client, family_id, BOB)
    invite_and_accept(client, family_id, CAROL, role="viewer")
    received = []
    for user_id in ("u-alice", "u-bob", "u-carol"):
        broker.subscribe("test", f"user:{user_id}:notifications", received.append)

    client.patch(f"/v1/families/{family_id}", json={"name": "Household Prime"}, headers=ALICE)

    assert sorted(event.channel for event in received) == ["user:u-bob:notifications", "user:u-carol:notifications"]
    assert {event.type for event in received} == {"notification.created"}
    for headers in (BOB, CAROL):
        latest = client.get("/v1/notifications", headers=headers).json()["items"][0]
        assert latest["type"] == "family_updated"
        assert latest["sender_id"] == "u-alice"
        assert latest["read"] is False
    assert client.get("/v1/notifications", headers=DAVE).json()["items"] == []


def test_notify_dedupes_explicit_recipients(db_session):
    family = FamilyGroup(name="Smiths", created_by="u-alice")
    db_session.add(family)
    db_session.commit()

    rows = notify(
        db_session,
        RealtimeBroker(),
        NotificationType.role_updated,
        family.id,
        "u-alice",
        "bob is now editor",
        recipients=["u-bob", "u-bob", "u-carol"],
    )
    assert [row.user_id for row in rows] == ["u-bob", "u-carol"]


def test_notify_without_recipients_writes_nothing(db_session):
    family = FamilyGroup(name="Smiths", created_by="u-alice")
    db_session.add(family)
    db_session.commit()

    assert notify(db_session, RealtimeBroker(), NotificationType.family_updated, family.id, "u-alice", "x") == []


def test_mark_read_only_touches_own_notifications(client, family_id):
    invite_and_accept(client, family_id, BOB)
    client.patch(f"/v1/families/{family_id}", json={"name": "Renamed"}, headers=ALICE)

    alice_ids = [item["id"] for item in client.get("/v1/notifications", headers=ALICE).json()["items"]]
    bob_ids = [item["id"] for item in client.get("/v1/notifications", headers=BOB).json()["items"]]
    assert alice_ids and bob_ids

    foreign = client.put("/v1/notifications/read", json={"notification_ids": alice_ids}, headers=BOB)
    assert foreign.status_code == 200
    assert foreign.json() == {"affected": 0}

    own = client.put("/v1/notifications/read", json={"notification_ids": bob_ids}, headers=BOB)
    assert own.json() == {"affected": len(bob_ids)}

    bob_items = client.get("/v1/notifications", headers=BOB).json()["items"]
    assert all(item["read"] for item in bob_items)
    assert all(item["read_at"] is not None for item in bob_items)
    assert client.get("/v1/notifications?unread_only=true", headers=BOB).json()["items"] == []
    assert len(client.get("/v1/notifications?unread_only=true", headers=ALICE).json()["items"]) == len(alice_ids)


def test_delete_only_touches_own_notifications(client, family_id):
    invite_and_accept(client, family_id, BOB)
    [joined] = client.get("/v1/notifications", headers=ALICE).json()["items"]

    assert client.delete(f"/v1/notifications/{joined['id']}", headers=BOB).json() == {"affected": 0}
    assert client.delete(f"/v1/notifications/{joined['id']}", headers=ALICE).json() == {"affected": 1}
    assert client.get("/v1/notifications", headers=ALICE).json()["items"] == []


def test_mark_read_requires_id_list(client):
    resp = client.put("/v1/notifications/read", json={"notification_ids": "all"}, headers=ALICE)
    assert resp.status_code == 400


def test_role_change_notifies_family(client, family_id):
    invite_and_accept(client, family_id, BOB, role="viewer")

    client.patch(f"/v1/families/{family_id}/members/u-bob", json={"role": "editor"}, headers=ALICE)
    latest = client.get("/v1/notifications", headers=BOB).json()["items"][0]
    assert latest["type"] == "role_updated"
    assert latest["message"] == "bob@example.com is now editor"

    # Re-applying the same role changes nothing and stays quiet.
    before = len(client.get("/v1/notifications", headers=BOB).json()["items"])
    client.patch(f"/v1/families/{family_id}/members/u-bob", json={"role": "editor"}, headers=ALICE)
    assert len(client.get("/v1/notifications", headers=BOB).json()["items"]) == before


def test_system_notification_has_no_sender(db_session):
    family = FamilyGroup(name="Smiths", created_by="system")
    db_session.add(family)
    db_session.commit()

    [row] = notify(
        db_session, RealtimeBroker(), NotificationType.family_updated, family.id, None, "x", recipients=["u-a"]
    )
    assert row.user_id == "u-a"
    assert row.sender_id is None


def test_failed_fanout_is_logged_and_returns_nothing(db_session, monkeypatch, caplog):
    family = FamilyGroup(name="Smiths", created_by="u-alice")
    db_session.add(family)
    db_session.commit()

    def broken_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db_session, "commit", broken_commit)
    with caplog.at_level(logging.ERROR, logger="app.services.notifications"):
        rows = notify(
            db_session,
            RealtimeBroker(),
            NotificationType.family_updated,
            family.id,
            "u-alice",
            "renamed",
            recipients=["u-bob"],
        )

    assert rows == []
    assert "notification fanout failed" in caplog.text


def test_failed_fanout_does_not_undo_the_change(client, family_id, monkeypatch):
    invite_and_accept(client, family_id, BOB)

    def broken_add_all(self, instances):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(Session, "add_all", broken_add_all)
    resp = client.patch(f"/v1/families/{family_id}", json={"name": "Renamed"}, headers=ALICE)
    monkeypatch.undo()

    assert resp.status_code == 200
    assert resp.json()["name"] == "Renamed"
    assert client.get(f"/v1/families/{family_id}", headers=BOB).json()["name"] == "Renamed"
    assert client.get("/v1/notifications", headers=BOB).json()["items"] == []


def test_notifications_carry_family_and_sender_names(client, family_id, db_session):
    invite_and_accept(client, family_id, BOB)
    client.patch(f"/v1/families/{family_id}", json={"name": "Smiths"}, headers=ALICE)
    notify(
        db_session,
        RealtimeBroker(),
        NotificationType.family_updated,
        family_id,
        None,
        "weekly summary",
        recipients=["u-bob"],
    )
    notify(
        db_session,
        RealtimeBroker(),
        NotificationType.family_updated,
        family_id,
        "u-gone",
        "left behind",
        recipients=["u-bob"],
    )

    items = client.get("/v1/notifications", headers=BOB).json()["items"]
    by_message = {item["message"]: item for item in items}
    assert {item["family_name"] for item in items} == {"Smiths"}
    assert by_message['alice@example.com renamed the family group to "Smiths"']["sender_name"] == "alice@example.com"
    assert by_message["weekly summary"]["sender_name"] == "System"
    assert by_message["left behind"]["sender_name"] == "Unknown User"
