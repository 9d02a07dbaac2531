import pytest
from starlette.websockets import WebSocketDisconnect

from app.services.realtime import RealtimeBroker, family_channel, user_notifications_channel
from conftest import ALICE, BOB, invite_and_accept


def test_channel_names():
    assert family_channel(7) == "family:7"
    assert user_notifications_channel("u-1") == "user:u-1:notifications"


def test_resubscribe_replaces_previous_handler():
    broker = RealtimeBroker()
    first, second = [], []
    broker.subscribe("c1", "family:1", first.append)
    broker.subscribe("c1", "family:1", second.append)

    broker.publish("family:1", "family.updated", {"family_id": 1})

    assert first == []
    assert [event.type for event in second] == ["family.updated"]
    assert broker.subscriptions_for("c1") == ["family:1"]


def test_publish_only_reaches_matching_channel():
    broker = RealtimeBroker()
    seen = []
    broker.subscribe("c1", "family:1", seen.append)

    broker.publish("family:2", "family.updated", {"family_id": 2})
    assert seen == []


def test_failing_handler_does_not_block_others():
    broker = RealtimeBroker()
    seen = []

    def explode(event):
        raise RuntimeError("boom")

    broker.subscribe("bad", "family:1", explode)
    broker.subscribe("good", "family:1", seen.append)

    event = broker.publish("family:1", "member.joined", {"user_id": "u-bob"})

    assert seen == [event]
    assert event.to_dict()["payload"] == {"user_id": "u-bob"}


def test_unsubscribe_all_drops_every_channel_for_consumer():
    broker = RealtimeBroker()
    broker.subscribe("c1", "family:1", lambda event: None)
    broker.subscribe("c1", "user:u-1:notifications", lambda event: None)
    broker.subscribe("c2", "family:1", lambda event: None)

    assert broker.unsubscribe_all("c1") == 2
    assert broker.subscriptions_for("c1") == []
    assert broker.unsubscribe("c2", "family:1") is True
    assert broker.unsubscribe("c2", "family:1") is False


def test_websocket_streams_family_events(client, family_id, broker):
    with client.websocket_connect(f"/v1/realtime/ws?family_id={family_id}", headers=ALICE) as websocket:
        [consumer] = _consumers(broker)
        assert broker.subscriptions_for(consumer) == [f"family:{family_id}", "user:u-alice:notifications"]
        client.patch(f"/v1/families/{family_id}", json={"name": "Renamed"}, headers=ALICE)
        event = websocket.receive_json()

    assert event["channel"] == f"family:{family_id}"
    assert event["type"] == "family.updated"
    assert event["payload"] == {"family_id": family_id, "name": "Renamed"}


def test_removed_member_stops_receiving_family_events(client, family_id, broker):
    invite_and_accept(client, family_id, BOB)

    with client.websocket_connect(f"/v1/realtime/ws?family_id={family_id}", headers=BOB) as websocket:
        assert client.delete(f"/v1/families/{family_id}/members/u-bob", headers=ALICE).status_code == 200
        assert f"family:{family_id}" not in {channel for _, channel in broker._subscriptions}
        client.patch(f"/v1/families/{family_id}", json={"name": "Secret rename"}, headers=ALICE)

        removed = websocket.receive_json()
        assert removed["type"] == "member.removed"
        assert removed["payload"]["user_id"] == "u-bob"

        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()
        assert exc_info.value.code == 1008


def test_family_delete_closes_family_feed(client, family_id):
    with client.websocket_connect(f"/v1/realtime/ws?family_id={family_id}", headers=ALICE) as websocket:
        assert client.delete(f"/v1/families/{family_id}", headers=ALICE).status_code == 200

        assert websocket.receive_json()["type"] == "family.deleted"
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()
        assert exc_info.value.code == 1008


def test_websocket_delivers_own_notifications(client, family_id):
    invite_and_accept(client, family_id, BOB)

    with client.websocket_connect("/v1/realtime/ws", headers=BOB) as websocket:
        client.patch(f"/v1/families/{family_id}", json={"name": "Renamed"}, headers=ALICE)
        event = websocket.receive_json()

    assert event["channel"] == "user:u-bob:notifications"
    assert event["type"] == "notification.created"
    assert event["payload"]["type"] == "family_updated"


def test_websocket_rejects_non_member(client, family_id):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/v1/realtime/ws?family_id={family_id}", headers=BOB):
            pass
    assert exc_info.value.code == 1008


def test_websocket_requires_identity(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/v1/realtime/ws"):
            pass
    assert exc_info.value.code == 1008


def _consumers(broker):
    return {consumer for consumer, _ in broker._subscriptions}
