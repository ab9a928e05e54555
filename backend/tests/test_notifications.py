import asyncio

import pytest
from starlette.websockets import WebSocketDisconnect

from app.core.security import create_access_token
from app.models.notification import NotificationType
from app.services.notification_hub import NotificationHub
from app.services.notifications import notification_to_event_payload, notify, notify_users


@pytest.fixture()
def inbox(seed, db_session):
    teacher = seed.teacher("Dana Levi")
    other = seed.teacher("Omer Katz")
    first = notify(
        db_session,
        user_id=teacher.user_id,
        notification_type=NotificationType.substitute_request,
        title="Substitute request",
        message="You were asked to cover 1 lesson of Ruth Absent.",
        link="/substitute-requests",
    )
    second = notify(
        db_session,
        user_id=teacher.user_id,
        notification_type=NotificationType.teacher_changed,
        title="Teacher changed",
        message="Your lesson will be taught by Omer Katz.",
    )
    notify(
        db_session,
        user_id=other.user_id,
        notification_type=NotificationType.substitute_declined,
        title="Substitute request declined",
        message="Declined.",
    )
    db_session.commit()
    return {"teacher": teacher, "other": other, "first": first, "second": second}


def test_notifications_are_listed_per_user(client, seed, inbox):
    headers = seed.headers(inbox["teacher"])

    listed = client.get("/api/notifications", headers=headers).json()
    assert {item["id"] for item in listed} == {inbox["first"].id, inbox["second"].id}

    filtered = client.get(
        "/api/notifications",
        headers=headers,
        params={"notification_type": NotificationType.substitute_request.value},
    ).json()
    assert [item["link"] for item in filtered] == ["/substitute-requests"]
    assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unread": 2}


def test_mark_read_and_read_all(client, seed, inbox):
    headers = seed.headers(inbox["teacher"])

    response = client.post(f"/api/notifications/{inbox['first'].id}/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert client.get("/api/notifications/unread-count", headers=headers).json() == {"unread": 1}

    response = client.post(f"/api/notifications/{inbox['first'].id}/read", headers=seed.headers(inbox["other"]))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    response = client.post("/api/notifications/read-all", headers=headers)
    assert response.json() == {"updated": 1}
    assert client.get("/api/notifications", headers=headers, params={"is_read": "false"}).json() == []
    assert client.get("/api/notifications/unread-count", headers=seed.headers(inbox["other"])).json() == {"unread": 1}


def test_notify_users_skips_inactive_and_excluded(seed, db_session):
    active = seed.teacher("Dana Levi")
    excluded = seed.teacher("Omer Katz")
    inactive_user = seed.user("Gone Away", seed.user_of(active).role)
    inactive_user.is_active = False
    db_session.commit()

    created = notify_users(
        db_session,
        user_ids=[active.user_id, excluded.user_id, inactive_user.id, active.user_id],
        notification_type=NotificationType.substitute_request_cancelled,
        title="Substitute request cancelled",
        message="Auto-cancelled",
        exclude_user_id=excluded.user_id,
    )

    assert [item.user_id for item in created] == [active.user_id]


def test_websocket_handshake_and_ping(client, seed):
    teacher = seed.teacher("Dana Levi")
    token = create_access_token(teacher.user_id)

    with client.websocket_connect(f"/api/notifications/ws?token={token}") as websocket:
        assert websocket.receive_json() == {"event": "connected", "user_id": teacher.user_id}
        websocket.send_text("ping")
        assert websocket.receive_json() == {"event": "pong"}


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/notifications/ws?token=garbage") as websocket:
            websocket.receive_json()


class _FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


def test_hub_delivers_and_drops_stale_sockets(seed, db_session):
    teacher = seed.teacher("Dana Levi")
    record = notify(
        db_session,
        user_id=teacher.user_id,
        notification_type=NotificationType.system,
        title="Hello",
        message="Welcome",
        deliver_realtime=False,
    )
    payload = notification_to_event_payload(record)
    hub = NotificationHub()
    healthy, broken = _FakeSocket(), _FakeSocket(fail=True)

    async def scenario():
        await hub.connect(teacher.user_id, healthy)
        await hub.connect(teacher.user_id, broken)
        delivered = await hub.publish(teacher.user_id, payload)
        return delivered, hub.connected_users(), await hub.publish("nobody", payload)

    delivered, connected, missed = asyncio.run(scenario())

    assert (delivered, connected, missed) == (1, 1, 0)
    assert healthy.sent[0]["notification"]["title"] == "Hello"
    assert payload["event"] == "notification.created"
