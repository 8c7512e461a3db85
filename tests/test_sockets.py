import pytest

from demoqueue import db, socketio
from demoqueue.models import AudienceRating


def _events(sock, name):
    return [e["args"][0] for e in sock.get_received() if e["name"] == name]


@pytest.fixture
def socket_for(app, client, login):
    clients = []

    def _connect(user):
        login(user)
        sock = socketio.test_client(app, flask_test_client=client)
        clients.append(sock)
        return sock

    yield _connect
    for sock in clients:
        if sock.is_connected():
            sock.disconnect()


def test_curator_panel_gets_ratings_and_carryover(make_user, make_submission, open_session, socket_for):
    open_session(2)
    owner = make_user()
    sub = make_submission(owner, session_number=2, position=1)
    db.session.add(AudienceRating(submission_id=sub.id, user_id=make_user().id, score=6))
    db.session.commit()

    sock = socket_for(make_user(role="curator"))
    sock.get_received()
    sock.emit("enter_panel")
    (state,) = _events(sock, "panel_state")
    assert state["session_number"] == 2
    assert state["queue"][0]["audience_count"] == 1
    assert state["queue"][0]["audience_average"] == 6.0
    assert state["carryover_count"] == 0


def test_viewer_cannot_enter_panel(make_user, open_session, socket_for):
    open_session()
    sock = socket_for(make_user())
    sock.get_received()
    sock.emit("enter_panel")
    assert _events(sock, "panel_state") == []


def test_queue_change_reaches_panel(client, make_user, make_submission, open_session, socket_for):
    open_session()
    sub = make_submission(make_user(), position=1)
    curator = make_user(role="curator")
    sock = socket_for(curator)
    sock.emit("enter_panel")
    sock.get_received()

    resp = client.post(f"/api/submissions/{sub.id}/skip")
    assert resp.status_code == 200

    received = sock.get_received()
    names = [e["name"] for e in received]
    assert "queue_state" in names
    panel = [e["args"][0] for e in received if e["name"] == "panel_state"]
    assert panel and panel[-1]["queue"] == []
