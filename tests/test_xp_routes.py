from demoqueue import db
from demoqueue.models import Submission, User, UserSessionXp, XpLog
from demoqueue.xp import MAX_MOVE_PER_SESSION


def _positions(session_number=1):
    db.session.expire_all()
    rows = (
        db.session.query(Submission)
        .filter_by(session_number=session_number, status="pending")
        .order_by(Submission.queue_position)
        .all()
    )
    return [r.user_id for r in rows]


class TestUseXp:
    def _queue(self, make_user, make_submission, my_xp=250, above_xp=0):
        first, above = make_user(), make_user(xp=above_xp)
        me = make_user(xp=my_xp)
        make_submission(first, position=1)
        make_submission(above, position=2)
        make_submission(me, position=3)
        return first, above, me

    def test_swap_and_debit(self, client, make_user, login, make_submission, open_session):
        open_session()
        first, above, me = self._queue(make_user, make_submission)
        login(me)

        assert client.get("/api/xp/can-move").get_json()["allowed"] is True
        resp = client.post("/api/xp/use")
        assert resp.status_code == 200
        assert resp.get_json()["xp"] == 150
        assert _positions() == [first.id, me.id, above.id]

        usx = db.session.query(UserSessionXp).filter_by(user_id=me.id, session_number=1).one()
        assert usx.moves_used_this_session == 1
        logs = {r.source: r.amount for r in db.session.query(XpLog).filter_by(user_id=me.id)}
        assert logs == {"queue_move": -100, "queue_bump": 0}

    def test_cannot_take_second_slot(self, client, make_user, login, make_submission, open_session):
        open_session()
        first, above, me = self._queue(make_user, make_submission)
        login(me)
        client.post("/api/xp/use")
        resp = client.post("/api/xp/use")
        assert resp.status_code == 400
        assert "No XP was used" in resp.get_json()["error"]
        db.session.expire_all()
        assert db.session.get(User, me.id).xp == 150

    def test_blocked_by_richer_user_above(self, client, make_user, login, make_submission, open_session):
        open_session()
        _, _, me = self._queue(make_user, make_submission, my_xp=100, above_xp=200)
        login(me)
        assert client.post("/api/xp/use").status_code == 400

    def test_summary(self, client, make_user, login, make_submission, open_session):
        open_session()
        _, _, me = self._queue(make_user, make_submission)
        login(me)
        client.post("/api/xp/use")
        body = client.get("/api/xp").get_json()
        assert body["xp"] == 150
        assert body["moves_used_this_session"] == 1
        assert body["xp_used_this_session"] == 100


class TestStatus:
    def test_status_without_twitch(self, client, make_user, login):
        login(make_user(xp=30))
        body = client.get("/api/xp/status").get_json()
        assert body["live"] is False
        assert body["submissions_open"] is True
        assert body["time_xp_active"] is False
        assert body["following"] is None
        assert body["xp"] == 30

    def test_status_reads_open_flag_once(self, client, make_user, login, monkeypatch):
        from demoqueue.routes import xp as xp_routes

        calls = []

        def counting_open():
            calls.append(1)
            return True

        monkeypatch.setattr(xp_routes, "is_channel_live", lambda: True)
        monkeypatch.setattr(xp_routes, "submissions_are_open", counting_open)
        login(make_user())
        body = client.get("/api/xp/status").get_json()
        assert body["time_xp_active"] is True
        assert len(calls) == 1


class TestPromote:
    def test_promote_reference_queue(self, client, make_user, login, make_submission, open_session):
        open_session()
        b, c, a = make_user(xp=0), make_user(xp=150), make_user(xp=250)
        make_submission(b, position=1)
        make_submission(c, position=2)
        make_submission(a, position=3)
        login(make_user(role="curator"))

        resp = client.post("/api/xp/promote")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["moves_delta"] == {str(a.id): 2, str(c.id): 1}
        assert _positions() == [a.id, c.id, b.id]
        assert db.session.get(User, a.id).xp == 50
        assert db.session.get(User, c.id).xp == 50
        assert db.session.get(User, b.id).xp == 0

        again = client.post("/api/xp/promote").get_json()
        assert again["moves_delta"] == {}

    def test_tester_moves_past_cap(self, client, make_user, login, make_submission, open_session):
        open_session()
        others = [make_user() for _ in range(5)]
        for pos, user in enumerate(others, start=1):
            make_submission(user, position=pos)
        tester = make_user(role="tester", xp=1000)
        make_submission(tester, position=6)
        login(make_user(role="curator"))

        body = client.post("/api/xp/promote").get_json()
        assert body["moves_delta"][str(tester.id)] == 5
        assert body["moves_delta"][str(tester.id)] > MAX_MOVE_PER_SESSION
        assert _positions()[0] == tester.id

    def test_requires_curator(self, client, make_user, login, open_session):
        open_session()
        login(make_user())
        assert client.post("/api/xp/promote").status_code == 403


class TestGrants:
    def test_grant_and_deduct(self, client, make_user, login):
        target = make_user(xp=50)
        login(make_user(role="curator"))
        resp = client.post("/api/xp/grant", json={"user_id": target.id, "amount": 30})
        assert resp.get_json()["new_total"] == 80
        resp = client.post("/api/xp/grant", json={"user_id": target.id, "amount": -500})
        assert resp.get_json()["new_total"] == 0
        amounts = [r.amount for r in db.session.query(XpLog).filter_by(user_id=target.id).order_by(XpLog.id)]
        assert amounts == [30, -500]

    def test_grant_zero_rejected(self, client, make_user, login):
        login(make_user(role="curator"))
        assert client.post("/api/xp/grant", json={"amount": 0}).status_code == 400

    def test_donation_once_per_session(self, client, make_user, login, open_session):
        open_session()
        target = make_user()
        login(make_user(role="curator"))
        assert client.post("/api/xp/grant-donation", json={"user_id": target.id}).status_code == 200
        assert client.post("/api/xp/grant-donation", json={"user_id": target.id}).status_code == 400
        db.session.expire_all()
        assert db.session.get(User, target.id).xp == 20

    def test_tester_adjust(self, client, make_user, login):
        tester = make_user(role="tester", xp=40)
        login(tester)
        assert client.post("/api/xp/adjust", json={"delta": -100}).get_json()["xp"] == 0

    def test_adjust_requires_tester(self, client, make_user, login):
        login(make_user())
        assert client.post("/api/xp/adjust", json={"delta": 10}).status_code == 403

    def test_clear_all(self, client, make_user, login):
        make_user(xp=300)
        login(make_user(role="curator", xp=10))
        assert client.post("/api/xp/clear-all").get_json()["cleared"] == 2
        assert db.session.query(User).filter(User.xp > 0).count() == 0
