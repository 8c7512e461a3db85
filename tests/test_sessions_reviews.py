from datetime import datetime

import pytest

from demoqueue import db
from demoqueue.models import AppConfig, AudienceRating, Review, Submission, SubmissionSession, User, XpLog


def _set_open(client, value):
    return client.post("/api/settings/submissions", json={"submissions_open": value})


class TestSessions:
    def test_settings_require_curator(self, client, make_user, login):
        login(make_user())
        assert _set_open(client, False).status_code == 403

    def test_close_grants_carryover_once(self, client, make_user, login, make_submission, open_session):
        open_session()
        owner = make_user()
        make_submission(owner)
        login(make_user(role="curator"))

        resp = _set_open(client, False)
        assert resp.status_code == 200
        assert resp.get_json()["carryover_bonus_granted"] == 1
        db.session.expire_all()
        assert db.session.get(User, owner.id).xp == 25
        assert db.session.query(SubmissionSession).one().ended_at is not None

        # closing again is a no-op
        _set_open(client, False)
        db.session.expire_all()
        assert db.session.get(User, owner.id).xp == 25

    def test_open_moves_carryover_deduplicated(self, client, make_user, login, make_submission):
        db.session.add(AppConfig(id=1, submissions_open=False))
        db.session.add(SubmissionSession(session_number=1, ended_at=datetime.utcnow()))
        db.session.commit()
        owner = make_user()
        url = "https://soundcloud.com/a/b"
        older = make_submission(owner, session_number=1, url=url, age_minutes=200)
        make_submission(owner, session_number=1, url=url, age_minutes=100)
        login(make_user(role="curator"))

        resp = _set_open(client, True)
        body = resp.get_json()
        assert body["session_number"] == 2
        assert body["moved_from_carryover"] == 1
        db.session.expire_all()
        moved = db.session.get(Submission, older.id)
        assert moved.session_number == 2
        assert moved.queue_position == 1

    def test_list_and_delete(self, client, make_user, login, make_submission, open_session):
        open_session()
        sub = make_submission(make_user())
        db.session.add(AudienceRating(submission_id=sub.id, user_id=sub.user_id, score=5))
        db.session.commit()
        login(make_user(role="curator"))

        sessions = client.get("/api/sessions").get_json()["sessions"]
        assert sessions[0]["submission_count"] == 1

        resp = client.delete("/api/sessions/delete", json={"session_numbers": [1]})
        assert resp.get_json()["deleted_submissions"] == 1
        assert db.session.query(Submission).count() == 0
        assert db.session.query(AudienceRating).count() == 0
        assert db.session.query(SubmissionSession).count() == 0

    def test_delete_requires_selection(self, client, make_user, login):
        login(make_user(role="curator"))
        assert client.delete("/api/sessions/delete", json={}).status_code == 400


class TestReviews:
    def _review(self, client, sub_id, score=9):
        return client.post(
            "/api/reviews",
            json={
                "submission_id": sub_id,
                "sound_score": score,
                "structure_score": score,
                "mix_score": score,
                "vibe_score": score,
            },
        )

    def test_review_grants_curator_and_audience_xp(self, client, make_user, login, make_submission, open_session):
        open_session()
        owner = make_user()
        sub = make_submission(owner, position=1)
        db.session.add(AudienceRating(submission_id=sub.id, user_id=make_user().id, score=8))
        db.session.commit()
        login(make_user(role="curator"))

        resp = self._review(client, sub.id, score=9)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["curator_xp"] == 60
        assert body["audience_xp"] == 20
        db.session.expire_all()
        assert db.session.get(User, owner.id).xp == 80
        assert db.session.get(Submission, sub.id).status == "reviewed"
        sources = {r.source for r in db.session.query(XpLog).filter_by(user_id=owner.id)}
        assert sources == {"curator_rating", "audience_rating"}

    def test_one_review_per_curator(self, client, make_user, login, make_submission, open_session):
        open_session()
        sub = make_submission(make_user())
        login(make_user(role="curator"))
        assert self._review(client, sub.id).status_code == 200
        assert self._review(client, sub.id).status_code == 400
        assert db.session.query(Review).count() == 1

    def test_score_validation(self, client, make_user, login, make_submission, open_session):
        open_session()
        sub = make_submission(make_user())
        login(make_user(role="curator"))
        assert self._review(client, sub.id, score=7.3).status_code == 400
        assert self._review(client, sub.id, score=11).status_code == 400

    @pytest.mark.parametrize("bad", ["nan", "inf", "-inf", "NaN"])
    def test_non_finite_scores_rejected(self, client, make_user, login, make_submission, open_session, bad):
        open_session()
        sub = make_submission(make_user())
        login(make_user(role="curator"))
        assert self._review(client, sub.id, score=bad).status_code == 400
        assert db.session.query(Review).count() == 0

    def test_low_scores_grant_nothing(self, client, make_user, login, make_submission, open_session):
        open_session()
        owner = make_user()
        sub = make_submission(owner)
        login(make_user(role="curator"))
        body = self._review(client, sub.id, score=5).get_json()
        assert body["curator_xp"] == 0
        assert body["audience_xp"] == 0


class TestAudienceRatings:
    def test_rate_once(self, client, make_user, login, make_submission, open_session):
        open_session()
        sub = make_submission(make_user())
        login(make_user())
        resp = client.post("/api/audience-ratings", json={"submission_id": sub.id, "score": 7})
        assert resp.get_json() == {"success": True, "count": 1, "average": 7.0}
        again = client.post("/api/audience-ratings", json={"submission_id": sub.id, "score": 7})
        assert again.status_code == 400

    @pytest.mark.parametrize("bad", ["nan", "inf", "-inf", "NaN"])
    def test_non_finite_score_rejected(self, client, make_user, login, make_submission, open_session, bad):
        open_session()
        sub = make_submission(make_user())
        login(make_user())
        resp = client.post("/api/audience-ratings", json={"submission_id": sub.id, "score": bad})
        assert resp.status_code == 400
        assert db.session.query(AudienceRating).count() == 0

    def test_cannot_rate_own(self, client, make_user, login, make_submission, open_session):
        open_session()
        owner = make_user()
        sub = make_submission(owner)
        login(owner)
        resp = client.post("/api/audience-ratings", json={"submission_id": sub.id, "score": 7})
        assert resp.status_code == 400

    def test_summary(self, client, make_user, make_submission, open_session):
        open_session()
        sub = make_submission(make_user())
        for score in (6, 8):
            db.session.add(AudienceRating(submission_id=sub.id, user_id=make_user().id, score=score))
        db.session.commit()
        body = client.get(f"/api/audience-ratings/{sub.id}").get_json()
        assert body["count"] == 2
        assert body["average"] == 7.0
