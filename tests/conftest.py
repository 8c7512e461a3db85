import os
import tempfile
from datetime import datetime, timedelta

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="demoqueue-tests-")
os.environ["DB_PATH"] = os.path.join(_DB_DIR, "test.db")
os.environ["DATABASE_URL"] = ""
# No outbound calls: Twitch helpers raise RuntimeError, the mailer returns early.
os.environ["TWITCH_CLIENT_ID"] = ""
os.environ["TWITCH_CLIENT_SECRET"] = ""
os.environ["RESEND_API_KEY"] = ""

from demoqueue import app as flask_app, db  # noqa: E402
from demoqueue.models import Submission, SubmissionSession, User  # noqa: E402


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="user", xp=0, name=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(twitch_id=f"tw{n}", display_name=name or f"user{n}", role=role, xp=xp)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess["user_id"] = user.id

    return _login


@pytest.fixture
def open_session(app):
    def _open(number=1):
        current = SubmissionSession(session_number=number, started_at=datetime.utcnow())
        db.session.add(current)
        db.session.commit()
        return current

    return _open


@pytest.fixture
def make_submission(app):
    counter = {"n": 0}

    def _make(user, session_number=1, position=None, status="pending", age_minutes=120, url=None):
        counter["n"] += 1
        sub = Submission(
            user_id=user.id,
            soundcloud_url=url or f"https://soundcloud.com/artist{counter['n']}/track",
            status=status,
            session_number=session_number,
            queue_position=position,
            created_at=datetime.utcnow() - timedelta(minutes=age_minutes),
        )
        db.session.add(sub)
        db.session.commit()
        return sub

    return _make
