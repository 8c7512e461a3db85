import requests

from demoqueue import mailer


class _Response:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text
        self.content = b"{}" if payload else b""

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


def test_without_api_key_nothing_is_sent(app, monkeypatch):
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    def fail(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(mailer.requests, "post", fail)
    ok, msg = mailer.send_submission_confirmation("a@example.com", "Artist")
    assert ok is False
    assert "RESEND_API_KEY" in msg


def test_sends_confirmation(app, monkeypatch):
    monkeypatch.setenv("RESEND_API_KEY", "key")
    sent = {}

    def fake_post(url, headers, json, timeout):
        sent.update(url=url, headers=headers, json=json)
        return _Response(200, {"id": "em_1"})

    monkeypatch.setattr(mailer.requests, "post", fake_post)
    ok, msg = mailer.send_submission_confirmation("a@example.com", "<b>Artist</b>")
    assert (ok, msg) == (True, "em_1")
    assert sent["url"] == mailer.RESEND_EMAILS_URL
    assert sent["headers"]["Authorization"] == "Bearer key"
    assert sent["json"]["to"] == ["a@example.com"]
    assert "&lt;b&gt;Artist&lt;/b&gt;" in sent["json"]["html"]


def test_error_status_reported(app, monkeypatch):
    monkeypatch.setenv("RESEND_API_KEY", "key")
    monkeypatch.setattr(mailer.requests, "post", lambda *a, **kw: _Response(422, text="bad from"))
    assert mailer.resend_send_email(to_email="a@example.com", subject="s", html="h") == (False, "422: bad from")


def test_network_failure_reported(app, monkeypatch):
    monkeypatch.setenv("RESEND_API_KEY", "key")

    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(mailer.requests, "post", boom)
    ok, msg = mailer.resend_send_email(to_email="a@example.com", subject="s", html="h")
    assert ok is False
    assert "down" in msg
