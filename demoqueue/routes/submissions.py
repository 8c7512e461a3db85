"""Submission routes: submit and edit tracks, queue, carryover, SoundCloud oEmbed."""

from datetime import datetime
from typing import Optional

import requests
from flask import request, jsonify

from ..core import (
    app, db, get_current_user,
    closed_session_numbers,
    get_open_session,
    get_or_create_open_session,
    get_user_session_xp,
    grant_xp,
    next_queue_position,
    pending_queue,
    submissions_are_open,
    tick_time_xp,
    _broadcast_queue_state,
    _require_curator,
    _serialize_submission,
)
from ..extensions import SUBMISSION_COOLDOWN_MIN, sanitize_description
from ..mailer import send_submission_confirmation
from ..models import Review, Submission, SubmissionSession, User, UserToken
from ..soundcloud import fetch_oembed, is_valid_soundcloud_url, normalize_soundcloud_url
from ..twitch import is_channel_live, user_subscribed_to_channel
from ..xp import CARRYOVER_XP, SUB_OR_DONATION_XP

DUPLICATE_OTHER_ACCOUNT = (
    "This track has already been submitted by another account. Sharing the same link from "
    "multiple accounts is strictly prohibited and may result in a ban on Twitch."
)


# -----------------
# Error Handlers
# -----------------

@app.errorhandler(500)
def internal_error(e):
    original = getattr(e, "original_exception", None)
    app.logger.error("Unhandled error on %s: %r", request.path, original or e)
    db.session.rollback()
    return jsonify({"error": "Internal server error"}), 500


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


# -----------------
# Helpers
# -----------------

def _serialize_review(review: Review) -> dict:
    return {
        "sound_score": review.sound_score,
        "structure_score": review.structure_score,
        "mix_score": review.mix_score,
        "vibe_score": review.vibe_score,
        "created_at": review.created_at.isoformat() if review.created_at else None,
    }


def _with_reviews(sub: Submission) -> dict:
    payload = _serialize_submission(sub)
    payload["reviews"] = [_serialize_review(r) for r in sub.reviews]
    return payload


def _clean_text(value, limit: int = 255) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:limit] or None


def _minutes_left(since: datetime, now: datetime) -> int:
    elapsed = (now - since).total_seconds() / 60
    if elapsed >= SUBMISSION_COOLDOWN_MIN:
        return 0
    return max(1, int(SUBMISSION_COOLDOWN_MIN - elapsed + 0.999))


def _plural_minutes(n: int) -> str:
    return f"{n} minute{'s' if n != 1 else ''}"


def _latest_carryover_at(user_id: int) -> Optional[datetime]:
    """When the user's most recent submission was transferred to carryover."""
    latest = None
    skipped = (
        db.session.query(Submission)
        .filter(Submission.user_id == user_id, Submission.status == "carryover")
        .order_by(Submission.updated_at.desc())
        .first()
    )
    if skipped:
        latest = skipped.updated_at

    closed = (
        db.session.query(SubmissionSession)
        .filter(SubmissionSession.ended_at.isnot(None))
        .all()
    )
    ended_at = {s.session_number: s.ended_at for s in closed}
    if ended_at:
        left_behind = (
            db.session.query(Submission.session_number)
            .filter(
                Submission.user_id == user_id,
                Submission.status == "pending",
                Submission.session_number.in_(list(ended_at)),
            )
            .all()
        )
        for row in left_behind:
            ts = ended_at.get(row.session_number)
            if ts and (latest is None or ts > latest):
                latest = ts
    return latest


def _submission_blocked(user: User, url: str, session_number: int, session_open: bool) -> Optional[dict]:
    """First rule that forbids `user` submitting `url`, as an error payload."""
    now = datetime.utcnow()

    if not user.is_tester():
        transferred_at = _latest_carryover_at(user.id)
        if transferred_at:
            left = _minutes_left(transferred_at, now)
            if left:
                return {
                    "error": (
                        "Your previous submission was moved to carryover. You must wait "
                        f"{_plural_minutes(left)} before submitting again. This happens when you miss "
                        "the feedback livestream or the curator moves your track to another session."
                    ),
                    "warning": False,
                }

    mine = (
        db.session.query(Submission)
        .filter(Submission.user_id == user.id, Submission.session_number == session_number)
        .order_by(Submission.created_at.desc())
        .all()
    )
    if mine:
        if not session_open:
            return {
                "error": (
                    "You have already submitted 1 track in this session. A second submission is only "
                    "allowed while the session is still open. This session has been closed."
                ),
                "warning": False,
            }
        left = _minutes_left(mine[0].created_at, now)
        if left:
            return {
                "error": (
                    "You have already submitted 1 track in this session. A second submission is allowed "
                    f"only after {SUBMISSION_COOLDOWN_MIN} minutes have passed since your last submission. "
                    f"Please wait {_plural_minutes(left)} more."
                ),
                "warning": False,
            }

    if any(s.soundcloud_url == url for s in mine):
        return {
            "error": "This track has already been submitted in this session. Each track can only be submitted once per session.",
            "warning": False,
        }

    earlier = (
        db.session.query(Submission.id)
        .filter(
            Submission.user_id == user.id,
            Submission.soundcloud_url == url,
            Submission.session_number != session_number,
        )
        .first()
    )
    if earlier:
        return {
            "error": "This track was already submitted in a previous session. You cannot submit the same song again.",
            "warning": False,
        }

    other = (
        db.session.query(Submission.id)
        .filter(Submission.soundcloud_url == url, Submission.user_id != user.id)
        .first()
    )
    if other:
        return {"error": DUPLICATE_OTHER_ACCOUNT, "code": "DUPLICATE_LINK_OTHER_ACCOUNT"}
    return None


def _grant_sub_xp_once(user: User, session_number: int) -> None:
    """Subscriber bonus, at most once per session. Best-effort."""
    usx = get_user_session_xp(user.id, session_number, create=False)
    if usx and usx.sub_xp_granted:
        return
    tok = db.session.query(UserToken).filter_by(user_id=user.id).first()
    if not tok or not tok.is_fresh():
        return
    try:
        subscribed = user_subscribed_to_channel(user.twitch_id, tok.access_token)
    except (requests.RequestException, RuntimeError) as e:
        app.logger.warning("Subscription check failed for user_id=%s: %s", user.id, e)
        return
    if not subscribed:
        return
    usx = usx or get_user_session_xp(user.id, session_number)
    grant_xp(user.id, SUB_OR_DONATION_XP, "subscription", f"Channel subscriber +{SUB_OR_DONATION_XP} XP")
    usx.sub_xp_granted = True
    usx.external_xp_this_session = int(usx.external_xp_this_session or 0) + SUB_OR_DONATION_XP


# -----------------
# Own submissions
# -----------------

@app.route("/api/submissions", methods=["GET"])
def list_my_submissions():
    """Pending submissions of the current user in the open session."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    current = get_open_session()
    if current is None:
        return jsonify({"submissions": []})

    rows = (
        db.session.query(Submission)
        .filter(
            Submission.user_id == user.id,
            Submission.status == "pending",
            Submission.session_number == current.session_number,
        )
        .order_by(Submission.created_at.desc())
        .all()
    )
    return jsonify({"submissions": [_with_reviews(s) for s in rows]})


@app.route("/api/submissions", methods=["POST"])
def create_submission():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    raw_url = data.get("soundcloud_url")
    if not raw_url or not isinstance(raw_url, str):
        return jsonify({"error": "SoundCloud URL is required"}), 400
    if not is_valid_soundcloud_url(raw_url):
        return jsonify({"error": "Invalid SoundCloud URL. Must be a valid SoundCloud track URL."}), 400
    url = normalize_soundcloud_url(raw_url)

    if not submissions_are_open():
        return jsonify({"error": "Submissions are currently closed. Please check back later."}), 403

    current = get_or_create_open_session()
    blocked = _submission_blocked(user, url, current.session_number, current.is_open)
    if blocked:
        db.session.rollback()
        return jsonify(blocked), 400

    description = data.get("description")
    sub = Submission(
        user_id=user.id,
        soundcloud_url=url,
        description=sanitize_description(description) or None if isinstance(description, str) else None,
        artist_name=_clean_text(data.get("artist_name")),
        song_title=_clean_text(data.get("song_title")),
        genre=_clean_text(data.get("genre"), 64),
        status="pending",
        session_number=current.session_number,
        queue_position=next_queue_position(current.session_number),
    )
    db.session.add(sub)
    db.session.commit()

    email = _clean_text(data.get("email")) or user.email
    if email:
        ok, msg = send_submission_confirmation(email, user.display_name or "User")
        if not ok:
            app.logger.warning("Could not send submission confirmation: %s", msg)

    _broadcast_queue_state()
    return jsonify({"success": True, "submission": _serialize_submission(sub), "message": "Demo submitted successfully"})


@app.route("/api/submissions/<int:submission_id>", methods=["GET"])
def get_submission(submission_id: int):
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401
    sub = db.session.get(Submission, submission_id)
    if not sub:
        return jsonify({"error": "Submission not found"}), 404
    if sub.user_id != user.id:
        return jsonify({"error": "Forbidden"}), 403
    return jsonify({"submission": _with_reviews(sub)})


@app.route("/api/submissions/<int:submission_id>", methods=["PUT"])
def update_submission(submission_id: int):
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    sub = db.session.get(Submission, submission_id)
    if not sub:
        return jsonify({"error": "Submission not found"}), 404
    if sub.user_id != user.id:
        return jsonify({"error": "Forbidden"}), 403
    if sub.status != "pending":
        return jsonify({"error": "Cannot edit submission that has already been reviewed"}), 400

    data = request.get_json(silent=True) or {}
    url = sub.soundcloud_url
    if data.get("soundcloud_url"):
        if not is_valid_soundcloud_url(data["soundcloud_url"]):
            return jsonify({"error": "Invalid SoundCloud URL. Must be a valid SoundCloud track URL."}), 400
        url = normalize_soundcloud_url(data["soundcloud_url"])

    if url != sub.soundcloud_url:
        other = (
            db.session.query(Submission.id)
            .filter(Submission.soundcloud_url == url, Submission.user_id != user.id)
            .first()
        )
        if other:
            return jsonify({"error": DUPLICATE_OTHER_ACCOUNT, "code": "DUPLICATE_LINK_OTHER_ACCOUNT"}), 400

    description = data.get("description")
    sub.soundcloud_url = url
    sub.description = sanitize_description(description) or None if isinstance(description, str) else None
    sub.artist_name = _clean_text(data.get("artist_name"))
    sub.song_title = _clean_text(data.get("song_title"))
    db.session.commit()

    _broadcast_queue_state()
    return jsonify({"success": True, "submission": _serialize_submission(sub), "message": "Submission updated successfully"})


@app.route("/api/submissions/reviewed")
def list_my_reviewed():
    """Reviewed submissions of the current user, any session."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401
    rows = (
        db.session.query(Submission)
        .filter(Submission.user_id == user.id, Submission.status == "reviewed")
        .order_by(Submission.created_at.desc())
        .all()
    )
    return jsonify({"submissions": [_with_reviews(s) for s in rows]})


# -----------------
# Queue / carryover
# -----------------

@app.route("/api/submissions/queue")
def submissions_queue():
    """Pending queue of the open session.

    While the channel is live and submissions are open, polling this also
    pays out time-based XP. The caller's subscriber bonus is checked once per
    session.
    """
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    current = get_open_session()
    if current is None:
        return jsonify({"queue": []})

    is_open = submissions_are_open()
    live = False
    try:
        live = is_channel_live()
    except (requests.RequestException, RuntimeError) as e:
        app.logger.warning("Live check failed: %s", e)

    if live and is_open:
        tick_time_xp(current)
    if is_open:
        _grant_sub_xp_once(user, current.session_number)
    db.session.commit()

    queue = []
    for pos, sub in enumerate(pending_queue(current.session_number), start=1):
        item = _serialize_submission(sub)
        item["position"] = pos
        queue.append(item)
    return jsonify({"queue": queue, "session_number": current.session_number})


@app.route("/api/submissions/carryover")
def submissions_carryover():
    """All pending submissions from closed sessions."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    closed = closed_session_numbers()
    if not closed:
        return jsonify({"carryover": [], "my_carryover_count": 0})

    rows = (
        db.session.query(Submission)
        .filter(Submission.status == "pending", Submission.session_number.in_(closed))
        .order_by(Submission.created_at.asc())
        .all()
    )
    mine = sum(1 for s in rows if s.user_id == user.id)
    return jsonify({"carryover": [_serialize_submission(s) for s in rows], "my_carryover_count": mine})


# -----------------
# Curator
# -----------------

@app.route("/api/submissions/pending")
def submissions_pending():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    rows = (
        db.session.query(Submission)
        .filter(Submission.status == "pending")
        .order_by(Submission.created_at.asc())
        .all()
    )
    out = []
    for sub in rows:
        item = _serialize_submission(sub)
        item["users"]["twitch_id"] = sub.user.twitch_id if sub.user else None
        out.append(item)
    return jsonify({"submissions": out})


@app.route("/api/submissions/by-url")
def submissions_by_url():
    """Every account that submitted a given link."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    raw = (request.args.get("url") or "").strip()
    if not raw:
        return jsonify({"error": "SoundCloud URL is required"}), 400

    rows = (
        db.session.query(Submission)
        .filter(Submission.soundcloud_url == normalize_soundcloud_url(raw))
        .order_by(Submission.created_at.asc())
        .all()
    )
    users = {}
    for sub in rows:
        entry = users.setdefault(
            sub.user_id,
            {
                "user_id": sub.user_id,
                "display_name": sub.user.display_name if sub.user else None,
                "twitch_id": sub.user.twitch_id if sub.user else None,
                "submission_count": 0,
                "first_submission_at": sub.created_at.isoformat() if sub.created_at else None,
            },
        )
        entry["submission_count"] += 1
    return jsonify({"users": list(users.values())})


@app.route("/api/submissions/<int:submission_id>/skip", methods=["POST"])
def skip_submission(submission_id: int):
    """Curator moves a pending submission to carryover; the submitter gets CARRYOVER_XP."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden: curator access required"}), 403

    sub = db.session.get(Submission, submission_id)
    if not sub:
        return jsonify({"error": "Submission not found"}), 404
    if sub.status != "pending":
        return jsonify({"error": "Only pending submissions can be skipped to carryover"}), 400

    sub.status = "carryover"
    sub.carryover_bonus_granted = True
    sub.queue_position = None
    grant_xp(sub.user_id, CARRYOVER_XP, "carryover", f"Track moved to carryover +{CARRYOVER_XP} XP")
    db.session.commit()

    _broadcast_queue_state()
    return jsonify({"success": True, "message": "Submission moved to carryover"})


# -----------------
# SoundCloud
# -----------------

@app.route("/api/soundcloud/oembed")
def soundcloud_oembed():
    url = (request.args.get("url") or "").strip()
    if not url or "soundcloud.com" not in url:
        return jsonify({"error": "Invalid SoundCloud URL"}), 400
    try:
        data = fetch_oembed(url)
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else 502
        return jsonify({"error": "Failed to fetch embed data"}), status
    except requests.RequestException as e:
        app.logger.warning("oEmbed fetch failed for %s: %s", url, e)
        return jsonify({"error": "Failed to fetch embed data"}), 502
    return jsonify(data)
