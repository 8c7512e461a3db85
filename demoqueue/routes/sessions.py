"""Session routes: open/close submissions, list and delete sessions."""

from flask import request, jsonify
from sqlalchemy import func

from ..core import (
    app, db, get_current_user,
    carry_over_into,
    close_session,
    get_app_config,
    get_open_session,
    get_or_create_open_session,
    _broadcast_queue_state,
    _require_curator,
)
from ..models import AudienceRating, Review, Submission, SubmissionSession, UserSessionXp


@app.route("/api/settings/submissions", methods=["GET"])
def get_submission_settings():
    cfg = get_app_config()
    current = get_open_session()
    db.session.commit()
    return jsonify({
        "submissions_open": bool(cfg.submissions_open),
        "session_number": current.session_number if current else None,
    })


@app.route("/api/settings/submissions", methods=["POST"])
def set_submission_settings():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    data = request.get_json(silent=True) or {}
    want_open = data.get("submissions_open")
    if not isinstance(want_open, bool):
        return jsonify({"error": "submissions_open must be a boolean"}), 400

    cfg = get_app_config()
    moved = 0
    carried = 0
    if want_open and not cfg.submissions_open:
        current = get_or_create_open_session()
        moved = carry_over_into(current)
    elif not want_open and cfg.submissions_open:
        current = get_open_session()
        if current is not None:
            carried = close_session(current)
    cfg.submissions_open = want_open
    db.session.commit()

    app.logger.info(
        "Submissions %s (moved_from_carryover=%s, carryover_bonus=%s)",
        "opened" if want_open else "closed", moved, carried,
    )
    _broadcast_queue_state()
    current = get_open_session()
    return jsonify({
        "success": True,
        "submissions_open": want_open,
        "session_number": current.session_number if current else None,
        "moved_from_carryover": moved,
        "carryover_bonus_granted": carried,
    })


@app.route("/api/sessions")
def list_sessions():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    counts = dict(
        db.session.query(Submission.session_number, func.count(Submission.id))
        .group_by(Submission.session_number)
        .all()
    )
    rows = db.session.query(SubmissionSession).order_by(SubmissionSession.session_number.desc()).all()
    return jsonify({
        "sessions": [
            {
                "session_number": s.session_number,
                "started_at": s.started_at.isoformat() if s.started_at else None,
                "ended_at": s.ended_at.isoformat() if s.ended_at else None,
                "is_open": s.is_open,
                "submission_count": int(counts.get(s.session_number, 0)),
            }
            for s in rows
        ]
    })


@app.route("/api/sessions/delete", methods=["DELETE"])
def delete_sessions():
    """Delete sessions with their submissions, reviews and ratings."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    data = request.get_json(silent=True) or {}
    if data.get("delete_all") is True:
        numbers = [r.session_number for r in db.session.query(SubmissionSession.session_number).all()]
        numbers += [
            r.session_number
            for r in db.session.query(Submission.session_number).distinct().all()
            if r.session_number not in numbers
        ]
    else:
        raw = data.get("session_numbers")
        if not isinstance(raw, list) or not raw:
            return jsonify({"error": "session_numbers (non-empty list) or delete_all is required"}), 400
        try:
            numbers = sorted({int(n) for n in raw})
        except (TypeError, ValueError):
            return jsonify({"error": "session_numbers must be integers"}), 400

    if not numbers:
        return jsonify({"success": True, "deleted_sessions": 0, "deleted_submissions": 0})

    sub_ids = [
        r.id for r in db.session.query(Submission.id).filter(Submission.session_number.in_(numbers)).all()
    ]
    if sub_ids:
        db.session.query(Review).filter(Review.submission_id.in_(sub_ids)).delete(synchronize_session=False)
        db.session.query(AudienceRating).filter(
            AudienceRating.submission_id.in_(sub_ids)
        ).delete(synchronize_session=False)
        db.session.query(Submission).filter(Submission.id.in_(sub_ids)).delete(synchronize_session=False)
    db.session.query(UserSessionXp).filter(
        UserSessionXp.session_number.in_(numbers)
    ).delete(synchronize_session=False)
    deleted = (
        db.session.query(SubmissionSession)
        .filter(SubmissionSession.session_number.in_(numbers))
        .delete(synchronize_session=False)
    )
    db.session.commit()

    app.logger.info("Deleted sessions %s (%s submissions)", numbers, len(sub_ids))
    _broadcast_queue_state()
    return jsonify({"success": True, "deleted_sessions": deleted, "deleted_submissions": len(sub_ids)})
