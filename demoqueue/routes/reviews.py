"""Curator reviews and audience ratings."""

import math

from flask import request, jsonify
from sqlalchemy import func

from ..core import (
    app, db, get_current_user,
    grant_xp,
    _broadcast_queue_state,
    _require_curator,
)
from ..extensions import REVIEW_CRITERIA
from ..models import AudienceRating, Review, Submission
from ..xp import audience_xp_from_score, curator_average, curator_xp_from_average


def _parse_score(value, step: float = 0.5):
    """Score in 0..10 on a `step` grid, or None."""
    if isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    if score < 0 or score > 10:
        return None
    if step and abs(score / step - round(score / step)) > 1e-9:
        return None
    return score


def _audience_summary(submission_id: int):
    count, avg = (
        db.session.query(func.count(AudienceRating.id), func.avg(AudienceRating.score))
        .filter(AudienceRating.submission_id == submission_id)
        .one()
    )
    return int(count or 0), (float(avg) if avg is not None else None)


@app.route("/api/reviews", methods=["POST"])
def create_review():
    """Record a curator review and pay the submitter rating XP.

    Curator XP comes from the average of the four criteria; audience XP from
    the mean audience score, when anyone rated the track.
    """
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    curator = _require_curator()
    if not curator:
        return jsonify({"error": "Forbidden: curator access required"}), 403

    data = request.get_json(silent=True) or {}
    try:
        submission_id = int(data.get("submission_id"))
    except (TypeError, ValueError):
        return jsonify({"error": "submission_id is required"}), 400

    scores = {}
    for key, label in REVIEW_CRITERIA:
        score = _parse_score(data.get(key))
        if score is None:
            return jsonify({"error": f"{label} score must be between 0 and 10 in steps of 0.5"}), 400
        scores[key] = score

    sub = db.session.get(Submission, submission_id)
    if not sub:
        return jsonify({"error": "Submission not found"}), 404

    existing = db.session.query(Review.id).filter_by(submission_id=sub.id, curator_id=curator.id).first()
    if existing:
        return jsonify({"error": "You have already reviewed this submission"}), 400

    review = Review(submission_id=sub.id, curator_id=curator.id, **scores)
    db.session.add(review)
    sub.status = "reviewed"
    sub.queue_position = None

    avg = curator_average(
        scores["sound_score"], scores["structure_score"], scores["mix_score"], scores["vibe_score"]
    )
    curator_xp = curator_xp_from_average(avg)
    if curator_xp:
        grant_xp(sub.user_id, curator_xp, "curator_rating", f"Curator rating {avg:.1f} +{curator_xp} XP")

    audience_count, audience_avg = _audience_summary(sub.id)
    audience_xp = 0
    if audience_count and audience_avg is not None:
        audience_xp = audience_xp_from_score(audience_avg)
        if audience_xp:
            grant_xp(
                sub.user_id, audience_xp, "audience_rating",
                f"Audience rating {audience_avg:.1f} +{audience_xp} XP",
            )
    db.session.commit()

    _broadcast_queue_state()
    return jsonify({
        "success": True,
        "review": {"id": review.id, "submission_id": sub.id, **scores},
        "average": round(avg, 2),
        "curator_xp": curator_xp,
        "audience_xp": audience_xp,
    })


@app.route("/api/audience-ratings", methods=["POST"])
def create_audience_rating():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    try:
        submission_id = int(data.get("submission_id"))
    except (TypeError, ValueError):
        return jsonify({"error": "submission_id is required"}), 400
    score = _parse_score(data.get("score"), step=0)
    if score is None:
        return jsonify({"error": "Score must be between 0 and 10"}), 400

    sub = db.session.get(Submission, submission_id)
    if not sub:
        return jsonify({"error": "Submission not found"}), 404
    if sub.user_id == user.id:
        return jsonify({"error": "You cannot rate your own submission"}), 400
    if sub.status != "pending":
        return jsonify({"error": "Rating is closed for this submission"}), 400

    already = db.session.query(AudienceRating.id).filter_by(submission_id=sub.id, user_id=user.id).first()
    if already:
        return jsonify({"error": "You have already rated this submission"}), 400

    db.session.add(AudienceRating(submission_id=sub.id, user_id=user.id, score=score))
    db.session.commit()

    count, avg = _audience_summary(sub.id)
    return jsonify({"success": True, "count": count, "average": avg})


@app.route("/api/audience-ratings/<int:submission_id>")
def get_audience_ratings(submission_id: int):
    if not db.session.get(Submission, submission_id):
        return jsonify({"error": "Submission not found"}), 404
    count, avg = _audience_summary(submission_id)
    return jsonify({"submission_id": submission_id, "count": count, "average": avg})
