"""XP routes: balances, history, queue moves and manual grants."""

import requests
from flask import request, jsonify

from ..core import (
    app, db, get_current_user,
    apply_promotion,
    get_open_session,
    get_user_session_xp,
    get_user_xp,
    grant_xp,
    load_queue_snapshot,
    log_xp,
    move_caps_for,
    moves_used,
    pending_queue,
    renumber_queue,
    spend_xp,
    submissions_are_open,
    _broadcast_queue_state,
    _require_curator,
    _require_tester,
)
from ..models import User, UserToken, XpLog
from ..twitch import is_channel_live, user_follows_channel
from ..xp import (
    FOLLOW_XP,
    MAX_XP_USABLE_PER_SESSION,
    SUB_OR_DONATION_XP,
    XP_PER_POSITION,
    QueueSnapshotError,
    promote_queue,
    validate_use_xp,
)


def _int_or_none(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(round(value))
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _decide_use_xp(user: User):
    """(decision, open session) for the single-move flow."""
    current = get_open_session()
    items = load_queue_snapshot(current) if current else []
    me = str(user.id)
    my_index = next((idx for idx, it in enumerate(items) if it.user_id == me), -1)
    above_xp = items[my_index - 1].user_xp if my_index > 0 else None
    decision = validate_use_xp(
        items=items,
        user_id=me,
        user_xp=max(0, int(user.xp or 0)),
        moves_used_this_session=moves_used(user.id, current.session_number) if current else 0,
        is_tester=user.is_tester(),
        submissions_open=submissions_are_open() and current is not None,
        above_user_xp=above_xp,
    )
    return decision, current


# -----------------
# Balances / history
# -----------------

@app.route("/api/xp")
def xp_summary():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    xp = get_user_xp(user.id)
    used_moves = 0
    external = 0
    current = get_open_session()
    if current is not None:
        usx = get_user_session_xp(user.id, current.session_number, create=False)
        if usx:
            used_moves = max(0, int(usx.moves_used_this_session or 0))
            external = max(0, int(usx.external_xp_this_session or 0))

    used_xp = min(used_moves * XP_PER_POSITION, MAX_XP_USABLE_PER_SESSION)
    return jsonify({
        "xp": xp,
        "moves_used_this_session": used_moves,
        "xp_used_this_session": used_xp,
        "xp_stored": xp,
        "external_xp_this_session": external,
        "unused_external": max(0, external - used_xp),
    })


@app.route("/api/xp/log")
def xp_log():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    limit = request.args.get("limit", default=50, type=int) or 50
    limit = max(1, min(limit, 100))
    rows = (
        db.session.query(XpLog)
        .filter(XpLog.user_id == user.id)
        .order_by(XpLog.created_at.desc(), XpLog.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({
        "entries": [
            {
                "id": r.id,
                "amount": r.amount,
                "source": r.source,
                "description": r.description,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
    })


@app.route("/api/xp/status")
def xp_status():
    """Whether time XP is running, and the viewer's follow status.

    The first time a follow is seen the account gets FOLLOW_XP.
    """
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    live = False
    try:
        live = is_channel_live()
    except (requests.RequestException, RuntimeError) as e:
        app.logger.warning("Live check failed: %s", e)

    following = None
    tok = db.session.query(UserToken).filter_by(user_id=user.id).first()
    if tok and tok.is_fresh():
        try:
            following = user_follows_channel(user.twitch_id, tok.access_token)
        except (requests.RequestException, RuntimeError) as e:
            app.logger.warning("Follow check failed for user_id=%s: %s", user.id, e)

    if following and not user.follow_bonus_granted:
        grant_xp(user.id, FOLLOW_XP, "follow", f"Followed the channel +{FOLLOW_XP} XP")
        user.follow_bonus_granted = True
        db.session.commit()

    is_open = submissions_are_open()
    return jsonify({
        "live": live,
        "submissions_open": is_open,
        "time_xp_active": live and is_open,
        "following": following,
        "xp": max(0, int(user.xp or 0)),
    })


# -----------------
# Single move
# -----------------

@app.route("/api/xp/can-move")
def xp_can_move():
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401
    decision, _ = _decide_use_xp(user)
    return jsonify({"allowed": decision.allowed, "reason": decision.reason})


@app.route("/api/xp/use", methods=["POST"])
def xp_use():
    """Spend XP_PER_POSITION to swap places with the submission directly above."""
    user = get_current_user()
    if not user:
        return jsonify({"error": "Unauthorized"}), 401

    decision, current = _decide_use_xp(user)
    if not decision.allowed:
        return jsonify({"error": decision.reason}), 400

    rows = pending_queue(current.session_number)
    idx = decision.my_index
    if idx >= len(rows) or str(rows[idx].id) != decision.my_submission_id:
        db.session.rollback()
        return jsonify({"error": "Queue changed, try again."}), 409
    rows[idx - 1], rows[idx] = rows[idx], rows[idx - 1]
    renumber_queue(rows)

    new_total = spend_xp(
        user.id, XP_PER_POSITION, "queue_move",
        f"Moved up 1 position in queue (-{XP_PER_POSITION} XP)",
    )
    log_xp(user.id, 0, "queue_bump", f"Queue position {idx + 1} -> {idx}", allow_zero=True)
    usx = get_user_session_xp(user.id, current.session_number)
    usx.moves_used_this_session = int(usx.moves_used_this_session or 0) + 1
    db.session.commit()

    _broadcast_queue_state()
    return jsonify({
        "success": True,
        "xp": new_total,
        "new_position": idx,
        "moves_used_this_session": usx.moves_used_this_session,
    })


@app.route("/api/xp/promote", methods=["POST"])
def xp_promote():
    """Run XP promotion over the whole open-session queue."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden: curator access required"}), 403

    current = get_open_session()
    if current is None:
        return jsonify({"error": "No open session"}), 400

    items = load_queue_snapshot(current)
    try:
        result = promote_queue(items, move_caps=move_caps_for(items))
    except QueueSnapshotError as e:
        app.logger.exception("Queue snapshot rejected for session %s", current.session_number)
        return jsonify({"error": str(e)}), 500

    apply_promotion(current, result)
    db.session.commit()

    if result.moves_delta:
        app.logger.info("Promoted queue of session %s: %s", current.session_number, result.moves_delta)
        _broadcast_queue_state()
    return jsonify({
        "success": True,
        "session_number": current.session_number,
        "order": [int(it.id) for it in result.ordered],
        "moves_delta": {int(uid): n for uid, n in result.moves_delta.items()},
    })


# -----------------
# Grants
# -----------------

@app.route("/api/xp/grant", methods=["POST"])
def xp_grant():
    """Curator adds (or with a negative amount, removes) XP. Defaults to self."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    curator = _require_curator()
    if not curator:
        return jsonify({"error": "Forbidden: Curator only"}), 403

    data = request.get_json(silent=True) or {}
    amount = _int_or_none(data.get("amount")) or 0
    if amount == 0:
        return jsonify({"error": "Amount must be a non-zero number"}), 400

    target_id = _int_or_none(data.get("user_id")) or curator.id
    target = db.session.get(User, target_id)
    if not target:
        return jsonify({"error": "User not found"}), 404

    is_self = target.id == curator.id
    if amount > 0:
        new_total = grant_xp(target.id, amount)
    else:
        new_total = spend_xp(target.id, -amount)
    suffix = " (self)" if is_self else ""
    verb = "granted +" if amount > 0 else "deducted "
    log_xp(target.id, amount, "curator_grant", f"Curator {verb}{abs(amount)} XP{suffix}")
    db.session.commit()

    name = "yourself" if is_self else (target.display_name or "user")
    if amount > 0:
        message = f"Granted {amount} XP to {name}."
    else:
        message = f"Deducted {-amount} XP from {name}."
    return jsonify({"success": True, "user_id": target.id, "amount": amount, "new_total": new_total, "message": message})


@app.route("/api/xp/grant-donation", methods=["POST"])
def xp_grant_donation():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden: Curator access required"}), 403

    data = request.get_json(silent=True) or {}
    user_id = _int_or_none(data.get("user_id"))
    if not user_id:
        return jsonify({"error": "user_id is required"}), 400
    if not db.session.get(User, user_id):
        return jsonify({"error": "User not found"}), 404

    current = get_open_session()
    if current is None:
        return jsonify({"error": "No open session; cannot grant donation XP"}), 400

    usx = get_user_session_xp(user_id, current.session_number)
    if usx.donation_xp_granted:
        db.session.rollback()
        return jsonify({"error": "Donation XP already granted for this user this session"}), 400

    grant_xp(user_id, SUB_OR_DONATION_XP, "donation", f"Donation +{SUB_OR_DONATION_XP} XP")
    usx.donation_xp_granted = True
    usx.external_xp_this_session = int(usx.external_xp_this_session or 0) + SUB_OR_DONATION_XP
    db.session.commit()
    return jsonify({"success": True, "message": f"+{SUB_OR_DONATION_XP} donation XP granted"})


@app.route("/api/xp/adjust", methods=["POST"])
def xp_adjust():
    """Testers change their own balance freely, clamped at zero."""
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    user = _require_tester()
    if not user:
        return jsonify({"error": "Forbidden: Tester role required to adjust XP"}), 403

    data = request.get_json(silent=True) or {}
    delta = _int_or_none(data.get("delta")) or 0
    current = max(0, int(user.xp or 0))
    if delta == 0:
        return jsonify({"xp": current})

    user.xp = max(0, current + delta)
    db.session.commit()
    return jsonify({"xp": user.xp, "delta": delta})


@app.route("/api/xp/clear-all", methods=["POST"])
def xp_clear_all():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden: curator access required"}), 403

    cleared = db.session.query(User).update({User.xp: 0}, synchronize_session="fetch")
    db.session.commit()
    app.logger.info("Cleared XP of %s users", cleared)
    return jsonify({"success": True, "message": "All XP cleared", "cleared": cleared})


@app.route("/api/users")
def list_users():
    if not get_current_user():
        return jsonify({"error": "Unauthorized"}), 401
    if not _require_curator():
        return jsonify({"error": "Forbidden"}), 403

    rows = db.session.query(User).order_by(User.display_name.asc()).all()
    return jsonify({"users": [{"id": u.id, "display_name": u.display_name} for u in rows]})
