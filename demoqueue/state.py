"""Shared request helpers, session/XP bookkeeping and Socket.IO broadcasts.

The pure rules live in xp.py; this module loads their inputs from the
database and writes their results back. The open submission session is
always passed in explicitly.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import session
from sqlalchemy import func

from .extensions import app, db, socketio
from .models import (
    AppConfig,
    AudienceRating,
    Submission,
    SubmissionSession,
    User,
    UserSessionXp,
    XpLog,
)
from .soundcloud import embed_player_url
from .xp import (
    CARRYOVER_XP,
    TIME_TICK_MINUTES,
    TIME_XP_PER_TICK,
    UNLIMITED_MOVES,
    XP_PER_POSITION,
    PromotionResult,
    QueueItem,
    add_xp,
    deduct_xp,
)


# -----------------
# Auth helpers
# -----------------

def get_current_user() -> Optional[User]:
    user_id = session.get("user_id")
    if not user_id:
        return None
    return db.session.get(User, int(user_id))


def _require_curator() -> Optional[User]:
    user = get_current_user()
    if not user or not user.is_curator():
        return None
    return user


def _require_tester() -> Optional[User]:
    user = get_current_user()
    if not user or not user.is_tester():
        return None
    return user


# -----------------
# App config / sessions
# -----------------

def get_app_config() -> AppConfig:
    cfg = db.session.get(AppConfig, 1)
    if cfg is None:
        cfg = AppConfig(id=1, submissions_open=True)
        db.session.add(cfg)
        db.session.flush()
    return cfg


def submissions_are_open() -> bool:
    cfg = db.session.get(AppConfig, 1)
    return True if cfg is None else bool(cfg.submissions_open)


def get_open_session() -> Optional[SubmissionSession]:
    return (
        db.session.query(SubmissionSession)
        .filter(SubmissionSession.ended_at.is_(None))
        .order_by(SubmissionSession.session_number.desc())
        .first()
    )


def closed_session_numbers() -> List[int]:
    rows = (
        db.session.query(SubmissionSession.session_number)
        .filter(SubmissionSession.ended_at.isnot(None))
        .all()
    )
    return [r.session_number for r in rows]


def get_or_create_open_session() -> SubmissionSession:
    current = get_open_session()
    if current is not None:
        return current
    last = db.session.query(func.max(SubmissionSession.session_number)).scalar() or 0
    current = SubmissionSession(session_number=int(last) + 1, started_at=datetime.utcnow())
    db.session.add(current)
    db.session.flush()
    return current


def carry_over_into(target: SubmissionSession) -> int:
    """Move pending submissions of closed sessions into `target`.

    Only the oldest submission per (user, url) pair is moved.
    Returns the number of moved submissions.
    """
    closed = [n for n in closed_session_numbers() if n != target.session_number]
    if not closed:
        return 0
    rows = (
        db.session.query(Submission)
        .filter(Submission.status == "pending", Submission.session_number.in_(closed))
        .order_by(Submission.created_at.asc(), Submission.id.asc())
        .all()
    )
    seen = set()
    next_pos = next_queue_position(target.session_number)
    moved = 0
    for sub in rows:
        key = (sub.user_id, sub.soundcloud_url)
        if key in seen:
            continue
        seen.add(key)
        sub.session_number = target.session_number
        sub.queue_position = next_pos
        next_pos += 1
        moved += 1
    return moved


def close_session(current: SubmissionSession) -> int:
    """Grant CARRYOVER_XP to still-pending submitters and end the session.

    Returns the number of submissions that received the carryover bonus.
    """
    pending = (
        db.session.query(Submission)
        .filter(Submission.status == "pending", Submission.session_number == current.session_number)
        .all()
    )
    granted = 0
    for sub in pending:
        if sub.carryover_bonus_granted:
            continue
        grant_xp(sub.user_id, CARRYOVER_XP, "carryover", f"Session closed before review +{CARRYOVER_XP} XP")
        sub.carryover_bonus_granted = True
        granted += 1
    current.ended_at = datetime.utcnow()
    return granted


def get_user_session_xp(user_id: int, session_number: int, create: bool = True) -> Optional[UserSessionXp]:
    row = (
        db.session.query(UserSessionXp)
        .filter_by(user_id=user_id, session_number=session_number)
        .first()
    )
    if row is None and create:
        row = UserSessionXp(
            user_id=user_id,
            session_number=session_number,
            moves_used_this_session=0,
            presence_minutes=0.0,
        )
        db.session.add(row)
        db.session.flush()
    return row


def moves_used(user_id: int, session_number: int) -> int:
    row = get_user_session_xp(user_id, session_number, create=False)
    return max(0, int(row.moves_used_this_session or 0)) if row else 0


# -----------------
# Balance store
# -----------------

def get_user_xp(user_id: int) -> int:
    user = db.session.get(User, user_id)
    if not user:
        return 0
    return max(0, int(user.xp or 0))


def log_xp(user_id: int, amount: int, source: str, description: Optional[str] = None, allow_zero: bool = False) -> None:
    """Record an XP event in the user's history (does not change the balance)."""
    if amount == 0 and not allow_zero:
        return
    db.session.add(XpLog(user_id=user_id, amount=amount, source=source, description=description))


def grant_xp(user_id: int, amount: int, source: Optional[str] = None, description: Optional[str] = None) -> int:
    """Add XP to a user's balance and optionally log it. Returns the new total."""
    user = db.session.get(User, user_id)
    if not user:
        return 0
    user.xp = add_xp(max(0, int(user.xp or 0)), amount)
    if source and amount > 0:
        log_xp(user_id, amount, source, description)
    return user.xp


def spend_xp(user_id: int, amount: int, source: Optional[str] = None, description: Optional[str] = None) -> int:
    """Deduct XP (clamped at zero) and optionally log it. Returns the new total."""
    user = db.session.get(User, user_id)
    if not user:
        return 0
    user.xp = deduct_xp(max(0, int(user.xp or 0)), amount)
    if source and amount > 0:
        log_xp(user_id, -amount, source, description)
    return user.xp


# -----------------
# Queue
# -----------------

def pending_queue(session_number: int) -> List[Submission]:
    """Pending submissions by queue position, then creation time."""
    return (
        db.session.query(Submission)
        .filter(Submission.status == "pending", Submission.session_number == session_number)
        .order_by(
            Submission.queue_position.asc().nulls_last(),
            Submission.created_at.asc(),
            Submission.id.asc(),
        )
        .all()
    )


def next_queue_position(session_number: int) -> int:
    last = (
        db.session.query(func.max(Submission.queue_position))
        .filter(Submission.status == "pending", Submission.session_number == session_number)
        .scalar()
    )
    return int(last or 0) + 1


def renumber_queue(rows: List[Submission]) -> None:
    # Sequential unique positions; ties would let created_at reorder items.
    for idx, sub in enumerate(rows, start=1):
        sub.queue_position = idx


def load_queue_snapshot(current: SubmissionSession) -> List[QueueItem]:
    rows = pending_queue(current.session_number)
    user_ids = {s.user_id for s in rows}
    per_user: Dict[int, UserSessionXp] = {}
    if user_ids:
        for usx in (
            db.session.query(UserSessionXp)
            .filter(
                UserSessionXp.session_number == current.session_number,
                UserSessionXp.user_id.in_(user_ids),
            )
            .all()
        ):
            per_user[usx.user_id] = usx

    items = []
    for sub in rows:
        usx = per_user.get(sub.user_id)
        items.append(
            QueueItem(
                id=str(sub.id),
                user_id=str(sub.user_id),
                created_at=sub.created_at,
                user_xp=max(0, int(sub.user.xp or 0)) if sub.user else 0,
                moves_used_this_session=max(0, int(usx.moves_used_this_session or 0)) if usx else 0,
                presence_minutes=max(0.0, float(usx.presence_minutes or 0.0)) if usx else 0.0,
            )
        )
    return items


def move_caps_for(items: List[QueueItem]) -> Dict[str, int]:
    """Testers move without the session cap."""
    user_ids = {int(it.user_id) for it in items}
    if not user_ids:
        return {}
    testers = db.session.query(User.id).filter(User.id.in_(user_ids), User.role == "tester").all()
    return {str(r.id): UNLIMITED_MOVES for r in testers}


def apply_promotion(current: SubmissionSession, result: PromotionResult) -> None:
    """Persist the new order, per-user move counters and XP debits. Caller commits."""
    by_id = {str(s.id): s for s in pending_queue(current.session_number)}
    renumber_queue([by_id[item.id] for item in result.ordered if item.id in by_id])

    for user_id, gained in result.moves_delta.items():
        if gained <= 0:
            continue
        uid = int(user_id)
        usx = get_user_session_xp(uid, current.session_number)
        usx.moves_used_this_session = int(usx.moves_used_this_session or 0) + gained
        cost = gained * XP_PER_POSITION
        spend_xp(uid, cost, "queue_move", f"Moved up {gained} position(s) in queue (-{cost} XP)")


def tick_time_xp(current: SubmissionSession, now: Optional[datetime] = None) -> int:
    """Award time-based XP and presence minutes to every pending submitter.

    Call only while the channel is live and submissions are open.
    Returns the total XP awarded.
    """
    now = now or datetime.utcnow()
    tick = timedelta(minutes=TIME_TICK_MINUTES)
    total = 0
    for sub in pending_queue(current.session_number):
        base = sub.last_time_xp_tick_at or sub.created_at
        ticks = (now - base) // tick
        if ticks <= 0:
            continue
        amount = ticks * TIME_XP_PER_TICK
        grant_xp(sub.user_id, amount, "time", f"Time in live session +{amount} XP")
        sub.time_based_xp = int(sub.time_based_xp or 0) + amount
        sub.last_time_xp_tick_at = base + ticks * tick
        usx = get_user_session_xp(sub.user_id, current.session_number)
        usx.presence_minutes = float(usx.presence_minutes or 0.0) + ticks * TIME_TICK_MINUTES
        total += amount
    return total


def _submission_display_name(sub: Submission) -> str:
    artist = (sub.artist_name or "").strip()
    title = (sub.song_title or "").strip()
    if artist and title:
        return f"{artist} - {title}"
    return title or artist or sub.soundcloud_url


def _serialize_submission(sub: Submission) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "user_id": sub.user_id,
        "soundcloud_url": sub.soundcloud_url,
        "artist_name": sub.artist_name,
        "song_title": sub.song_title,
        "genre": sub.genre,
        "description": sub.description,
        "status": sub.status,
        "session_number": sub.session_number,
        "queue_position": sub.queue_position,
        "display_name": _submission_display_name(sub),
        "embed_url": embed_player_url(sub.soundcloud_url),
        "created_at": sub.created_at.isoformat() if sub.created_at else None,
        "updated_at": sub.updated_at.isoformat() if sub.updated_at else None,
        "users": {"display_name": sub.user.display_name if sub.user else None},
    }


def _serialize_queue_state(current: Optional[SubmissionSession]) -> Dict[str, Any]:
    if current is None:
        return {"session_number": None, "queue": []}
    out = []
    for pos, sub in enumerate(pending_queue(current.session_number), start=1):
        item = _serialize_submission(sub)
        item["position"] = pos
        out.append(item)
    return {"session_number": current.session_number, "queue": out}


def _serialize_panel_state(current: Optional[SubmissionSession]) -> Dict[str, Any]:
    """Queue state plus audience ratings per item and the carryover size."""
    state = _serialize_queue_state(current)
    ids = [item["id"] for item in state["queue"]]
    ratings = {}
    if ids:
        rows = (
            db.session.query(
                AudienceRating.submission_id,
                func.count(AudienceRating.id),
                func.avg(AudienceRating.score),
            )
            .filter(AudienceRating.submission_id.in_(ids))
            .group_by(AudienceRating.submission_id)
            .all()
        )
        ratings = {sid: (int(n), float(avg)) for sid, n, avg in rows}
    for item in state["queue"]:
        count, avg = ratings.get(item["id"], (0, None))
        item["audience_count"] = count
        item["audience_average"] = avg

    closed = closed_session_numbers()
    state["carryover_count"] = (
        db.session.query(func.count(Submission.id))
        .filter(Submission.status == "pending", Submission.session_number.in_(closed))
        .scalar()
        if closed
        else 0
    )
    return state


def _broadcast_queue_state() -> None:
    try:
        current = get_open_session()
        socketio.emit("queue_state", _serialize_queue_state(current), room="public")
        socketio.emit("panel_state", _serialize_panel_state(current), room="panel")
    except Exception as e:
        app.logger.warning("Failed to broadcast queue_state: %s", e)
