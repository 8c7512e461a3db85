"""XP constants, balance helpers, rating brackets and queue promotion.

Everything in this module is pure: callers load a snapshot from the database,
pass plain values in, and persist whatever comes back (see state.py).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

XP_PER_POSITION = 100
MAX_MOVE_PER_SESSION = 3
# Max XP usable for queue moves per session (3 moves x 100).
MAX_XP_USABLE_PER_SESSION = MAX_MOVE_PER_SESSION * XP_PER_POSITION

# Move cap for the tester role.
UNLIMITED_MOVES = 999

# +5 XP per 5 minutes while the channel is live and submissions are open.
TIME_XP_PER_TICK = 5
TIME_TICK_MINUTES = 5

CARRYOVER_XP = 25
FOLLOW_XP = 10
SUB_OR_DONATION_XP = 20


# -----------------
# Rating brackets
# -----------------

def curator_average(sound: float, structure: float, mix: float, vibe: float) -> float:
    """Mean of the four curator sub-scores (0..10)."""
    return (sound + structure + mix + vibe) / 4


def curator_xp_from_average(avg: float) -> int:
    """9-10 -> 60, 8-8.9 -> 40, 7-7.9 -> 25, 6-6.9 -> 10, below 6 -> 0."""
    if avg >= 9:
        return 60
    if avg >= 8:
        return 40
    if avg >= 7:
        return 25
    if avg >= 6:
        return 10
    return 0


def audience_xp_from_score(score: float) -> int:
    """8-10 -> 20, 6-7.9 -> 10, below 6 -> 0."""
    if score >= 8:
        return 20
    if score >= 6:
        return 10
    return 0


# -----------------
# Balance helpers
# -----------------

def add_xp(current: int, amount: int) -> int:
    if amount <= 0:
        return current
    return current + amount


def deduct_xp(current: int, amount: int) -> int:
    """Balance after spending `amount`, never below zero."""
    if amount <= 0:
        return current
    return max(0, current - amount)


# -----------------
# Queue promotion
# -----------------

class QueueSnapshotError(ValueError):
    """The queue snapshot handed to promote_queue() is malformed."""


@dataclass(frozen=True)
class QueueItem:
    id: str
    user_id: str
    created_at: Optional[datetime] = None
    user_xp: int = 0
    moves_used_this_session: int = 0
    presence_minutes: float = 0.0


@dataclass
class PromotionResult:
    ordered: List[QueueItem]
    # user_id -> positions gained during this call only
    moves_delta: Dict[str, int] = field(default_factory=dict)


def potential_moves(user_xp: int, cap: int = MAX_MOVE_PER_SESSION) -> int:
    """How many positions a balance can buy this session, bounded by `cap`."""
    return min(cap, user_xp // XP_PER_POSITION)


def _check_snapshot(items: Sequence[QueueItem], move_caps: Mapping[str, int]) -> None:
    seen = set()
    for item in items:
        if item.id in seen:
            raise QueueSnapshotError(f"duplicate queue item id: {item.id!r}")
        seen.add(item.id)
        if item.user_xp < 0:
            raise QueueSnapshotError(f"negative user_xp for item {item.id!r}")
        if item.moves_used_this_session < 0:
            raise QueueSnapshotError(f"negative moves_used_this_session for item {item.id!r}")
        if item.presence_minutes < 0:
            raise QueueSnapshotError(f"negative presence_minutes for item {item.id!r}")
    for user_id, cap in move_caps.items():
        if cap < 0:
            raise QueueSnapshotError(f"negative move cap for user {user_id!r}")


def _can_overtake(above: QueueItem, below: QueueItem) -> bool:
    """Pairwise gap / tie-break rule for `below` swapping with `above`."""
    gap = above.user_xp - below.user_xp
    # Nobody leapfrogs a full position's worth of extra XP.
    if gap >= XP_PER_POSITION:
        return False
    # Close in XP: presence decides. Strict comparison, a gap of exactly
    # XP_PER_POSITION is not close.
    if abs(gap) < XP_PER_POSITION:
        return below.presence_minutes > above.presence_minutes
    return True


def promote_queue(
    items: Sequence[QueueItem],
    move_caps: Optional[Mapping[str, int]] = None,
) -> PromotionResult:
    """Spend XP to move queued submissions up, one position per step.

    `items` is the pending queue ordered by current position (index 0 is next
    to be reviewed). `move_caps` optionally replaces MAX_MOVE_PER_SESSION for
    specific users (e.g. UNLIMITED_MOVES for testers).

    Adjacent pairs are scanned front to back; an item that overtakes its
    predecessor is not looked at again until the next pass. Passes repeat
    until nothing changes. Moves are bounded per user by
    potential_moves() minus what was already used this session, so the loop
    always terminates.

    The input is not modified. Returned items carry the user's updated
    moves_used_this_session.
    """
    caps = dict(move_caps or {})
    _check_snapshot(items, caps)

    ordered = list(items)
    used: Dict[str, int] = {}
    allowance: Dict[str, int] = {}
    for item in ordered:
        # Snapshot values are per user; the first occurrence wins.
        used.setdefault(item.user_id, item.moves_used_this_session)
        if item.user_id not in allowance:
            cap = caps.get(item.user_id, MAX_MOVE_PER_SESSION)
            allowance[item.user_id] = potential_moves(item.user_xp, cap)

    delta: Dict[str, int] = {}
    changed = True
    while changed:
        changed = False
        for i in range(1, len(ordered)):
            above, below = ordered[i - 1], ordered[i]
            if used[below.user_id] < allowance[below.user_id] and _can_overtake(above, below):
                # The promoted item is not compared again until the next pass.
                ordered[i - 1], ordered[i] = below, above
                used[below.user_id] += 1
                delta[below.user_id] = delta.get(below.user_id, 0) + 1
                changed = True

    ordered = [
        replace(item, moves_used_this_session=used[item.user_id])
        if used[item.user_id] != item.moves_used_this_session
        else item
        for item in ordered
    ]
    return PromotionResult(ordered=ordered, moves_delta=delta)


# -----------------
# Single "Use XP" move
# -----------------

@dataclass(frozen=True)
class UseXpDecision:
    allowed: bool
    reason: str = ""
    my_index: int = -1
    my_submission_id: Optional[str] = None
    above_submission_id: Optional[str] = None


def validate_use_xp(
    *,
    items: Sequence[QueueItem],
    user_id: str,
    user_xp: int,
    moves_used_this_session: int,
    is_tester: bool,
    submissions_open: bool,
    above_user_xp: Optional[int],
) -> UseXpDecision:
    """Check whether `user_id` may spend XP_PER_POSITION to swap with the item above.

    Makes no state change; the caller swaps, debits and logs on success.
    """
    if not submissions_open:
        return UseXpDecision(False, "Submissions are closed.")
    if not items:
        return UseXpDecision(False, "Queue is empty.")

    my_index = next((idx for idx, it in enumerate(items) if it.user_id == user_id), -1)
    if my_index == -1:
        return UseXpDecision(False, "You don't have a submission in the queue.")
    if my_index == 0:
        return UseXpDecision(False, "You're already first in the queue.")
    # The first item is receiving feedback; nobody moves into that slot.
    if my_index == 1:
        return UseXpDecision(
            False,
            "The first in queue is receiving feedback. You can't move higher right now. No XP was used.",
        )

    if user_xp < XP_PER_POSITION:
        return UseXpDecision(False, f"Not enough XP (need {XP_PER_POSITION}).")

    move_cap = UNLIMITED_MOVES if is_tester else MAX_MOVE_PER_SESSION
    if moves_used_this_session >= move_cap:
        if is_tester:
            return UseXpDecision(False, "Session move limit reached.")
        return UseXpDecision(False, f"Max moves this session ({MAX_MOVE_PER_SESSION}) reached.")

    if above_user_xp is not None and above_user_xp >= user_xp + XP_PER_POSITION:
        return UseXpDecision(
            False,
            f"Can't move up: the person above has {XP_PER_POSITION}+ more XP than you. "
            "You need more XP to overtake them.",
        )

    return UseXpDecision(
        True,
        f"Spend {XP_PER_POSITION} XP to move up 1 position.",
        my_index=my_index,
        my_submission_id=items[my_index].id,
        above_submission_id=items[my_index - 1].id,
    )
