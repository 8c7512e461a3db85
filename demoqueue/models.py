"""SQLAlchemy models.

Tables mirror the managed Postgres schema the service was first deployed on;
on a fresh sqlite file they are created on import.
"""

from datetime import datetime

from .extensions import app, db, ROLE_USER, ROLE_CURATOR, ROLE_TESTER


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    twitch_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    profile_image_url = db.Column(db.String(512), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_USER)  # user|curator|tester
    xp = db.Column(db.Integer, nullable=False, default=0)
    # FOLLOW_XP is granted only once per account.
    follow_bonus_granted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def is_curator(self) -> bool:
        return self.role == ROLE_CURATOR

    def is_tester(self) -> bool:
        return self.role == ROLE_TESTER


class UserToken(db.Model):
    """Twitch user tokens, kept for follow/subscription checks."""

    __tablename__ = "user_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    access_token = db.Column(db.String(255), nullable=False)
    refresh_token = db.Column(db.String(255), nullable=False, default="")
    expires_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def is_fresh(self, margin_sec: int = 60) -> bool:
        if not self.access_token or not self.expires_at:
            return False
        return (self.expires_at - datetime.utcnow()).total_seconds() > margin_sec


class AppConfig(db.Model):
    """Singleton row (id=1)."""

    __tablename__ = "app_config"

    id = db.Column(db.Integer, primary_key=True)
    submissions_open = db.Column(db.Boolean, nullable=False, default=True)


class SubmissionSession(db.Model):
    __tablename__ = "submission_sessions"

    id = db.Column(db.Integer, primary_key=True)
    session_number = db.Column(db.Integer, unique=True, nullable=False, index=True)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    # NULL while the session is open; exactly one session is open at a time.
    ended_at = db.Column(db.DateTime, nullable=True, index=True)

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class Submission(db.Model):
    __tablename__ = "submissions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    soundcloud_url = db.Column(db.String(512), nullable=False, index=True)
    artist_name = db.Column(db.String(255), nullable=True)
    song_title = db.Column(db.String(255), nullable=True)
    genre = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(16),
        nullable=False,
        default="pending",  # pending|reviewed|carryover
        index=True,
    )
    session_number = db.Column(db.Integer, nullable=False, index=True)
    # 1 = next to be reviewed. NULL sorts last, then created_at.
    queue_position = db.Column(db.Integer, nullable=True)
    time_based_xp = db.Column(db.Integer, nullable=False, default=0)
    last_time_xp_tick_at = db.Column(db.DateTime, nullable=True)
    carryover_bonus_granted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = db.relationship("User", lazy="joined")


class Review(db.Model):
    """Curator scores for one submission (0..10, step 0.5)."""

    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("submissions.id"), nullable=False, index=True)
    curator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sound_score = db.Column(db.Float, nullable=False)
    structure_score = db.Column(db.Float, nullable=False)
    mix_score = db.Column(db.Float, nullable=False)
    vibe_score = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("submission_id", "curator_id", name="ux_reviews_submission_curator"),
    )

    submission = db.relationship(
        "Submission",
        backref=db.backref("reviews", lazy="select", cascade="all, delete-orphan"),
    )


class AudienceRating(db.Model):
    __tablename__ = "audience_ratings"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("submissions.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    score = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("submission_id", "user_id", name="ux_audience_ratings_submission_user"),
    )

    submission = db.relationship(
        "Submission",
        backref=db.backref("audience_ratings", lazy="select", cascade="all, delete-orphan"),
    )


class UserSessionXp(db.Model):
    """Per user, per session XP bookkeeping."""

    __tablename__ = "user_session_xp"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    session_number = db.Column(db.Integer, nullable=False, index=True)
    moves_used_this_session = db.Column(db.Integer, nullable=False, default=0)
    presence_minutes = db.Column(db.Float, nullable=False, default=0.0)
    sub_xp_granted = db.Column(db.Boolean, nullable=False, default=False)
    donation_xp_granted = db.Column(db.Boolean, nullable=False, default=False)
    external_xp_this_session = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "session_number", name="ux_user_session_xp_user_session"),
    )


class XpLog(db.Model):
    """XP history shown to the user. Does not grant XP by itself."""

    __tablename__ = "xp_log"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    source = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)


with app.app_context():
    db.create_all()
