import os

import bleach
from dotenv import load_dotenv
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO

load_dotenv()

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

# -------------------------
# Twitch
# -------------------------
TWITCH_CLIENT_ID = (os.getenv("TWITCH_CLIENT_ID") or "").strip()
TWITCH_CLIENT_SECRET = (os.getenv("TWITCH_CLIENT_SECRET") or "").strip()
TWITCH_REDIRECT_URI = (os.getenv("TWITCH_REDIRECT_URI") or "").strip()
# Channel whose live status / followers / subscribers earn XP.
TWITCH_CHANNEL_LOGIN = (os.getenv("TWITCH_CHANNEL_LOGIN") or "mikegtcoff").strip().lower()
TWITCH_SCOPES = "user:read:email user:read:follows user:read:subscriptions"

# -------------------------
# Submissions
# -------------------------
# A second submission in the same session (and any submission after a
# carryover) must wait this long.
SUBMISSION_COOLDOWN_MIN = int(os.getenv("SUBMISSION_COOLDOWN_MIN", "60"))

ALLOWED_DESCRIPTION_TAGS = ["b", "strong", "i", "em", "u", "br", "p"]


def sanitize_description(raw: str) -> str:
    return bleach.clean(raw or "", tags=ALLOWED_DESCRIPTION_TAGS, attributes={}, strip=True).strip()


app = Flask(__name__)
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "change_this_secret_key")
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["SESSION_COOKIE_SECURE"] = os.getenv("SESSION_COOKIE_SECURE", "0") == "1"
# Login lasts a week.
app.config["PERMANENT_SESSION_LIFETIME"] = 60 * 60 * 24 * 7

DB_PATH = os.getenv(
    "DB_PATH",
    os.path.join(BASE_DIR, "demoqueue.db"),
)
# DATABASE_URL points at the managed Postgres in production; sqlite file otherwise.
app.config["SQLALCHEMY_DATABASE_URI"] = (os.getenv("DATABASE_URL") or "").strip() or f"sqlite:///{DB_PATH}"
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# Socket.IO handlers run on other threads than the request that created
# the sqlite connection.
if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:"):
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
    engine_opts = app.config["SQLALCHEMY_ENGINE_OPTIONS"]
    engine_opts.setdefault("connect_args", {})
    engine_opts["connect_args"].setdefault("check_same_thread", False)

db = SQLAlchemy(app)
socketio = SocketIO(app, cors_allowed_origins="*")

ROLE_USER = "user"
ROLE_CURATOR = "curator"
ROLE_TESTER = "tester"

# (key, label)
REVIEW_CRITERIA = [
    ("sound_score", "Sound"),
    ("structure_score", "Structure"),
    ("mix_score", "Mix"),
    ("vibe_score", "Vibe"),
]
