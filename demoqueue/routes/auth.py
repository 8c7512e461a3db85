"""Authentication routes: Twitch OAuth login, logout, current user."""

import secrets
from datetime import datetime, timedelta

import requests
from flask import request, redirect, session, jsonify

from ..core import app, db, get_current_user
from ..models import User, UserToken
from ..twitch import build_authorize_url, exchange_code_for_tokens, fetch_current_user


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "twitch_id": user.twitch_id,
        "display_name": user.display_name,
        "email": user.email,
        "profile_image_url": user.profile_image_url,
        "role": user.role,
        "xp": max(0, int(user.xp or 0)),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


@app.route("/api/auth/twitch")
def auth_twitch():
    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    try:
        url = build_authorize_url(state, redirect_uri=request.args.get("redirect_uri") or None)
    except RuntimeError as e:
        app.logger.warning("Twitch login unavailable: %s", e)
        return jsonify({"error": "twitch_not_configured"}), 503
    return redirect(url)


@app.route("/api/auth/twitch/callback")
def auth_twitch_callback():
    if request.args.get("error"):
        return redirect("/?error=auth_failed")

    code = (request.args.get("code") or "").strip()
    if not code:
        return redirect("/?error=no_code")

    expected_state = session.pop("oauth_state", None)
    if not expected_state or request.args.get("state") != expected_state:
        return redirect("/?error=bad_state")

    try:
        tokens = exchange_code_for_tokens(code)
        access_token = tokens["access_token"]
        twitch_user = fetch_current_user(access_token)
    except (requests.RequestException, RuntimeError, KeyError) as e:
        app.logger.exception("Twitch callback failed")
        return redirect(f"/?error=callback_failed&details={type(e).__name__}")

    twitch_id = str(twitch_user.get("id"))
    profile_image_url = (twitch_user.get("profile_image_url") or "").strip() or None

    user = db.session.query(User).filter_by(twitch_id=twitch_id).first()
    if user:
        user.display_name = twitch_user.get("display_name") or user.display_name
        user.email = twitch_user.get("email") or user.email
        user.profile_image_url = profile_image_url
    else:
        user = User(
            twitch_id=twitch_id,
            display_name=twitch_user.get("display_name"),
            email=twitch_user.get("email"),
            role="user",
            profile_image_url=profile_image_url,
        )
        db.session.add(user)
    db.session.flush()

    expires_in = int(tokens.get("expires_in") or 0)
    tok = db.session.query(UserToken).filter_by(user_id=user.id).first()
    if not tok:
        tok = UserToken(user_id=user.id)
        db.session.add(tok)
    tok.access_token = access_token
    tok.refresh_token = tokens.get("refresh_token") or ""
    tok.expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
    db.session.commit()

    session.permanent = True
    session["user_id"] = user.id
    session["twitch_id"] = twitch_id
    return redirect("/dashboard")


@app.route("/api/auth/logout", methods=["POST"])
def auth_logout():
    session.pop("user_id", None)
    session.pop("twitch_id", None)
    return jsonify({"success": True})


@app.route("/api/auth/me")
def auth_me():
    if not session.get("user_id"):
        return jsonify({"error": "Unauthorized"}), 401
    user = get_current_user()
    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": _user_payload(user)})
