"""Twitch OAuth and Helix helpers.

App token for stream/user lookups; the user's own token for follow and
subscription checks.
"""

import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from .extensions import (
    TWITCH_CHANNEL_LOGIN,
    TWITCH_CLIENT_ID,
    TWITCH_CLIENT_SECRET,
    TWITCH_REDIRECT_URI,
    TWITCH_SCOPES,
)

TWITCH_AUTHORIZE_URL = "https://id.twitch.tv/oauth2/authorize"
TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
HELIX_BASE = "https://api.twitch.tv/helix"

_app_token: Dict[str, Any] = {}
_broadcaster_id: Optional[str] = None


def _client_credentials():
    if not TWITCH_CLIENT_ID or not TWITCH_CLIENT_SECRET:
        raise RuntimeError("Twitch is not configured (TWITCH_CLIENT_ID/TWITCH_CLIENT_SECRET)")
    return TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET


def build_authorize_url(state: str, redirect_uri: Optional[str] = None) -> str:
    cid, _ = _client_credentials()
    params = {
        "client_id": cid,
        "redirect_uri": redirect_uri or TWITCH_REDIRECT_URI,
        "response_type": "code",
        "scope": TWITCH_SCOPES,
        "state": state,
        # Always show the consent screen so another account can be picked after logout.
        "force_verify": "true",
    }
    return f"{TWITCH_AUTHORIZE_URL}?{urlencode(params)}"


def exchange_code_for_tokens(code: str) -> Dict[str, Any]:
    cid, secret = _client_credentials()
    payload = {
        "client_id": cid,
        "client_secret": secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": TWITCH_REDIRECT_URI,
    }
    resp = requests.post(TWITCH_TOKEN_URL, data=payload, timeout=20)
    resp.raise_for_status()
    data = resp.json()
    expires_in = int(data.get("expires_in") or 0)
    data["expires_at"] = int(time.time()) + expires_in
    return data


def get_app_access_token() -> str:
    now = time.time()
    token = _app_token.get("access_token")
    if token and _app_token.get("expires_at", 0) > now + 60:
        return token

    cid, secret = _client_credentials()
    resp = requests.post(
        TWITCH_TOKEN_URL,
        data={"client_id": cid, "client_secret": secret, "grant_type": "client_credentials"},
        timeout=20,
    )
    resp.raise_for_status()
    data = resp.json()
    _app_token["access_token"] = data["access_token"]
    _app_token["expires_at"] = now + int(data.get("expires_in") or 0)
    return _app_token["access_token"]


def helix_get(path: str, params: Optional[Dict[str, Any]] = None, user_token: Optional[str] = None) -> Dict[str, Any]:
    cid, _ = _client_credentials()
    token = user_token or get_app_access_token()
    resp = requests.get(
        f"{HELIX_BASE}{path}",
        headers={"Authorization": f"Bearer {token}", "Client-Id": cid},
        params=params or {},
        timeout=20,
    )
    resp.raise_for_status()
    return resp.json()


def fetch_current_user(access_token: str) -> Dict[str, Any]:
    """Helix /users for the owner of `access_token`."""
    data = helix_get("/users", user_token=access_token)
    users = data.get("data") or []
    if not users:
        raise RuntimeError("No user data returned from Twitch API")
    return users[0]


def get_broadcaster_id() -> str:
    global _broadcaster_id
    if _broadcaster_id:
        return _broadcaster_id
    data = helix_get("/users", params={"login": TWITCH_CHANNEL_LOGIN})
    users = data.get("data") or []
    if not users:
        raise RuntimeError(f"Twitch user not found: {TWITCH_CHANNEL_LOGIN}")
    _broadcaster_id = str(users[0]["id"])
    return _broadcaster_id


def is_channel_live() -> bool:
    data = helix_get("/streams", params={"user_id": get_broadcaster_id()})
    return bool(data.get("data"))


def user_follows_channel(twitch_user_id: str, user_access_token: str) -> bool:
    """Needs the user:read:follows scope."""
    bid = get_broadcaster_id()
    data = helix_get(
        "/channels/followed",
        params={"user_id": twitch_user_id, "broadcaster_id": bid},
        user_token=user_access_token,
    )
    return any(str(f.get("broadcaster_id")) == bid for f in data.get("data") or [])


def user_subscribed_to_channel(twitch_user_id: str, user_access_token: str) -> bool:
    """Needs the user:read:subscriptions scope. Helix answers 404 for non-subscribers."""
    bid = get_broadcaster_id()
    try:
        data = helix_get(
            "/subscriptions/user",
            params={"user_id": twitch_user_id, "broadcaster_id": bid},
            user_token=user_access_token,
        )
    except requests.HTTPError as e:
        if e.response is not None and e.response.status_code == 404:
            return False
        raise
    return bool(data.get("data"))
