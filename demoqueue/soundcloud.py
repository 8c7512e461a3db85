"""SoundCloud link validation and oEmbed lookups."""

import re
from typing import Any, Dict
from urllib.parse import urlencode, urlsplit, parse_qs

import requests

SOUNDCLOUD_OEMBED_URL = "https://soundcloud.com/oembed"
SOUNDCLOUD_PLAYER_URL = "https://w.soundcloud.com/player/"

# soundcloud.com/<user>/<track>[/s-<share id>][?query] or on.soundcloud.com/<id>[?query]
SOUNDCLOUD_URL_RE = re.compile(
    r"^https://("
    r"(www\.)?soundcloud\.com/[a-zA-Z0-9_-]+/[a-zA-Z0-9_-]+(/s-[a-zA-Z0-9_-]+)?(\?.*)?"
    r"|on\.soundcloud\.com/[a-zA-Z0-9]+(\?.*)?"
    r")$"
)
_BARE_HOST_RE = re.compile(r"^((www\.)?soundcloud\.com/|on\.soundcloud\.com/)", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_soundcloud_url(url: str) -> str:
    """Trim and add https:// to bare soundcloud.com links."""
    url = (url or "").strip()
    if not _SCHEME_RE.match(url) and _BARE_HOST_RE.match(url):
        return f"https://{url}"
    return url


def is_valid_soundcloud_url(url: str) -> bool:
    if not isinstance(url, str):
        return False
    return bool(SOUNDCLOUD_URL_RE.match(normalize_soundcloud_url(url)))


def clean_oembed_url(url: str) -> str:
    """Drop tracking parameters; SoundCloud needs only `si` for private shares."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    si = parse_qs(parts.query).get("si")
    query = f"?{urlencode({'si': si[0]})}" if si else ""
    return f"{parts.scheme}://{parts.netloc}{parts.path}{query}"


def embed_player_url(track_url: str) -> str:
    if not track_url or "soundcloud.com" not in track_url:
        return ""
    clean = track_url.strip().split("?")[0].split("#")[0]
    params = {
        "url": clean,
        "color": "#ff5500",
        "auto_play": "false",
        "hide_related": "false",
        "show_comments": "true",
        "show_user": "true",
        "show_reposts": "false",
        "show_teaser": "true",
        "visual": "true",
    }
    return f"{SOUNDCLOUD_PLAYER_URL}?{urlencode(params)}"


def fetch_oembed(url: str) -> Dict[str, Any]:
    resp = requests.get(
        SOUNDCLOUD_OEMBED_URL,
        params={"url": clean_oembed_url(url), "format": "json"},
        timeout=10,
    )
    resp.raise_for_status()
    return resp.json()
