"""Canonical dedup keys for share links and account handles.

Two references to the same video or account must collapse onto one key
regardless of query strings, fragments, or letter casing.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

DEFAULT_PLATFORM_BASE_URL = "https://www.tiktok.com"
PLATFORM_HOST_MARKER = "tiktok.com"

_HANDLE_IN_PATH_RE = re.compile(r"@([^/]+)")
_LEADING_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def _parse_absolute_url(value: str):
    try:
        parsed = urlsplit(value)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed


def normalize_url_key(raw: str | None) -> str:
    """Return scheme+host+path in lower case, or the trimmed input when unparsable."""
    if not raw:
        return ""
    candidate = raw.strip()
    parsed = _parse_absolute_url(candidate)
    if parsed is None:
        return candidate.lower()
    host = parsed.hostname or ""
    if parsed.port is not None:
        host = f"{host}:{parsed.port}"
    path = parsed.path or "/"
    return f"{parsed.scheme}://{host}{path}".lower()


def _account_url(handle: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/@{handle}".lower()


def normalize_account_key(
    raw: str | None,
    *,
    base_url: str = DEFAULT_PLATFORM_BASE_URL,
) -> str:
    """Return the canonical profile URL for a handle, `@handle`, or profile link."""
    value = (raw or "").strip()
    if not value:
        return ""
    cleaned = value.removeprefix("@")

    if f"{PLATFORM_HOST_MARKER}/" in cleaned:
        parsed = _parse_absolute_url(cleaned)
        if parsed is None:
            parsed = _parse_absolute_url(f"https://{_LEADING_SCHEME_RE.sub('', cleaned)}")
        if parsed is not None and PLATFORM_HOST_MARKER in (parsed.hostname or ""):
            match = _HANDLE_IN_PATH_RE.search(parsed.path)
            if match:
                return _account_url(match.group(1), base_url)
            return ""

    name = cleaned.removeprefix("@")
    if not name:
        return ""
    return _account_url(name, base_url)


def extract_account_name(raw: str | None, *, base_url: str = DEFAULT_PLATFORM_BASE_URL) -> str:
    normalized = normalize_account_key(raw, base_url=base_url)
    if not normalized:
        return ""
    parsed = _parse_absolute_url(normalized)
    if parsed is None:
        return ""
    match = _HANDLE_IN_PATH_RE.search(parsed.path)
    return match.group(1) if match else ""


def _strip_query(url: str | None) -> str:
    if not url:
        return ""
    trimmed = str(url).strip()
    if not trimmed:
        return ""
    return trimmed.split("?", 1)[0]


def build_video_share_link(
    *,
    share_url: str | None,
    share_info_url: str | None,
    item_id: str | None,
    author_handle: str | None,
    base_url: str = DEFAULT_PLATFORM_BASE_URL,
) -> str:
    root_link = _strip_query(share_url)
    if root_link:
        return root_link
    share_info_link = _strip_query(share_info_url)
    if share_info_link:
        return share_info_link
    if item_id and author_handle:
        return f"{base_url.rstrip('/')}/@{author_handle}/video/{item_id}"
    return ""


def pick_cover_url(video: dict[str, Any] | None) -> str:
    if not isinstance(video, dict):
        return ""
    for key in ("dynamic_cover", "cover", "origin_cover"):
        block = video.get(key)
        if not isinstance(block, dict):
            continue
        url_list = block.get("url_list")
        if not isinstance(url_list, list) or not url_list:
            continue
        candidate = url_list[0]
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return ""
