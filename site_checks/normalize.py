from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit


_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def normalize_url(raw: str) -> str:
    """
    Trim and default the scheme to https. Never fails; garbage is passed through
    and left to fail at the network stage.
    """
    s = str(raw or "").strip()
    if s.startswith(("http://", "https://")):
        return s
    return f"https://{s}"


def safe_url(url: str) -> str:
    """
    Drop query/fragment so long or sensitive querystrings stay out of logs.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except Exception:
        return s[:500]


def screenshot_file_name(url: str, *, prefix: str = "", now: datetime | None = None) -> str:
    ts = now or datetime.now(timezone.utc)
    millis = int(ts.timestamp() * 1000)
    stem = _NON_ALNUM_RE.sub("_", str(url or ""))[:200]
    name = f"{stem}_{millis}_{uuid.uuid4().hex[:8]}.jpg"
    prefix = (prefix or "").strip("/")
    return f"{prefix}/{name}" if prefix else name
