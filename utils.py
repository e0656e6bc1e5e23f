"""Small helpers shared by the agent, the actuator and the CLI."""
from __future__ import annotations

import re
from typing import Optional

# Explicit URLs, or a bare host ending in a common TLD preceded by start/whitespace.
URL_PATTERN = re.compile(
    r"(https?://[^\s]+)"
    r"|(?:^|\s)((?:[a-zA-Z0-9-]+\.)+(?:com|org|edu|gov|net|io|ai|app|dev|co|me|info|biz)\b)"
)

_TRAILING_PUNCTUATION = ".,;:!?)]}'\""

KEY_ALIASES = {
    "enter": "Enter",
    "return": "Enter",
    "esc": "Escape",
    "escape": "Escape",
    "tab": "Tab",
    "space": "Space",
    "spacebar": "Space",
    "backspace": "Backspace",
    "delete": "Delete",
    "del": "Delete",
    "insert": "Insert",
    "home": "Home",
    "end": "End",
    "pageup": "PageUp",
    "page_up": "PageUp",
    "pagedown": "PageDown",
    "page_down": "PageDown",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "arrowup": "ArrowUp",
    "arrowdown": "ArrowDown",
    "arrowleft": "ArrowLeft",
    "arrowright": "ArrowRight",
    "shift": "Shift",
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "option": "Alt",
    "meta": "Meta",
    "cmd": "Meta",
    "command": "Meta",
    "super": "Meta",
    "win": "Meta",
    "capslock": "CapsLock",
    "/": "Slash",
    "\\": "Backslash",
}


def detect_url(text: str) -> Optional[str]:
    """Return the first URL-like token in free text, normalized, or None."""
    match = URL_PATTERN.search(text or "")
    if not match:
        return None
    raw = match.group(1) or match.group(2)
    raw = raw.rstrip(_TRAILING_PUNCTUATION)
    if not raw:
        return None
    return normalize_url(raw)


def normalize_url(url: str) -> str:
    """Prefix https:// when no scheme is present."""
    url = url.strip()
    if url.startswith(("http://", "https://", "file://", "about:")):
        return url
    return f"https://{url}"


def get_trimmed_url(url: str, max_len: int) -> str:
    """Drop the fragment and trailing slash, then cap the length for logging."""
    trimmed = (url or "").split("#", 1)[0].rstrip("/")
    if len(trimmed) > max_len:
        return trimmed[: max_len - 3] + "..."
    return trimmed


def normalize_key(raw_key: str) -> str:
    """Map a model key name (e.g. CTRL, ARROWLEFT, ctrl+a) to a Playwright key name."""
    key = str(raw_key).strip()
    if not key:
        return key

    def normalize_piece(piece: str) -> str:
        p = piece.strip()
        if not p:
            return p
        return KEY_ALIASES.get(p.lower(), p if len(p) == 1 else p[:1].upper() + p[1:].lower())

    if "+" in key and len(key) > 1:
        return "+".join(normalize_piece(piece) for piece in key.split("+"))
    return normalize_piece(key)


def key_combination(keys: list[str]) -> str:
    """Join a keypress action's keys into one chord, e.g. ["CTRL", "a"] -> "Control+a"."""
    return "+".join(normalize_key(k) for k in keys if str(k).strip())
