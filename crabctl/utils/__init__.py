"""Utility functions for crabctl."""

import re

_ANSI_PATTERN = re.compile(
    r"\x1b"  # ESC
    r"(?:"  # Start non-capturing group
    r"\[[0-9;?]*[a-zA-Z]"  # CSI sequences (ESC[...m, ESC[...H, etc.)
    r"|"
    r"\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC sequences (ESC]...BEL or ESC]...ST)
    r"|"
    r"[=>]"  # Simple sequences (ESC=, ESC>)
    r")"
)
_SGR_PATTERN = re.compile(r"\x1b\[([0-9;]*)m")

# SGR params that start a ghost-text run: dim, bright-black foreground, reverse video
_GHOST_START = frozenset({"2", "90", "7"})
# SGR params that end one: reset, normal intensity, reverse off, default foreground
_GHOST_END = frozenset({"", "0", "22", "27", "39"})


def strip_ansi_codes(text: str) -> str:
    """Strip ANSI escape codes from text.

    Args:
        text: Text with ANSI escape codes

    Returns:
        Text with ANSI codes removed
    """
    return _ANSI_PATTERN.sub("", text)


def _sgr_params(params: str) -> list[str]:
    """Split SGR params, skipping extended color arguments (38;5;N, 48;2;R;G;B)."""
    parts = params.split(";")
    result: list[str] = []
    i = 0
    while i < len(parts):
        part = parts[i]
        if part in ("38", "48") and i + 1 < len(parts):
            if parts[i + 1] == "2":
                i += 5
                continue
            if parts[i + 1] == "5":
                i += 3
                continue
        result.append(part)
        i += 1
    return result


def strip_dim_text(text: str) -> str:
    """Remove runs styled dim, bright-black or reverse-video.

    The agent renders autocomplete suggestions as gray ghost text at the prompt.
    Left in place they look like user-typed text, so they are dropped before any
    classification. Non-ghost escape sequences are kept for strip_ansi_codes.
    """
    out: list[str] = []
    ghost = False
    pos = 0
    for match in _SGR_PATTERN.finditer(text):
        if not ghost:
            out.append(text[pos : match.start()])
        params = _sgr_params(match.group(1))
        if any(p in _GHOST_START for p in params):
            ghost = True
        elif any(p in _GHOST_END for p in params):
            ghost = False
            out.append(match.group(0))
        elif not ghost:
            out.append(match.group(0))
        pos = match.end()
    if not ghost:
        out.append(text[pos:])
    return "".join(out)


def clean_pane_text(raw: str) -> str:
    """Ghost-text and ANSI stripped pane capture."""
    return strip_ansi_codes(strip_dim_text(raw))


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space."""
    return " ".join(text.split())


def truncate(text: str, max_chars: int) -> str:
    """Truncate to max_chars, ending with '...' when shortened."""
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def format_duration(seconds: float) -> str:
    """Format a duration for display ("45s", "12m", "3h 5m", "2d 4h")."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m"
    if secs < 86400:
        hours, minutes = secs // 3600, (secs % 3600) // 60
        return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"
    days, hours = secs // 86400, (secs % 86400) // 3600
    return f"{days}d" if hours == 0 else f"{days}d {hours}h"


def format_duration_coarse(seconds: float) -> str:
    """Format a duration using only its largest unit."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m"
    if secs < 86400:
        return f"{secs // 3600}h"
    return f"{secs // 86400}d"
