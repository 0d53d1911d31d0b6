"""Recognize UI chrome (borders, hint bars, mode banners) in captured pane text."""

from crabctl.core import ui_catalog


def is_decoration_line(trimmed: str) -> bool:
    """True if a stripped line is frame rather than conversation content."""
    lower = trimmed.lower()
    if any(phrase in lower for phrase in ui_catalog.DECORATION_PHRASES):
        return True
    return trimmed.startswith(ui_catalog.DECORATION_PREFIXES)


def is_dashed_rule(trimmed: str) -> bool:
    return trimmed.startswith(ui_catalog.DASHED_RULE_PREFIX)


def is_horizontal_rule(trimmed: str) -> bool:
    return bool(trimmed) and not trimmed.strip(ui_catalog.HORIZONTAL_RULE_CHAR)


def has_busy_hint(trimmed: str) -> bool:
    return ui_catalog.BUSY_HINT in trimmed.lower()


def clean_preview_output(output: str) -> str:
    """Drop status bars, box borders and pure rules from a pane capture for display."""
    cleaned: list[str] = []
    for line in output.split("\n"):
        trimmed = line.strip()
        if not cleaned and not trimmed:
            continue
        lower = trimmed.lower()
        if any(phrase in lower for phrase in ui_catalog.DECORATION_PHRASES):
            continue
        if trimmed.startswith(("╭", "╰")) or is_horizontal_rule(trimmed):
            continue
        cleaned.append(line)

    while cleaned and not cleaned[-1].strip():
        cleaned.pop()
    return "\n".join(cleaned)
