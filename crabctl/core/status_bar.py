"""Status-bar parsing.

The bar sits at the bottom of the agent's screen as segments joined by " · ":

    ⏵⏵ bypass permissions on (shift+tab to cycle) · 5 files +415 -44 · PR #498
    ? for shortcuts                          Context left until auto-compact: 10%

Only the trailing block of decoration lines is read; the first content line
going upward ends the bar. Every field is optional.
"""

from typing import Sequence

from crabctl.core import ui_catalog
from crabctl.core.decoration import is_decoration_line
from crabctl.core.models import StatusBarInfo


def _detect_mode(lower: str) -> str:
    for phrases, mode in ui_catalog.MODE_BANNERS:
        if any(phrase in lower for phrase in phrases):
            return mode
    return ""


def parse_status_bar(lines: Sequence[str]) -> StatusBarInfo:
    """Extract mode, change summary, PR tag and context hint from the bottom bar."""
    bar = StatusBarInfo()

    for line in reversed(lines):
        trimmed = line.strip()
        if not trimmed:
            continue
        if not is_decoration_line(trimmed):
            break

        lower = trimmed.lower()
        if not bar.mode:
            bar.mode = _detect_mode(lower)

        idx = lower.find(ui_catalog.CONTEXT_HINT)
        if idx >= 0:
            bar.context = trimmed[idx + len(ui_catalog.CONTEXT_HINT) :].strip()

        for segment in trimmed.split(ui_catalog.STATUS_BAR_SEPARATOR):
            segment = segment.strip()
            seg_lower = segment.lower()
            if seg_lower.startswith(ui_catalog.PR_SEGMENT_PREFIX):
                bar.pr = segment
            if "file" in seg_lower and "+" in segment:
                bar.git_changes = segment

    return bar
