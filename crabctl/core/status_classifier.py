"""Status classification from captured pane text.

The agent exposes no structured state, so status is read off the screen. The
scan walks lines bottom-up, skipping blanks, and hands each line to an ordered
list of rules. A rule either does not apply (None), asks the scan to continue
(optionally recording what it saw), or concludes with a status.

Decoration lines (hint bars, rules, borders) have their own rules and never
count toward the content window. Only the bottom MAX_CONTENT_LINES content
lines are inspected, so conversation text further up that happens to contain
"allow"/"deny" or a numbered list cannot trigger a false status.
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence, Union

from crabctl.constants import LAST_ACTION_MAX_CHARS, MAX_CONTENT_LINES
from crabctl.core import ui_catalog
from crabctl.core.decoration import has_busy_hint, is_dashed_rule, is_decoration_line
from crabctl.core.models import Status, StatusBarInfo
from crabctl.core.status_bar import parse_status_bar
from crabctl.utils import truncate


@dataclass(frozen=True)
class ScanState:
    """What the upward scan has seen so far."""

    content_lines: int = 0
    saw_numbered_menu: bool = False
    saw_prompt: bool = False


@dataclass(frozen=True)
class Continue:
    """Keep scanning; set the given flags on the scan state."""

    saw_numbered_menu: bool = False
    saw_prompt: bool = False


@dataclass(frozen=True)
class Conclude:
    """Stop scanning with this status."""

    status: Status


Verdict = Union[Continue, Conclude]
Rule = Callable[[str, ScanState], Optional[Verdict]]


# --- line predicates -------------------------------------------------------


def is_permission_line(trimmed: str) -> bool:
    lower = trimmed.lower()
    return any(all(word in lower for word in words) for words in ui_catalog.PERMISSION_PATTERNS)


def is_numbered_menu_item(trimmed: str) -> bool:
    """Menu items like "2. Yes, and bypass permissions" or "❯ 1. Yes, clear context"."""
    s = trimmed.removeprefix(ui_catalog.MENU_SELECTOR).strip()
    return len(s) >= 3 and "1" <= s[0] <= "9" and s[1] == "." and s[2] == " "


def is_prompt_line(trimmed: str) -> bool:
    """Bare input prompt, possibly followed by NBSP or text the user is typing."""
    return trimmed == ui_catalog.PLAIN_PROMPT or trimmed.startswith(ui_catalog.PROMPT_GLYPH)


def is_running_indicator(trimmed: str) -> bool:
    """Active progress line such as "✻ Thinking…" or "✽ Transfiguring… (2m 22s)".

    Matched structurally: any braille spinner glyph, or an ellipsis that is not a
    truncation marker, a completed action, a prompt or the idle "Waiting…" text.
    Completed spinners ("✻ Brewed for 39s") carry no ellipsis and never match.
    """
    if any(ch in ui_catalog.SPINNER_GLYPHS for ch in trimmed):
        return True
    if ui_catalog.ELLIPSIS not in trimmed:
        return False
    if trimmed.startswith(ui_catalog.ELLIPSIS):
        return False
    if trimmed.startswith(ui_catalog.ACTION_MARKER):
        return False
    if is_prompt_line(trimmed):
        return False
    if ui_catalog.COLLAPSED_LINES_MARKER in trimmed and "lines" in trimmed:
        return False
    return trimmed != ui_catalog.IDLE_WAITING_PLACEHOLDER


# --- decoration rules ------------------------------------------------------


def busy_hint_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    if has_busy_hint(trimmed):
        return Conclude(Status.RUNNING)
    return None


def confirm_dialog_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    """A dashed rule above a numbered menu frames a plan-approval dialog."""
    if state.saw_numbered_menu and is_dashed_rule(trimmed):
        return Conclude(Status.CONFIRM)
    return None


# --- content rules ---------------------------------------------------------


def above_prompt_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    """Once the prompt is seen, the next content line decides TASK_DONE vs WAITING."""
    if not state.saw_prompt:
        return None
    if ui_catalog.TASK_DONE_PHRASE in trimmed:
        return Conclude(Status.TASK_DONE)
    return Conclude(Status.WAITING)


def permission_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    if is_permission_line(trimmed):
        return Conclude(Status.PERMISSION)
    return None


def numbered_menu_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    if is_numbered_menu_item(trimmed):
        return Continue(saw_numbered_menu=True)
    return None


def prompt_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    if is_prompt_line(trimmed):
        return Continue(saw_prompt=True)
    return None


def progress_rule(trimmed: str, state: ScanState) -> Optional[Verdict]:
    if is_running_indicator(trimmed):
        return Conclude(Status.RUNNING)
    return None


DECORATION_RULES: tuple[Rule, ...] = (busy_hint_rule, confirm_dialog_rule)
CONTENT_RULES: tuple[Rule, ...] = (
    above_prompt_rule,
    permission_rule,
    numbered_menu_rule,
    prompt_rule,
    progress_rule,
)


def _apply(rules: Sequence[Rule], trimmed: str, state: ScanState) -> Verdict:
    for rule in rules:
        verdict = rule(trimmed, state)
        if verdict is not None:
            return verdict
    return Continue()


def detect_status_lines(lines: Sequence[str], max_content_lines: int = MAX_CONTENT_LINES) -> Status:
    """Classify a block of pane lines (most recent last)."""
    state = ScanState()
    for line in reversed(lines):
        if state.content_lines >= max_content_lines:
            break
        trimmed = line.strip()
        if not trimmed:
            continue

        if is_decoration_line(trimmed):
            verdict = _apply(DECORATION_RULES, trimmed, state)
        else:
            state = replace(state, content_lines=state.content_lines + 1)
            verdict = _apply(CONTENT_RULES, trimmed, state)

        if isinstance(verdict, Conclude):
            return verdict.status
        state = replace(
            state,
            saw_numbered_menu=state.saw_numbered_menu or verdict.saw_numbered_menu,
            saw_prompt=state.saw_prompt or verdict.saw_prompt,
        )

    if state.saw_prompt:
        return Status.WAITING
    return Status.UNKNOWN


def detect_status(output: str) -> Status:
    """Classify raw captured pane text; empty input is UNKNOWN."""
    if not output:
        return Status.UNKNOWN
    return detect_status_lines(output.split("\n"))


def detect_last_action(lines: Sequence[str]) -> str:
    """Most recent "⏺ ..." line, marker stripped and truncated for display."""
    for line in reversed(lines):
        trimmed = line.strip()
        if trimmed.startswith(ui_catalog.ACTION_MARKER):
            action = trimmed.removeprefix(ui_catalog.ACTION_MARKER).strip()
            return truncate(action, LAST_ACTION_MAX_CHARS)
    return ""


def analyze_output(output: str) -> tuple[Status, StatusBarInfo, str]:
    """Status, status-bar metadata and last action for one pane capture."""
    if not output:
        return Status.UNKNOWN, StatusBarInfo(), ""

    lines = output.split("\n")
    return detect_status_lines(lines), parse_status_bar(lines), detect_last_action(lines)
