"""Literal strings and glyphs of the monitored agent's terminal UI.

The structural rules in decoration, status_bar and status_classifier stay the
same across UI releases; the literals below are what drifts. Keep every
substring match in this one table.
"""

# Hint-bar and banner phrases (matched case-insensitively)
DECORATION_PHRASES = (
    "bypass permissions on",
    "shift+tab",
    "auto-accept",
    "accept edits on",
    "plan mode on",
    "for shortcuts",
    "esc to interrupt",
)

# Line prefixes that mark borders, rules and box edges
DECORATION_PREFIXES = ("───", "╌", "╭", "╰", "│")

DASHED_RULE_PREFIX = "╌"
HORIZONTAL_RULE_CHAR = "─"

# Shown in the hint bar only while the agent is working
BUSY_HINT = "esc to interrupt"

# Mode banners, first match wins
MODE_BANNERS = (
    (("bypass permissions on",), "bypass"),
    (("plan mode",), "plan"),
    (("auto-accept edits", "accept edits on"), "auto-edit"),
)

CONTEXT_HINT = "context left until auto-compact:"
PR_SEGMENT_PREFIX = "pr #"
STATUS_BAR_SEPARATOR = " · "

# Permission prompts: each entry is a set of words that must co-occur
PERMISSION_PATTERNS = (
    ("allow", "deny"),
    ("yes / no",),
    ("yes/no",),
    ("allow once",),
    ("allow always",),
)

PROMPT_GLYPH = "❯"
PLAIN_PROMPT = ">"
MENU_SELECTOR = "❯"

TASK_DONE_PHRASE = "TASK DONE!"

ACTION_MARKER = "⏺"
ELLIPSIS = "…"
SPINNER_GLYPHS = frozenset("⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏")
IDLE_WAITING_PLACEHOLDER = "Waiting…"
COLLAPSED_LINES_MARKER = "… +"

# Transcript payloads that are skill or slash-command invocations, not human text
COMMAND_MESSAGE_PREFIX = "<command-message>"
