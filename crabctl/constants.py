"""Constants used across crabctl.

Timings and caps that are part of the polling and watchdog contracts live here.
UI literals of the monitored program live in crabctl.core.ui_catalog instead.
"""

# Session naming
SESSION_PREFIX = "crab-"
SESSION_NAME_PATTERN = r"^[a-zA-Z0-9_-]+$"

# Polling cadence (seconds)
LOCAL_POLL_INTERVAL = 1.5
REMOTE_POLL_INTERVAL = 5.0
MAX_REMOTE_POLL_INTERVAL = 60.0
REMOTE_IDLE_BACKOFF_STEP = 30.0  # Interval doubles per step of user inactivity

# Captured text caps (lines)
STATUS_CAPTURE_LINES = 25
PROMPT_CAPTURE_LINES = 10
PREVIEW_CAPTURE_LINES = 50

# Classifier window
MAX_CONTENT_LINES = 10
LAST_ACTION_MAX_CHARS = 40

# Auto-forward watchdog
AUTO_FORWARD_DELAY = 10.0
MAX_AUTO_FORWARDS = 5
AUTO_FORWARD_MESSAGE = (
    'Continue working until done. Say "TASK_DONE!" (swap _ for space) if you really think you\'re done.'
)

# Transcript correlation
MAX_TRANSCRIPT_CANDIDATES = 10
CONTENT_MATCH_TURNS = 3
SNIPPET_MAX_CHARS = 80
FIRST_MESSAGE_MAX_CHARS = 80
PREVIEW_MESSAGE_MAX_CHARS = 200

# Session operations
PROMPT_WAIT_TIMEOUT = 30.0
PROMPT_WAIT_POLL = 0.5
SUBMIT_VERIFY_ATTEMPTS = 3
SUBMIT_VERIFY_DELAY = 0.5
KILL_GRACE_DELAY = 0.5
SUBPROCESS_TIMEOUT = 15.0

# Agent launch
AGENT_COMMAND = "unset CLAUDECODE; claude"
DEFAULT_AGENT_ARGS = ("--dangerously-skip-permissions",)
AGENT_FLAGS_ENV = "CRABCTL_FLAGS"

# Transcript resolution retry for sessions whose transcript was not found yet
TRANSCRIPT_RETRY_INTERVAL = 10.0
