"""Unit tests for crabctl.utils."""

import pytest

from crabctl.utils import (
    clean_pane_text,
    format_duration,
    format_duration_coarse,
    normalize_whitespace,
    strip_ansi_codes,
    strip_dim_text,
    truncate,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, "0s"),
        (45, "45s"),
        (59.9, "59s"),
        (60, "1m"),
        (12 * 60 + 30, "12m"),
        (3600, "1h"),
        (3 * 3600 + 5 * 60, "3h 5m"),
        (86400, "1d"),
        (2 * 86400 + 4 * 3600, "2d 4h"),
    ],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(30, "30s"), (600, "10m"), (3 * 3600 + 59 * 60, "3h"), (5 * 86400 + 3600, "5d")],
)
def test_format_duration_coarse(seconds, expected):
    assert format_duration_coarse(seconds) == expected


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("exactly10!", 10) == "exactly10!"
    assert truncate("this is too long", 10) == "this is..."


def test_normalize_whitespace():
    assert normalize_whitespace("  a\n\tb   c ") == "a b c"


def test_strip_ansi_codes():
    assert strip_ansi_codes("\x1b[1;31mred\x1b[0m plain") == "red plain"
    assert strip_ansi_codes("\x1b]0;title\x07text") == "text"
    assert strip_ansi_codes("\x1b=keypad\x1b>") == "keypad"


def test_strip_dim_text_removes_ghost_suggestion():
    raw = "❯ \x1b[2mtry \"fix the tests\"\x1b[22m"
    assert strip_ansi_codes(strip_dim_text(raw)) == "❯ "


def test_strip_dim_text_handles_bright_black_and_reverse():
    assert clean_pane_text("a\x1b[90mghost\x1b[39mb") == "ab"
    assert clean_pane_text("a\x1b[7mcursor\x1b[27mb") == "ab"


def test_strip_dim_text_ignores_extended_color_arguments():
    # 38;5;2 is a 256-colour foreground, not the dim attribute
    raw = "\x1b[38;5;2mgreen\x1b[0m"
    assert clean_pane_text(raw) == "green"


def test_strip_dim_text_drops_unterminated_ghost_run():
    assert clean_pane_text("keep\x1b[2mdropped") == "keep"
