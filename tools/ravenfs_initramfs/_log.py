"""Console status output for the initramfs builder.

Status lines go to stdout, errors to stderr.  Colors are used only when
stdout is a terminal and neither --no-color nor NO_COLOR is set.
"""

import os
import sys

_RED = "\033[0;31m"
_GREEN = "\033[0;32m"
_BLUE = "\033[0;34m"
_YELLOW = "\033[1;33m"
_RESET = "\033[0m"

_color = None


def set_color(enabled):
    """Force colors on or off (None restores autodetection)."""
    global _color
    _color = enabled


def _use_color(stream):
    if _color is not None:
        return _color
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def _emit(tag, color, msg, stream):
    if _use_color(stream):
        tag = f"{color}{tag}{_RESET}"
    print(f"{tag} {msg}", file=stream)


def info(msg):
    _emit("[INFO]", _BLUE, msg, sys.stdout)


def ok(msg):
    _emit("[OK]", _GREEN, msg, sys.stdout)


def warn(msg):
    _emit("[WARN]", _YELLOW, msg, sys.stdout)


def error(msg):
    _emit("[ERROR]", _RED, msg, sys.stderr)


def item(msg):
    """Per-item progress line under a step header."""
    print(f"  {msg}")
