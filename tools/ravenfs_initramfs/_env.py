"""Shared subprocess environment and search-path handling for the builder.

The image is assembled from whatever the host provides: host utilities are
looked up on a search path and ldd/compressors run as subprocesses.  Both
must see the same PATH, so it is decided once from the command line and
carried in the env dict every helper passes to subprocess.

This module provides a whitelist-based approach: start from a clean env
with only functional vars, pin locale so tool output parses the same on
every host, and let each helper add what it needs on top.
"""

import os

# Vars passed through from the host environment when present.
_PASSTHROUGH = frozenset({
    "HOME", "USER", "LOGNAME",
    "TMPDIR", "TEMP", "TMP",
    "TERM",
    "LD_LIBRARY_PATH",
})

# Vars pinned to fixed values so ldd/compressor output is parseable.
_DETERMINISM_PINS = {
    "LC_ALL": "C",
    "LANG": "C",
}


def clean_env():
    """Return a clean env dict for subprocess env= parameter.

    Copies only whitelisted vars from the host, then applies
    determinism pins.  Callers layer helper-specific vars on top.
    """
    env = {}
    for key in _PASSTHROUGH:
        val = os.environ.get(key)
        if val is not None:
            env[key] = val
    env.update(_DETERMINISM_PINS)
    return env


def add_path_args(parser):
    """Register the standard three-way PATH arguments on an argparse parser."""
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--hermetic-path", action="append",
                       dest="hermetic_path", default=[],
                       help="Search only these dirs for host tools (repeatable)")
    group.add_argument("--allow-host-path", action="store_true",
                       help="Search the host PATH (default)")
    group.add_argument("--hermetic-empty", action="store_true",
                       help="Start with empty PATH")
    parser.add_argument("--path-prepend", action="append",
                        dest="path_prepend", default=[],
                        help="Dir to prepend to PATH (repeatable)")


def setup_path(args, env, host_path=""):
    """Set env["PATH"] from the standard three-way PATH arguments.

    Requires args parsed by add_path_args().  host_path is the original
    host PATH captured before sanitization; it is used with
    --allow-host-path and when no PATH option was given at all.
    """
    if args.hermetic_path:
        env["PATH"] = ":".join(os.path.abspath(p) for p in args.hermetic_path)
    elif args.hermetic_empty:
        env["PATH"] = ""
    else:
        env["PATH"] = host_path
    if getattr(args, "path_prepend", None):
        prepend = ":".join(os.path.abspath(p) for p in args.path_prepend)
        env["PATH"] = prepend + (":" + env["PATH"] if env.get("PATH") else "")
    return env["PATH"]
