"""Console output helpers shared by the zib compliance tools."""

from __future__ import annotations

import sys


def abort(msg, code=2):
    """Print error and exit."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(code)


def error(msg):
    """Print error to stderr."""
    print(f"ERROR: {msg}", file=sys.stderr)


def warn(msg):
    """Print warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)


def info(msg):
    """Print info to stdout."""
    print(msg)
