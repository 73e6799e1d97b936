#!/usr/bin/env python3
"""
Root entrypoint for the sequence trace viewer GUI.

Usage (from repo root):

    python run_trace_viewer.py [snapshot.json]

This launches the Qt application defined in seqtrace/main_app.py.
"""

import sys
from pathlib import Path

# Ensure the repo root is on sys.path so that "seqtrace" can be imported
# reliably, even when running this script directly.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from seqtrace.execution_tracer import configure_logging  # noqa: E402
from seqtrace.main_app import main  # noqa: E402


if __name__ == "__main__":
    configure_logging("INFO")
    main()
