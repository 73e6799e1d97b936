"""
seqtrace: record the method calls of a Python program as a call tree and
render it as a sequence diagram.

The command line entry point is seqtrace/execution_tracer.py; the Qt tree
viewer lives in seqtrace/main_app.py.
"""

__version__ = "0.1.0"
