"""
Exception types raised by the tracing engine.

Everything the engine raises on purpose derives from TraceError so callers
(the CLI, the viewer) can report it without catching unrelated bugs.
"""


class TraceError(Exception):
    """Base class for all tracing errors."""


class ConfigurationError(TraceError, ValueError):
    """Invalid configuration detected before tracing starts."""


class MethodNotFoundError(TraceError):
    """The designated start method does not exist on its type."""

    def __init__(self, qualified_name: str):
        super().__init__(f"Start method not found: {qualified_name}")
        self.qualified_name = qualified_name


class UnexpectedBreakpointError(TraceError):
    """A breakpoint fired somewhere other than the start method."""


class SnapshotError(TraceError):
    """Reading or writing a trace snapshot failed."""


class FormatError(TraceError):
    """A formatter could not render or save a diagram."""


class DisconnectedError(TraceError):
    """The event source is gone; no further events will arrive."""


class TracingAborted(BaseException):
    """
    Raised inside the traced program when the dispatcher hit a fatal error.

    Derives from BaseException so that ``except Exception`` blocks in the
    traced program do not swallow it.
    """

    def __init__(self, reason: BaseException):
        super().__init__(f"Tracing aborted: {reason}")
        self.reason = reason
