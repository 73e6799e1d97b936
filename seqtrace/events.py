"""
Execution events and the queue that carries them to the dispatcher.

An event source groups simultaneous events into an EventSet. While a set is
being handled the program that produced it stays suspended; the consumer
calls ``EventSet.resume()`` when it is done.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Tuple

from .activation import Member
from .errors import DisconnectedError


@dataclass(frozen=True)
class ThreadRef:
    ident: int
    name: str = ""

    def __str__(self) -> str:
        return f"{self.name}#{self.ident}" if self.name else f"#{self.ident}"


@dataclass(frozen=True)
class MethodEntryEvent:
    thread: ThreadRef
    owner: str
    member: Member
    frame_depth: int


@dataclass(frozen=True)
class MethodExitEvent:
    thread: ThreadRef
    owner: str
    member: Member


@dataclass(frozen=True)
class ExceptionEvent:
    thread: ThreadRef
    owner: str
    member: Member
    exception_type: str = ""


@dataclass(frozen=True)
class StepEvent:
    thread: ThreadRef
    frame_depth: int


@dataclass(frozen=True)
class BreakpointEvent:
    thread: ThreadRef
    owner: str
    member: Member
    frame_depth: int


@dataclass(frozen=True)
class TypeAvailableEvent:
    thread: ThreadRef
    owner: str
    members: Tuple[Member, ...]


@dataclass(frozen=True)
class ThreadDeathEvent:
    thread: ThreadRef


@dataclass(frozen=True)
class ProgramStartEvent:
    thread: Optional[ThreadRef] = None


@dataclass(frozen=True)
class ProgramDeathEvent:
    exit_status: Optional[int] = None


@dataclass(frozen=True)
class DisconnectEvent:
    reason: str = ""


def _no_resume() -> None:
    pass


@dataclass
class EventSet:
    events: List[object]
    resume: Callable[[], None] = field(default=_no_resume, repr=False)

    def __iter__(self):
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


class EventQueue:
    """
    Blocking FIFO of EventSets.

    Once closed, ``put`` resumes the producer immediately instead of
    queueing and ``remove`` raises DisconnectedError; sets that were still
    buffered can be fetched with ``drain``.
    """

    def __init__(self) -> None:
        self._sets: Deque[EventSet] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self.abort_reason: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event_set: EventSet) -> bool:
        """Queue a set. Returns False (and resumes the set) when closed."""
        with self._cond:
            if not self._closed:
                self._sets.append(event_set)
                self._cond.notify_all()
                return True
        event_set.resume()
        return False

    def remove(self, timeout: Optional[float] = None) -> EventSet:
        with self._cond:
            while not self._sets and not self._closed:
                if not self._cond.wait(timeout):
                    raise TimeoutError("No event set within timeout")
            if self._closed:
                raise DisconnectedError("Event queue closed")
            return self._sets.popleft()

    def drain(self) -> List[EventSet]:
        with self._cond:
            pending = list(self._sets)
            self._sets.clear()
        return pending

    def close(self, reason: Optional[BaseException] = None) -> None:
        with self._cond:
            self._closed = True
            if reason is not None and self.abort_reason is None:
                self.abort_reason = reason
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._sets)
