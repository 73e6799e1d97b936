"""
Event subscriptions ("requests").

The dispatcher creates and deletes requests; an event source reads them to
decide which events to report. A request only produces events while it is
registered with the manager and enabled.
"""

import itertools
import threading
from typing import Iterable, List, Optional, Type, TypeVar

from .events import ThreadRef
from .patterns import PatternSet

_ids = itertools.count(1)


class EventRequest:
    kind = "request"

    def __init__(self) -> None:
        self.id = next(_ids)
        self.enabled = False
        self.class_filters = PatternSet()
        self.class_exclusions = PatternSet()
        self.thread: Optional[ThreadRef] = None
        self.count: Optional[int] = None
        self._hits = 0

    def enable(self) -> "EventRequest":
        self.enabled = True
        return self

    def disable(self) -> None:
        self.enabled = False

    def add_class_filter(self, pattern: str) -> None:
        self.class_filters = PatternSet(self.class_filters.patterns + [pattern])

    def add_class_exclusion_filter(self, pattern: str) -> None:
        self.class_exclusions = PatternSet(self.class_exclusions.patterns + [pattern])

    def add_thread_filter(self, thread: ThreadRef) -> None:
        self.thread = thread

    def add_count_filter(self, count: int) -> None:
        """Report only the ``count``-th occurrence, then expire."""
        if count < 1:
            raise ValueError("count must be at least 1")
        self.count = count

    def accepts_thread(self, thread_ident: int) -> bool:
        return self.thread is None or self.thread.ident == thread_ident

    def accepts_call(self, owner: str, member_name: str) -> bool:
        if self.class_filters and not self.class_filters.matches_call(owner, member_name):
            return False
        if self.class_exclusions and self.class_exclusions.matches_call(owner, member_name):
            return False
        return True

    def hit(self) -> bool:
        """Register an occurrence; True when it should be reported."""
        if self.count is None:
            return True
        self._hits += 1
        if self._hits == self.count:
            self.enabled = False
            return True
        return False

    def __repr__(self) -> str:
        parts = [f"id={self.id}", f"enabled={self.enabled}"]
        if self.class_filters:
            parts.append(f"include={self.class_filters.patterns}")
        if self.class_exclusions:
            parts.append(f"exclude={len(self.class_exclusions)}")
        if self.thread is not None:
            parts.append(f"thread={self.thread}")
        return f"{type(self).__name__}({', '.join(parts)})"


class MethodEntryRequest(EventRequest):
    kind = "entry"


class MethodExitRequest(EventRequest):
    kind = "exit"


class ExceptionRequest(EventRequest):
    kind = "exception"


class ThreadDeathRequest(EventRequest):
    kind = "thread_death"


class TypeAvailableRequest(EventRequest):
    """Report when a type matching the class filters has been defined."""

    kind = "type_available"


class BreakpointRequest(EventRequest):
    kind = "breakpoint"

    def __init__(self, declaring_type: str, member_name: str):
        super().__init__()
        self.declaring_type = declaring_type
        self.member_name = member_name

    def at(self, declaring_type: str, member_name: str) -> bool:
        return self.declaring_type == declaring_type and self.member_name == member_name


class StepRequest(EventRequest):
    kind = "step"

    def __init__(self, thread: ThreadRef):
        super().__init__()
        self.add_thread_filter(thread)


R = TypeVar("R", bound=EventRequest)


class RequestManager:
    """Registry of live requests, safe to read from traced threads."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._requests: List[EventRequest] = []
        self.generation = 0

    def _register(self, request: R) -> R:
        with self._lock:
            self._requests.append(request)
            self.generation += 1
        return request

    def create_method_entry_request(self) -> MethodEntryRequest:
        return self._register(MethodEntryRequest())

    def create_method_exit_request(self) -> MethodExitRequest:
        return self._register(MethodExitRequest())

    def create_exception_request(self) -> ExceptionRequest:
        return self._register(ExceptionRequest())

    def create_thread_death_request(self) -> ThreadDeathRequest:
        return self._register(ThreadDeathRequest())

    def create_type_available_request(self) -> TypeAvailableRequest:
        return self._register(TypeAvailableRequest())

    def create_breakpoint_request(self, declaring_type: str, member_name: str) -> BreakpointRequest:
        return self._register(BreakpointRequest(declaring_type, member_name))

    def create_step_request(self, thread: ThreadRef) -> StepRequest:
        return self._register(StepRequest(thread))

    def delete_event_request(self, request: EventRequest) -> None:
        with self._lock:
            request.disable()
            if request in self._requests:
                self._requests.remove(request)
                self.generation += 1

    def delete_event_requests(self, requests: Iterable[EventRequest]) -> None:
        for request in list(requests):
            self.delete_event_request(request)

    def delete_all_breakpoints(self) -> None:
        self.delete_event_requests(self.breakpoint_requests())

    def _of_type(self, request_type: Type[R]) -> List[R]:
        with self._lock:
            return [r for r in self._requests if isinstance(r, request_type)]

    def method_entry_requests(self) -> List[MethodEntryRequest]:
        return self._of_type(MethodEntryRequest)

    def method_exit_requests(self) -> List[MethodExitRequest]:
        return self._of_type(MethodExitRequest)

    def exception_requests(self) -> List[ExceptionRequest]:
        return self._of_type(ExceptionRequest)

    def thread_death_requests(self) -> List[ThreadDeathRequest]:
        return self._of_type(ThreadDeathRequest)

    def type_available_requests(self) -> List[TypeAvailableRequest]:
        return self._of_type(TypeAvailableRequest)

    def breakpoint_requests(self) -> List[BreakpointRequest]:
        return self._of_type(BreakpointRequest)

    def step_requests(self) -> List[StepRequest]:
        return self._of_type(StepRequest)

    def all_requests(self) -> List[EventRequest]:
        with self._lock:
            return list(self._requests)

    # Queries used by event sources. Each returns the enabled requests that
    # would report the described occurrence, without registering a hit.

    def _live(self, request_type: Type[R]) -> List[R]:
        return [r for r in self._of_type(request_type) if r.enabled]

    def call_requests(
        self, request_type: Type[R], thread_ident: int, owner: str, member_name: str
    ) -> List[R]:
        return [
            r
            for r in self._live(request_type)
            if r.accepts_thread(thread_ident) and r.accepts_call(owner, member_name)
        ]

    def breakpoints_at(self, declaring_type: str, member_name: str) -> List[BreakpointRequest]:
        return [r for r in self._live(BreakpointRequest) if r.at(declaring_type, member_name)]

    def type_available_for(self, owner: str) -> List[TypeAvailableRequest]:
        return [
            r
            for r in self._live(TypeAvailableRequest)
            if not r.class_filters or r.class_filters.matches(owner)
        ]

    def steps_for(self, thread_ident: int) -> List[StepRequest]:
        return [r for r in self._live(StepRequest) if r.accepts_thread(thread_ident)]

    def thread_death_wanted(self, thread_ident: int) -> bool:
        return any(r.accepts_thread(thread_ident) for r in self._live(ThreadDeathRequest))

    def covers_call(self, thread_ident: int, owner: str, member_name: str) -> bool:
        """True if any live request could report something about this call."""
        for request_type in (MethodEntryRequest, MethodExitRequest, ExceptionRequest):
            if self.call_requests(request_type, thread_ident, owner, member_name):
                return True
        return bool(self.steps_for(thread_ident))

    def is_empty(self) -> bool:
        with self._lock:
            return not any(r.enabled for r in self._requests)
