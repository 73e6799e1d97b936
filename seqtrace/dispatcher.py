"""
The event dispatcher: a background thread that consumes event sets from a
traced program and feeds them to one ThreadTrace per program thread.

``program`` is anything exposing:

    requests            a RequestManager
    events              an EventQueue
    find_type(owner)    the Members of a loaded type, or None
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence

from .activation import ActivationList, Member
from .config_store import TraceConfig, split_qualified_name
from .errors import DisconnectedError, MethodNotFoundError, TraceError
from .events import (
    BreakpointEvent,
    DisconnectEvent,
    EventSet,
    ExceptionEvent,
    MethodEntryEvent,
    MethodExitEvent,
    ProgramDeathEvent,
    ProgramStartEvent,
    StepEvent,
    ThreadDeathEvent,
    ThreadRef,
    TypeAvailableEvent,
)
from .requests import EventRequest
from .thread_trace import ThreadTrace, TraceState

logger = logging.getLogger(__name__)

OUTCOME_ENDED = "ended"
OUTCOME_DISCONNECTED = "disconnected"
OUTCOME_FAILED = "failed"
OUTCOME_RUNNING = "running"


class EventDispatcher(threading.Thread):
    def __init__(self, program, root_activations: Optional[ActivationList] = None,
                 config: Optional[TraceConfig] = None):
        super().__init__(name="event-handler", daemon=True)
        self.program = program
        self.requests = program.requests
        self.root_activations = root_activations if root_activations is not None else ActivationList()
        self.config = config or TraceConfig()
        self.config.validate()
        self.include_patterns: List[str] = list(self.config.include_patterns)
        self.exclude_patterns: List[str] = self.config.effective_exclude_patterns()
        self.start_type: Optional[str] = None
        self.start_member_name: Optional[str] = None
        self.connected = True
        self.program_died = False
        self.failure: Optional[TraceError] = None
        self._trace_map: Dict[int, ThreadTrace] = {}
        self._ended_traces: List[ThreadTrace] = []

    # --- subscriptions -----------------------------------------------------

    def set_event_requests(self, start_method: Optional[str] = None) -> None:
        """Subscribe either to everything at once or to the start method only."""
        if start_method is None:
            start_method = self.config.start_method
        if start_method is not None:
            self.set_start_method_breakpoints(start_method)
        else:
            self.activate_tracing_of_all_methods()

    def _enable_call_request(self, request: EventRequest) -> None:
        for pattern in self.include_patterns:
            request.add_class_filter(pattern)
        for pattern in self.exclude_patterns:
            request.add_class_exclusion_filter(pattern)
        request.enable()

    def activate_tracing_of_all_methods(self) -> None:
        self._enable_call_request(self.requests.create_method_entry_request())
        self._enable_call_request(self.requests.create_method_exit_request())
        self._enable_call_request(self.requests.create_exception_request())
        if not self.requests.thread_death_requests():
            self.requests.create_thread_death_request().enable()

    def set_start_method_breakpoints(self, qualified_name: str) -> None:
        self.start_type, self.start_member_name = split_qualified_name(qualified_name)
        members = self.program.find_type(self.start_type)
        if members is not None:
            matching = [m for m in members if m.name == self.start_member_name]
            if not matching:
                raise MethodNotFoundError(qualified_name)
            self.set_method_breakpoints(matching)
            return

        request = self.requests.create_type_available_request()
        request.add_class_filter(self.start_type)
        request.enable()
        self.trace("-- waiting for type %s --", self.start_type)

    def set_method_breakpoints(self, members: Iterable[Member]) -> None:
        for member in members:
            self.requests.create_breakpoint_request(member.declaring_type, member.name).enable()

    def delete_breakpoint_requests(self, member: Member) -> None:
        self.requests.delete_event_requests(
            r for r in self.requests.breakpoint_requests() if r.at(member.declaring_type, member.name)
        )

    def create_boundary_exit_request(self, owner: str) -> None:
        request = self.requests.create_method_exit_request()
        request.add_class_filter(owner)
        request.enable()

    def delete_all_event_requests(self) -> None:
        requests = self.requests
        requests.delete_event_requests(requests.type_available_requests())
        requests.delete_event_requests(requests.method_entry_requests())
        requests.delete_event_requests(requests.method_exit_requests())
        requests.delete_event_requests(requests.exception_requests())
        requests.delete_all_breakpoints()

    def is_boundary_method(self, qualified_name: str) -> bool:
        return qualified_name in self.config.boundary_methods

    # --- event loop --------------------------------------------------------

    def run(self) -> None:
        queue = self.program.events
        while self.connected:
            try:
                event_set = queue.remove()
            except DisconnectedError:
                self.handle_disconnected()
                break
            try:
                self.process(event_set)
            except TraceError as exc:
                self.fail(exc)
            finally:
                event_set.resume()

    def fail(self, exc: TraceError) -> None:
        """Stop tracing after a fatal error and abort the traced program."""
        logger.error("TRACE | dispatcher | failed | error=%s", exc)
        self.failure = exc
        self.delete_all_event_requests()
        self.program.events.close(exc)
        self.handle_disconnected()

    def handle_disconnected(self) -> None:
        """Flush what is still buffered, reacting only to lifecycle events."""
        for event_set in self.program.events.drain():
            for event in event_set:
                if isinstance(event, ProgramDeathEvent):
                    self.program_death_event(event)
                elif isinstance(event, DisconnectEvent):
                    self.disconnect_event(event)
            event_set.resume()
        if self.connected:
            self.disconnect_event(DisconnectEvent("event queue closed"))

    def process(self, events: Iterable[object]) -> None:
        for event in events:
            self.handle_event(event)

    def handle_event(self, event: object) -> None:
        if isinstance(event, TypeAvailableEvent):
            self.thread_trace(event.thread).type_available_event(event)
        elif isinstance(event, MethodEntryEvent):
            self.thread_trace(event.thread).method_entry_event(event)
        elif isinstance(event, MethodExitEvent):
            self.thread_trace(event.thread).method_exit_event(event)
        elif isinstance(event, ExceptionEvent):
            thread_trace = self._live_trace(event.thread)
            if thread_trace is not None:
                thread_trace.exception_event(event)
        elif isinstance(event, StepEvent):
            self.thread_trace(event.thread).step_event(event)
        elif isinstance(event, BreakpointEvent):
            self.thread_trace(event.thread).breakpoint_event(event)
        elif isinstance(event, ThreadDeathEvent):
            thread_trace = self._live_trace(event.thread)
            if thread_trace is not None:
                thread_trace.thread_death_event(event)
        elif isinstance(event, ProgramStartEvent):
            self.trace("-- Program started --")
        elif isinstance(event, ProgramDeathEvent):
            self.program_death_event(event)
        elif isinstance(event, DisconnectEvent):
            self.disconnect_event(event)
        else:
            raise TypeError(f"Internal error: unexpected event type {type(event).__name__}")

    def thread_trace(self, thread: ThreadRef) -> ThreadTrace:
        thread_trace = self._trace_map.get(thread.ident)
        # idents are reused by the OS once a thread has ended
        if thread_trace is None or thread_trace.state is TraceState.FINISHED:
            if thread_trace is not None:
                self._ended_traces.append(thread_trace)
            thread_trace = ThreadTrace(thread, self)
            self._trace_map[thread.ident] = thread_trace
        return thread_trace

    def _live_trace(self, thread: ThreadRef) -> Optional[ThreadTrace]:
        """Trace of a known thread that has not ended yet."""
        thread_trace = self._trace_map.get(thread.ident)
        if thread_trace is None or thread_trace.state is TraceState.FINISHED:
            return None
        return thread_trace

    def program_death_event(self, event: ProgramDeathEvent) -> None:
        self.program_died = True
        if self.start_type is not None and self.requests.type_available_requests():
            logger.warning("TRACE | start type never loaded | type=%s", self.start_type)
        self.trace("-- The application exited --")

    def disconnect_event(self, event: DisconnectEvent) -> None:
        self.connected = False
        if not self.program_died:
            self.trace("-- The application has been disconnected --")

    # --- diagnostics -------------------------------------------------------

    @property
    def thread_traces(self) -> Sequence[ThreadTrace]:
        return self._ended_traces + list(self._trace_map.values())

    @property
    def mismatched_exits(self) -> int:
        return sum(t.mismatched_exits for t in self.thread_traces)

    @property
    def outcome(self) -> str:
        if self.failure is not None:
            return OUTCOME_FAILED
        if self.connected:
            return OUTCOME_RUNNING
        return OUTCOME_ENDED if self.program_died else OUTCOME_DISCONNECTED

    def trace(self, message: str, *args) -> None:
        if self.config.log_events:
            logger.info("TRACE | " + message, *args)
