"""
Per-thread call stack reconstruction.

A ThreadTrace turns the entry, exit, exception, step and breakpoint events
of one thread into Activations. It does not own any subscriptions; whenever
the set of live requests has to change (boundary methods, unwinding, the
deferred start method) it asks its dispatcher.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from .activation import Activation, Member
from .errors import MethodNotFoundError, UnexpectedBreakpointError
from .events import (
    BreakpointEvent,
    ExceptionEvent,
    MethodEntryEvent,
    MethodExitEvent,
    StepEvent,
    ThreadDeathEvent,
    ThreadRef,
    TypeAvailableEvent,
)
from .requests import StepRequest

if TYPE_CHECKING:
    from .dispatcher import EventDispatcher

logger = logging.getLogger(__name__)


class TraceState(Enum):
    TRACING = "tracing"
    BOUNDARY_SUPPRESSED = "boundary_suppressed"
    UNWINDING = "unwinding"
    FINISHED = "finished"


class ThreadTrace:
    def __init__(self, thread: ThreadRef, dispatcher: "EventDispatcher"):
        self.thread = thread
        self.dispatcher = dispatcher
        self.state = TraceState.TRACING
        self.current_activation: Optional[Activation] = None
        self.current_boundary_method: Optional[str] = None
        self.stop_when_activation_done = False
        self.mismatched_exits = 0
        self.step_request: Optional[StepRequest] = None
        self.dispatcher.trace("====== %s ======", thread)

    # --- entries and exits -------------------------------------------------

    def method_entry_event(self, event: MethodEntryEvent) -> None:
        qualified_name = f"{event.owner}.{event.member.name}"
        if self.dispatcher.is_boundary_method(qualified_name):
            self.dispatcher.delete_all_event_requests()
            self.current_boundary_method = qualified_name
            self.dispatcher.create_boundary_exit_request(event.owner)
            self.state = TraceState.BOUNDARY_SUPPRESSED

        if self.dispatcher.config.public_only and not event.member.is_public:
            return
        self.method_entry(event.owner, event.member, event.frame_depth)

    def method_entry(self, owner: str, member: Member, frame_depth: int) -> Activation:
        if self.dispatcher.config.log_events:
            logger.debug(
                "TRACE | entry | thread=%s | call=%s.%s | args=%s | depth=%d",
                self.thread,
                owner,
                member.name,
                ",".join(member.signature),
                frame_depth,
            )
        activation = Activation(self.current_activation, owner, member, frame_depth)
        if self.current_activation is None:
            self.dispatcher.root_activations.append(activation)
        self.current_activation = activation
        return activation

    def method_exit_event(self, event: MethodExitEvent) -> None:
        qualified_name = f"{event.owner}.{event.member.name}"
        current = self.current_activation
        popped = False
        if (
            current is not None
            and current.owner == event.owner
            and current.member.name == event.member.name
        ):
            self.current_activation = current.parent
            popped = True
        else:
            self.mismatched_exits += 1
            logger.debug(
                "TRACE | exit-mismatch | thread=%s | exit=%s | current=%s",
                self.thread,
                qualified_name,
                current.qualified_name if current is not None else None,
            )

        if self.current_boundary_method == qualified_name:
            self.current_boundary_method = None
            self.dispatcher.delete_all_event_requests()
            self.dispatcher.activate_tracing_of_all_methods()
            self.state = TraceState.TRACING

        if popped and self.current_activation is None and self.stop_when_activation_done:
            self.stop_when_activation_done = False
            self.dispatcher.delete_all_event_requests()
            self.dispatcher.trace("-- %s: start method finished, tracing stopped --", self.thread)

    # --- exceptions --------------------------------------------------------

    def exception_event(self, event: ExceptionEvent) -> None:
        requests = self.dispatcher.requests
        if self.step_request is not None:
            requests.delete_event_request(self.step_request)
        request = requests.create_step_request(self.thread)
        request.add_count_filter(1)
        request.enable()
        self.step_request = request
        self.state = TraceState.UNWINDING

    def step_event(self, event: StepEvent) -> None:
        """Resynchronise with the frame that handled the exception."""
        if self.step_request is not None:
            self.dispatcher.requests.delete_event_request(self.step_request)
            self.step_request = None
        current = self.current_activation
        while current is not None and current.parent is not None:
            if current.stack_depth == event.frame_depth:
                break
            current = current.parent
        self.current_activation = current
        if self.state is TraceState.UNWINDING:
            self.state = TraceState.TRACING

    # --- deferred start ----------------------------------------------------

    def type_available_event(self, event: TypeAvailableEvent) -> None:
        dispatcher = self.dispatcher
        if event.owner != dispatcher.start_type:
            return
        self.set_start_breakpoints(event.owner, event.members)

    def set_start_breakpoints(self, owner: str, members: Sequence[Member]) -> None:
        dispatcher = self.dispatcher
        matching = [m for m in members if m.name == dispatcher.start_member_name]
        if not matching:
            raise MethodNotFoundError(f"{owner}.{dispatcher.start_member_name}")
        dispatcher.set_method_breakpoints(matching)
        requests = dispatcher.requests
        requests.delete_event_requests(requests.type_available_requests())

    def breakpoint_event(self, event: BreakpointEvent) -> None:
        dispatcher = self.dispatcher
        if event.member.name != dispatcher.start_member_name:
            raise UnexpectedBreakpointError(
                f"Unexpected breakpoint. Should be in method {dispatcher.start_member_name}, "
                f"but was in method {event.member.name}. Event={event}"
            )
        self.method_entry(event.owner, event.member, event.frame_depth)
        dispatcher.delete_breakpoint_requests(event.member)
        dispatcher.activate_tracing_of_all_methods()
        self.stop_when_activation_done = True

    def thread_death_event(self, event: ThreadDeathEvent) -> None:
        self.state = TraceState.FINISHED
        if self.step_request is not None:
            self.dispatcher.requests.delete_event_request(self.step_request)
            self.step_request = None
        self.dispatcher.trace("====== %s end ======", self.thread)
