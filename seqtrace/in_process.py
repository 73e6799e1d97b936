"""
An event source that observes Python code running in this interpreter.

InProcessProgram installs a ``sys.settrace`` hook (and ``threading.settrace``
for threads started while tracing) and reports calls, returns, exceptions
and the definition of classes as EventSets on its queue, honouring the live
requests in its RequestManager.

Every callback runs under one program-wide lock and blocks until the
dispatcher resumes the event set it produced, so all traced threads are
suspended while a set is handled. The dispatcher thread must be started
before ``run()``; it is never traced itself.

Mapping of the terms used by the dispatcher:

    owner            runtime class of ``self`` / ``cls``, else the declaring type
    declaring type   module plus the qualified name of the enclosing class
    frame depth      number of frames on the thread's stack
    type available   a class or module body finished executing
"""

import inspect
import logging
import runpy
import sys
import threading
from dataclasses import dataclass
from inspect import CO_OPTIMIZED
from types import CodeType, FrameType, ModuleType
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .activation import Member
from .errors import TracingAborted
from .events import (
    BreakpointEvent,
    DisconnectEvent,
    EventQueue,
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
from .hierarchy import MappingTypeHierarchy, ancestry_of, resolve_loaded, type_name
from .requests import ExceptionRequest, MethodEntryRequest, MethodExitRequest, RequestManager

logger = logging.getLogger(__name__)

_THREAD_BOOTSTRAP = threading.Thread._bootstrap_inner.__code__
_RECEIVER_NAMES = ("self", "cls")


def frame_depth(frame: Optional[FrameType]) -> int:
    depth = 0
    while frame is not None:
        depth += 1
        frame = frame.f_back
    return depth


def is_synthetic(code: CodeType) -> bool:
    """Code generated at runtime, e.g. by ``dataclasses`` or ``namedtuple``."""
    filename = code.co_filename
    return (
        filename.startswith("<")
        and not filename.startswith("<frozen")
        and filename != "<stdin>"
    )


def _declaring_type_from_code(code: CodeType, module_name: str) -> str:
    parent = code.co_qualname.rpartition(".")[0]
    return f"{module_name}.{parent}" if parent else module_name


def _signature(code: CodeType) -> Tuple[str, ...]:
    count = code.co_argcount + code.co_kwonlyargcount
    return tuple(code.co_varnames[:count])


def _declaring_class(cls: type, code: CodeType) -> Optional[type]:
    """The class in ``cls``'s MRO whose attribute is the function running ``code``."""
    for klass in inspect.getmro(cls):
        attribute = vars(klass).get(code.co_name)
        if attribute is None and code.co_name.startswith("__") and not code.co_name.endswith("__"):
            attribute = vars(klass).get(f"_{klass.__name__.lstrip('_')}{code.co_name}")
        function = getattr(attribute, "__func__", attribute)
        if getattr(function, "__code__", None) is code:
            return klass
    return None


def member_for_code(code: CodeType, module_name: str, declaring_cls: Optional[type] = None) -> Member:
    if declaring_cls is not None:
        declaring_type = type_name(declaring_cls)
    else:
        declaring_type = _declaring_type_from_code(code, module_name)
    return Member(declaring_type, code.co_name, _signature(code), is_synthetic(code))


def members_of(cls: type) -> Tuple[Member, ...]:
    """Python functions visible on a class, each with the class declaring it."""
    seen: Dict[str, Member] = {}
    for klass in inspect.getmro(cls):
        for name, attribute in vars(klass).items():
            if name in seen:
                continue
            function = getattr(attribute, "__func__", attribute)
            code = getattr(function, "__code__", None)
            if not isinstance(code, CodeType):
                continue
            module_name = getattr(function, "__module__", None) or klass.__module__
            seen[name] = member_for_code(code, module_name, klass)
    return tuple(seen.values())


def module_members(module: ModuleType) -> Tuple[Member, ...]:
    """Functions defined by a module itself, not imported into it."""
    members = []
    for attribute in vars(module).values():
        code = getattr(attribute, "__code__", None)
        if isinstance(code, CodeType) and getattr(attribute, "__module__", None) == module.__name__:
            members.append(member_for_code(code, module.__name__))
    return tuple(members)


def _namespace_members(owner: str, namespace: Dict[str, Any]) -> Tuple[Member, ...]:
    members = []
    for attribute in namespace.values():
        function = getattr(attribute, "__func__", attribute)
        code = getattr(function, "__code__", None)
        if isinstance(code, CodeType):
            members.append(Member(owner, code.co_name, _signature(code), is_synthetic(code)))
    return tuple(members)


@dataclass(frozen=True)
class CallSite:
    owner: str
    member: Member
    depth: int
    receiver: Optional[type] = None
    declaring: Optional[type] = None


class InProcessProgram:
    """Traces callables or scripts run in the current interpreter."""

    def __init__(self) -> None:
        self.requests = RequestManager()
        self.events = EventQueue()
        self.types = MappingTypeHierarchy()
        self._lock = threading.RLock()
        self._active = False
        self._pending_types: List[Tuple[str, Tuple[Member, ...]]] = []
        self._unwind_depth: Dict[int, int] = {}
        self._saved_trace: Any = None
        self._saved_thread_trace: Any = None

    # --- lookups used by the dispatcher ------------------------------------

    def find_type(self, owner: str) -> Optional[Tuple[Member, ...]]:
        """Members of a loaded class or module, or None if it is not loaded yet."""
        found = resolve_loaded(owner)
        if isinstance(found, type):
            return members_of(found)
        if isinstance(found, ModuleType):
            return module_members(found)
        return None

    # --- running -----------------------------------------------------------

    def run(self, function: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``function`` with tracing installed and report its lifecycle."""
        main_thread = self._thread_ref()
        self._emit([ProgramStartEvent(main_thread)], check_abort=False)
        self._install()
        try:
            return function(*args, **kwargs)
        finally:
            self._uninstall()
            final_events: List[object] = []
            if self.requests.thread_death_wanted(main_thread.ident):
                final_events.append(ThreadDeathEvent(main_thread))
            final_events.append(ProgramDeathEvent())
            self._emit(final_events, check_abort=False)
            self._emit([DisconnectEvent("program finished")], check_abort=False)
            self.events.close()

    def run_script(self, path: str, argv: Sequence[str] = ()) -> Dict[str, Any]:
        """Run a script as ``__main__``, like ``python path argv...``."""
        saved_argv = sys.argv
        sys.argv = [str(path), *argv]
        try:
            return self.run(runpy.run_path, str(path), run_name="__main__")
        finally:
            sys.argv = saved_argv

    def run_module(self, module_name: str, argv: Sequence[str] = ()) -> Dict[str, Any]:
        """Run a module as ``__main__``, like ``python -m module argv...``."""
        saved_argv = sys.argv
        sys.argv = [module_name, *argv]
        try:
            return self.run(runpy.run_module, module_name, run_name="__main__", alter_sys=True)
        finally:
            sys.argv = saved_argv

    def _install(self) -> None:
        self._saved_trace = sys.gettrace()
        self._saved_thread_trace = threading.gettrace()
        self._active = True
        threading.settrace(self._global_trace)
        sys.settrace(self._global_trace)

    def _uninstall(self) -> None:
        self._active = False
        sys.settrace(self._saved_trace)
        threading.settrace(self._saved_thread_trace)

    # --- emitting ----------------------------------------------------------

    @staticmethod
    def _thread_ref() -> ThreadRef:
        return ThreadRef(threading.get_ident(), threading.current_thread().name)

    def _emit(self, events: List[object], check_abort: bool = True) -> None:
        """Queue a set and block until the dispatcher resumes it."""
        if events:
            resumed = threading.Event()
            if self.events.put(EventSet(events, resumed.set)):
                resumed.wait()
        if check_abort and self.events.abort_reason is not None:
            self._active = False
            raise TracingAborted(self.events.abort_reason)

    # --- trace callbacks ---------------------------------------------------

    def _call_site(self, frame: FrameType) -> CallSite:
        code = frame.f_code
        module_name = frame.f_globals.get("__name__") or "?"
        receiver: Optional[type] = None
        declaring_cls: Optional[type] = None
        if code.co_argcount and code.co_varnames[0] in _RECEIVER_NAMES:
            value = frame.f_locals.get(code.co_varnames[0])
            if code.co_varnames[0] == "cls" and isinstance(value, type):
                receiver = value
            elif code.co_varnames[0] == "self" and value is not None:
                receiver = type(value)
        if receiver is not None:
            declaring_cls = _declaring_class(receiver, code)
            if declaring_cls is None:
                receiver = None
        member = member_for_code(code, module_name, declaring_cls)
        owner = type_name(receiver) if receiver is not None else member.declaring_type
        return CallSite(owner, member, frame_depth(frame), receiver, declaring_cls)

    def _record_types(self, site: CallSite) -> None:
        recorded = self.types.ancestry
        for cls in (site.receiver, site.declaring):
            if cls is not None and type_name(cls) not in recorded:
                self.types.record(type_name(cls), ancestry_of(cls))

    def _flush_pending_types(self, thread: ThreadRef) -> None:
        pending, self._pending_types = self._pending_types, []
        events: List[object] = []
        for owner, namespace_members in pending:
            members = self.find_type(owner)
            events.append(TypeAvailableEvent(thread, owner, members if members is not None else namespace_members))
        self._emit(events)

    def _global_trace(self, frame: FrameType, event: str, arg: Any):
        if event != "call" or not self._active:
            return None
        code = frame.f_code
        if not code.co_flags & CO_OPTIMIZED:
            thread = self._thread_ref()
            if self._pending_types:
                with self._lock:
                    self._flush_pending_types(thread)
            return self._definition_tracer(frame, thread)

        # Calls no live request covers return without taking the program lock.
        ident = threading.get_ident()
        thread_root = frame.f_back is not None and frame.f_back.f_code is _THREAD_BOOTSTRAP
        site = self._call_site(frame)
        name = site.member.name
        requests = self.requests
        if not (
            self._pending_types
            or thread_root
            or requests.breakpoints_at(site.member.declaring_type, name)
            or requests.covers_call(ident, site.owner, name)
        ):
            return None

        with self._lock:
            thread = self._thread_ref()
            if self._pending_types:
                self._flush_pending_types(thread)

            events: List[object] = []
            if requests.breakpoints_at(site.member.declaring_type, name):
                events.append(BreakpointEvent(thread, site.owner, site.member, site.depth))
            elif requests.call_requests(MethodEntryRequest, thread.ident, site.owner, name):
                events.append(MethodEntryEvent(thread, site.owner, site.member, site.depth))
            if events:
                self._record_types(site)
                self._emit(events)

            if thread_root or requests.covers_call(thread.ident, site.owner, name):
                return self._make_local_tracer(site, thread_root)
            return None

    def _definition_tracer(self, frame: FrameType, thread: ThreadRef):
        """Module and class bodies never produce entries, but finishing one announces a type."""
        code = frame.f_code
        module_name = frame.f_globals.get("__name__") or "?"
        if code.co_name == "<module>":
            owner = module_name
        else:
            owner = f"{module_name}.{code.co_qualname}"
        if not self.requests.type_available_for(owner):
            return None

        def body_tracer(body_frame: FrameType, event: str, arg: Any):
            if event == "return":
                with self._lock:
                    members = _namespace_members(owner, dict(body_frame.f_locals))
                    self._pending_types.append((owner, members))
            return body_tracer

        return body_tracer

    def _make_local_tracer(self, site: CallSite, thread_root: bool):
        owner, member = site.owner, site.member

        def local_tracer(frame: FrameType, event: str, arg: Any):
            if not self._active:
                return None
            ident = threading.get_ident()
            if event == "line":
                unwind_depth = self._unwind_depth.get(ident)
                if unwind_depth is not None:
                    self._step(frame, ident, unwind_depth)
            elif event == "exception":
                self._exception(frame, owner, member, arg)
            elif event == "return":
                self._return(owner, member, thread_root)
            return local_tracer

        return local_tracer

    def _step(self, frame: FrameType, ident: int, unwind_depth: int) -> None:
        depth = frame_depth(frame)
        if depth > unwind_depth:
            return
        with self._lock:
            self._unwind_depth.pop(ident, None)
            steps = [r for r in self.requests.steps_for(ident) if r.hit()]
            if steps:
                self._emit([StepEvent(self._thread_ref(), depth)])

    def _exception(self, frame: FrameType, owner: str, member: Member, arg: Any) -> None:
        if not self.requests.call_requests(ExceptionRequest, threading.get_ident(), owner, member.name):
            return
        with self._lock:
            thread = self._thread_ref()
            if not self.requests.call_requests(ExceptionRequest, thread.ident, owner, member.name):
                return
            exc_type = arg[0] if isinstance(arg, tuple) and arg else None
            self._unwind_depth[thread.ident] = frame_depth(frame)
            self._emit([ExceptionEvent(thread, owner, member, getattr(exc_type, "__name__", ""))])

    def _return(self, owner: str, member: Member, thread_root: bool) -> None:
        if (
            not thread_root
            and self.events.abort_reason is None
            and not self.requests.call_requests(MethodExitRequest, threading.get_ident(), owner, member.name)
        ):
            return
        with self._lock:
            thread = self._thread_ref()
            events: List[object] = []
            if self.requests.call_requests(MethodExitRequest, thread.ident, owner, member.name):
                events.append(MethodExitEvent(thread, owner, member))
            if thread_root and self.requests.thread_death_wanted(thread.ident):
                events.append(ThreadDeathEvent(thread))
            self._emit(events)
            if thread_root:
                self._unwind_depth.pop(thread.ident, None)
