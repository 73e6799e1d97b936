#!/usr/bin/env python3
"""
Tracing engine front end and command line.

ExecutionTracer wires an event source, the dispatcher and the tree
transformations together. Callables, scripts and modules are traced in this
interpreter; ``trace_command`` runs a command of a target project in a child
interpreter (the project's own ``.venv`` when it has one) and reads back the
snapshot the child leaves behind.
"""

import argparse
import logging
import os
import subprocess
import sys
import tempfile
import threading
import time
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional, Sequence

from . import __version__
from .activation import ActivationList
from .config_store import TraceConfig, load_trace_config
from .dispatcher import OUTCOME_FAILED, EventDispatcher
from .entry_detector import detect_entry_from_command, detect_entry_from_conventions
from .errors import TraceError, TracingAborted
from .formatters import default_registry
from .hierarchy import ChainedTypeHierarchy, MappingTypeHierarchy, RuntimeTypeHierarchy, TypeHierarchy
from .in_process import InProcessProgram
from .snapshot import Snapshot, load_snapshot, save_snapshot
from .tracer_script import FAILURE_EXIT_CODE, build_tracer_script
from .transforms import prepare_for_diagram

logger = logging.getLogger(__name__)

SEQTRACE_ROOT = Path(__file__).resolve().parent.parent
# Allow long traces for heavy workloads (20 minutes).
HARD_TIMEOUT_SECONDS = 1200.0


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(message)s")


@dataclass
class TraceResult:
    """Raw outcome of one traced run."""

    activations: ActivationList
    types: Dict[str, List[str]] = field(default_factory=dict)
    outcome: Optional[str] = None
    mismatched_exits: int = 0
    exit_status: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[TraceError] = None
    return_value: Any = None

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "TraceResult":
        return cls(snapshot.activations, dict(snapshot.types), snapshot.outcome)

    def hierarchy(self) -> TypeHierarchy:
        """Recorded ancestry first, then whatever is loaded in this interpreter."""
        return ChainedTypeHierarchy(MappingTypeHierarchy(self.types), RuntimeTypeHierarchy())

    def prepared(self, config: TraceConfig) -> ActivationList:
        return prepare_for_diagram(self.activations, config, self.hierarchy())

    def save(self, path) -> None:
        save_snapshot(path, self.activations, self.types, self.outcome)


class StreamRedirectThread(threading.Thread):
    """Copies a child's output stream to one of ours, line by line."""

    def __init__(self, name: str, source: IO[str], sink: IO[str], prefix: str = ""):
        super().__init__(name=name, daemon=True)
        self.source = source
        self.sink = sink
        self.prefix = prefix
        self.lines: List[str] = []

    def run(self) -> None:
        for line in iter(self.source.readline, ""):
            self.lines.append(line)
            self.sink.write(self.prefix + line)
            self.sink.flush()
        self.source.close()


class ExecutionTracer:
    def __init__(self, config: Optional[TraceConfig] = None):
        self.config = config or TraceConfig()
        self.config.validate()

    # --- in-process --------------------------------------------------------

    def trace_callable(self, function: Callable[..., Any], *args: Any, **kwargs: Any) -> TraceResult:
        return self._trace(lambda program: program.run(function, *args, **kwargs))

    def trace_script(self, path: str, argv: Sequence[str] = (), check: bool = True) -> TraceResult:
        return self._trace(lambda program: program.run_script(path, argv), check=check)

    def trace_module(self, module_name: str, argv: Sequence[str] = (), check: bool = True) -> TraceResult:
        return self._trace(lambda program: program.run_module(module_name, argv), check=check)

    def _trace(self, runner: Callable[[InProcessProgram], Any], check: bool = True) -> TraceResult:
        """
        Run ``runner`` under a fresh InProcessProgram and collect the tree.

        Exceptions of the traced code are recorded on the result, not raised.
        A dispatcher failure (e.g. the start method does not exist) is raised
        unless ``check`` is false.
        """
        program = InProcessProgram()
        root_activations = ActivationList()
        dispatcher = EventDispatcher(program, root_activations, self.config)
        dispatcher.set_event_requests()
        dispatcher.start()

        result = TraceResult(root_activations)
        try:
            result.return_value = runner(program)
        except SystemExit as exc:
            result.exit_status = exc.code if isinstance(exc.code, int) else (0 if exc.code is None else 1)
        except TracingAborted as exc:
            logger.debug("TRACE | aborted | reason=%s", exc.reason)
        except Exception as exc:
            result.error = f"{type(exc).__name__}: {exc}"
            traceback.print_exc()
        finally:
            dispatcher.join()

        result.types = {owner: list(chain) for owner, chain in program.types.ancestry.items()}
        result.outcome = dispatcher.outcome
        result.mismatched_exits = dispatcher.mismatched_exits
        result.failure = dispatcher.failure
        logger.info(
            "TRACE | done | outcome=%s | roots=%d | calls=%d | mismatched_exits=%d",
            result.outcome,
            len(root_activations),
            root_activations.count_nodes(),
            result.mismatched_exits,
        )
        if check and result.failure is not None:
            raise result.failure
        return result

    # --- child process -----------------------------------------------------

    @staticmethod
    def target_python(target_dir: Path) -> str:
        """The target's ``.venv`` interpreter when it has one, else ours."""
        venv = target_dir / ".venv"
        for candidate in (
            venv / "bin" / "python",
            venv / "bin" / "python3",
            venv / "Scripts" / "python.exe",
            venv / "Scripts" / "python3.exe",
        ):
            if candidate.exists():
                print(f"🐍 Using venv Python: {candidate}")
                return str(candidate)
        return sys.executable

    def trace_command(
        self,
        command: Optional[str],
        target_dir: Path,
        timeout: float = HARD_TIMEOUT_SECONDS,
        log_level: str = "INFO",
    ) -> TraceResult:
        """
        Trace ``command`` run from ``target_dir`` in a child interpreter.

        The entry point is derived from the command itself; without a command
        a conventionally named script in the target directory is used.
        """
        target_dir = Path(target_dir).resolve()
        if not target_dir.is_dir():
            raise TraceError(f"Target directory not found: {target_dir}")
        if command:
            entry = detect_entry_from_command(command, target_dir)
        else:
            entry = detect_entry_from_conventions(target_dir)
        python = self.target_python(target_dir)
        print(f"TRACE | cmd={command or entry.describe()} | target={target_dir} | python={python}")

        with tempfile.TemporaryDirectory(prefix="seqtrace-") as work_dir:
            snapshot_path = Path(work_dir) / "snapshot.json"
            script_path = Path(work_dir) / "tracer_bootstrap.py"
            script_path.write_text(
                build_tracer_script(str(target_dir), str(SEQTRACE_ROOT), entry, self.config,
                                    str(snapshot_path), log_level),
                encoding="utf-8",
            )
            returncode, stderr_lines = self._run_child([python, str(script_path)], target_dir, timeout)

            if returncode == FAILURE_EXIT_CODE:
                reason = stderr_lines[-1].strip() if stderr_lines else "unknown error"
                raise TraceError(f"Tracing failed in child process: {reason}")
            if not snapshot_path.exists():
                raise TraceError(f"Child process exited with {returncode} without writing a trace")
            result = TraceResult.from_snapshot(load_snapshot(snapshot_path))

        result.exit_status = returncode
        return result

    def _run_child(self, args: List[str], cwd: Path, timeout: float):
        start = time.time()
        env = dict(os.environ, PYTHONUNBUFFERED="1", PYTHONIOENCODING="utf-8")
        process = subprocess.Popen(
            args,
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            env=env,
        )
        out_thread = StreamRedirectThread("output reader", process.stdout, sys.stdout, "  📄 ")
        err_thread = StreamRedirectThread("error reader", process.stderr, sys.stderr)
        out_thread.start()
        err_thread.start()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            print(f"⏰ Trace hard-timeout after {time.time() - start:.1f}s (limit={timeout:.0f}s) - terminating traced process")
            process.terminate()
            try:
                process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                print("⚠️  Traced process still alive after terminate(); sending kill()")
                process.kill()
                process.wait()
        out_thread.join()
        err_thread.join()
        print(f"✅ Completed ({time.time() - start:.1f}s) | exit={process.returncode}")
        return process.returncode, err_thread.lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seqtrace",
        description="Record the method calls of a Python program as a sequence diagram",
    )
    parser.add_argument("command", nargs="?", help="Command to trace (e.g. 'python main.py args')")
    parser.add_argument("--target", default=".", help="Directory the command runs in (default: .)")
    parser.add_argument("--read", metavar="FILE", help="Read a saved snapshot instead of tracing")
    parser.add_argument("--save", metavar="FILE", help="Save the raw trace as a snapshot")
    parser.add_argument("--out", metavar="FILE", help="Write the diagram to FILE instead of stdout")
    parser.add_argument("--format", help="Diagram format (default: text)")
    parser.add_argument("--quiet", action="store_true", help="Do not print the diagram")
    parser.add_argument("--start", metavar="METHOD", help="Start tracing at Owner.method")
    parser.add_argument("--include", action="append", default=[], metavar="PATTERN",
                        help="Only trace matching classes (repeatable)")
    parser.add_argument("--exclude", action="append", default=[], metavar="PATTERN",
                        help="Never trace matching classes (repeatable)")
    parser.add_argument("--boundary", action="append", default=[], metavar="METHOD",
                        help="Do not trace below Owner.method (repeatable)")
    parser.add_argument("--public-only", action="store_true", help="Skip non-public methods")
    parser.add_argument("--no-std-excludes", action="store_true",
                        help="Also trace the standard library and seqtrace itself")
    parser.add_argument("--no-trace", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--verbose", action="store_true", help="Log every traced call")
    parser.add_argument("--config", metavar="FILE", help="JSON configuration (default: ./seqtrace.json)")
    parser.add_argument("--view", action="store_true", help="Show the result in the tree viewer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> TraceConfig:
    """File configuration with command line flags applied on top."""
    config = load_trace_config(args.config)
    config.include_patterns += args.include
    config.exclude_patterns += args.exclude
    config.boundary_methods += args.boundary
    if args.public_only:
        config.public_only = True
    if args.start:
        config.start_method = args.start
    if args.no_std_excludes:
        config.std_excludes = False
    if args.no_trace:
        config.log_events = False
    if args.format:
        config.output_format = args.format
    config.validate()
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else "WARNING" if args.no_trace else "INFO"
    configure_logging(level)

    try:
        config = config_from_args(args)
        registry = default_registry()
        formatter = registry.get(config.output_format)

        if args.read:
            result = TraceResult.from_snapshot(load_snapshot(args.read))
        elif args.command or args.target != ".":
            tracer = ExecutionTracer(config)
            result = tracer.trace_command(args.command, Path(args.target), log_level=level)
        else:
            parser.print_help()
            return 2

        if args.save:
            result.save(args.save)
        if result.outcome == OUTCOME_FAILED:
            print("⚠️  The trace ended with a tracing failure; the tree may be incomplete")

        prepared = result.prepared(config)
        diagram = formatter(prepared)
        if args.out:
            diagram.save(args.out)
            print(f"💾 Diagram written to {args.out}")
        elif not args.quiet:
            print(diagram.render(), end="")

        if args.view:
            from .main_app import show_activations

            return show_activations(result, config, title=args.read or args.command or "seqtrace")
    except TraceError as exc:
        print(f"❌ Tracing failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
