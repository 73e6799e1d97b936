import json
from string import Template
from typing import List

from .config_store import TraceConfig
from .entry_detector import EntryPoint

# Exit status of the child when tracing itself failed.
FAILURE_EXIT_CODE = 70

# Bootstrap run by the target's interpreter. It traces the entry point in
# that process and leaves a snapshot for the parent to read. Values are
# substituted as Python literals (repr), never spliced into quoted strings.
TRACER_SCRIPT_TEMPLATE = Template(
    """
import json
import os
import sys
import traceback

os.chdir($TARGET_DIR)
sys.path.insert(0, $TARGET_DIR)
sys.path.append($SEQTRACE_ROOT)

from seqtrace.config_store import TraceConfig
from seqtrace.execution_tracer import ExecutionTracer, configure_logging

configure_logging($LOG_LEVEL)

print("🚀 seqtrace child tracer")
print(f"Python: {sys.executable}")
print("Entry Point: " + $ENTRY_DESC)
print("=" * 60)


def main():
    config = TraceConfig.from_dict(json.loads($CONFIG_JSON))
    tracer = ExecutionTracer(config)
    if $IS_MODULE:
        result = tracer.trace_module($ENTRY_TARGET, $COMMAND_ARGS, check=False)
    else:
        result = tracer.trace_script($ENTRY_TARGET, $COMMAND_ARGS, check=False)
    result.save($SNAPSHOT_PATH)

    print("=" * 60)
    if result.failure is not None:
        print(f"TRACE | failed | error={result.failure}", file=sys.stderr)
        return $FAILURE_EXIT_CODE
    if result.error:
        print(f"❌ Target error: {result.error}")
    print(f"💾 Saved {result.activations.count_nodes()} traced calls")
    return result.exit_status or 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception:
        traceback.print_exc()
        sys.exit(3)
"""
)


def build_tracer_script(
    target_dir: str,
    seqtrace_root: str,
    entry: EntryPoint,
    config: TraceConfig,
    snapshot_path: str,
    log_level: str = "INFO",
) -> str:
    """Build the child bootstrap script for one entry point."""
    command_args: List[str] = list(entry.args)
    return TRACER_SCRIPT_TEMPLATE.substitute(
        TARGET_DIR=repr(str(target_dir)),
        SEQTRACE_ROOT=repr(str(seqtrace_root)),
        LOG_LEVEL=repr(log_level),
        ENTRY_DESC=repr(entry.describe()),
        CONFIG_JSON=repr(json.dumps(config.to_dict(), sort_keys=True)),
        IS_MODULE=repr(entry.is_module),
        ENTRY_TARGET=repr(entry.target),
        COMMAND_ARGS=repr(command_args),
        SNAPSHOT_PATH=repr(str(snapshot_path)),
        FAILURE_EXIT_CODE=repr(FAILURE_EXIT_CODE),
    )
