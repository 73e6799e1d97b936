"""
Resolve the command a user wants traced to a Python entry point.

Only clear evidence from the command is used: ``python x.py``, ``python -m
pkg.mod``, ``./x.py`` and executables inside the target directory that are
symlinks to a ``.py`` file or start with a python shebang. Anything else is
rejected rather than guessed.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class EntryPoint:
    kind: str  # "script" or "module"
    target: str  # script path relative to the target dir, or a module name
    args: List[str] = field(default_factory=list)

    @property
    def is_module(self) -> bool:
        return self.kind == "module"

    def describe(self) -> str:
        shown = f"-m {self.target}" if self.is_module else self.target
        return " ".join([shown, *self.args])


def _is_python_executable(token: str) -> bool:
    return os.path.basename(token).startswith("python")


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.relative_to(directory)
        return True
    except ValueError:
        return False


def _script_in_target(token: str, target_dir: Path) -> Optional[Path]:
    path = Path(token)
    candidate = path if path.is_absolute() else (target_dir / path).resolve()
    if candidate.is_file() and _is_within(candidate, target_dir):
        return candidate
    return None


def _has_python_shebang(path: Path) -> bool:
    try:
        with path.open("r", encoding="utf-8", errors="ignore") as handle:
            first_line = handle.readline()
    except OSError:
        return False
    return first_line.startswith("#!") and "python" in first_line


def module_file(module_name: str, target_dir: Path) -> Path:
    """File that ``python -m module_name`` would run from target_dir."""
    target_dir = target_dir.resolve()
    module_path = module_name.replace(".", "/")
    for candidate in (target_dir / f"{module_path}.py", target_dir / module_path / "__main__.py"):
        if candidate.is_file() and _is_within(candidate.resolve(), target_dir):
            return candidate
    raise ConfigurationError(
        f"Could not resolve module '{module_name}' to a Python file in {target_dir}"
    )


def detect_entry_from_command(command: str, target_dir: Path) -> EntryPoint:
    """
    Parse ``command`` and return the entry point it runs.

    Raises ConfigurationError when the command does not clearly name a Python
    script or module inside ``target_dir``.
    """
    target_dir = target_dir.resolve()
    tokens = shlex.split(command)
    if not tokens:
        raise ConfigurationError("Empty command")

    first = tokens[0]
    if _is_python_executable(first) and "-m" in tokens[1:2]:
        if len(tokens) < 3:
            raise ConfigurationError("python -m used without a module name")
        module_file(tokens[2], target_dir)
        return EntryPoint("module", tokens[2], tokens[3:])

    if _is_python_executable(first) and len(tokens) >= 2:
        script = _script_in_target(tokens[1], target_dir)
        if script is not None:
            return EntryPoint("script", str(script.relative_to(target_dir)), tokens[2:])
        raise ConfigurationError(f"Script not found in {target_dir}: {tokens[1]}")

    candidate = _script_in_target(first, target_dir)
    if candidate is not None:
        unresolved = target_dir / first
        if unresolved.is_symlink() and candidate.suffix == ".py":
            return EntryPoint("script", str(candidate.relative_to(target_dir)), tokens[1:])
        if candidate.suffix == ".py" or _has_python_shebang(candidate):
            return EntryPoint("script", str(candidate.relative_to(target_dir)), tokens[1:])

    raise ConfigurationError(f"Could not find a Python entry point in command: {command}")


def detect_entry_from_conventions(target_dir: Path) -> EntryPoint:
    """Pick a conventionally named entry script, used when no command is given."""
    names = [f"{target_dir.name}.py", "main.py", "app.py", "run.py", "__main__.py"]
    for name in names:
        if (target_dir / name).is_file():
            return EntryPoint("script", name)
    raise ConfigurationError(f"No conventional entry point found in {target_dir}")
