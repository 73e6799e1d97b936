import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "seqtrace.json"

# Modules whose calls are noise in a sequence diagram of application code:
# the tracer itself, the import machinery and common standard library
# helpers, plus code objects that are not methods at all.
STANDARD_EXCLUDES: Tuple[str, ...] = (
    "seqtrace.*",
    "threading.*",
    "importlib.*",
    "_frozen_importlib*",
    "encodings.*",
    "codecs.*",
    "abc.*",
    "posixpath.*",
    "genericpath.*",
    "os.*",
    "typing.*",
    "enum.*",
    "functools.*",
    "contextlib.*",
    "weakref.*",
    "_weakrefset.*",
    "re.*",
    "collections.*",
    "logging.*",
    "runpy.*",
    "*.<module>",
    "*.<genexpr>",
    "*.<listcomp>",
    "*.<dictcomp>",
    "*.<setcomp>",
)


def split_qualified_name(qualified_name: str) -> Tuple[str, str]:
    """
    Split ``pkg.mod.Type.method`` into owner and member name at the last dot.
    """
    if not isinstance(qualified_name, str):
        raise ConfigurationError(f"Method name must be a string: {qualified_name!r}")
    owner, sep, member = qualified_name.rpartition(".")
    if not sep or not owner or not member:
        raise ConfigurationError(
            f"Invalid method name {qualified_name!r}: expected Owner.method"
        )
    return owner, member


@dataclass
class TraceConfig:
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    boundary_methods: List[str] = field(default_factory=list)
    public_only: bool = False
    start_method: Optional[str] = None
    std_excludes: bool = True
    log_events: bool = True
    output_format: str = "text"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TraceConfig":
        """Build a config from a JSON object, keeping only known keys."""
        if not isinstance(raw, dict):
            raise ConfigurationError("Trace configuration must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            logger.warning("TRACE | config | ignoring unknown keys=%s", ",".join(unknown))
        config = cls(**{key: value for key, value in raw.items() if key in known})
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boundary_methods": list(self.boundary_methods),
            "exclude_patterns": list(self.exclude_patterns),
            "include_patterns": list(self.include_patterns),
            "log_events": self.log_events,
            "output_format": self.output_format,
            "public_only": self.public_only,
            "start_method": self.start_method,
            "std_excludes": self.std_excludes,
        }

    def validate(self) -> None:
        """Raise ConfigurationError for anything that would only fail mid-trace."""
        for name in ("include_patterns", "exclude_patterns", "boundary_methods"):
            value = getattr(self, name)
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(item, str) for item in value
            ):
                raise ConfigurationError(f"'{name}' must be a list of strings")
            setattr(self, name, list(value))

        for method in self.boundary_methods:
            split_qualified_name(method)
        if self.start_method is not None:
            split_qualified_name(self.start_method)

        for name in ("public_only", "std_excludes", "log_events"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"'{name}' must be true or false")
        if not isinstance(self.output_format, str) or not self.output_format:
            raise ConfigurationError("'output_format' must be a non-empty string")

    def effective_exclude_patterns(self) -> List[str]:
        patterns = list(self.exclude_patterns)
        if self.std_excludes:
            patterns.extend(p for p in STANDARD_EXCLUDES if p not in patterns)
        return patterns


def _config_path(path: Optional[Union[str, Path]]) -> Optional[Path]:
    if path is not None:
        return Path(path)
    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.exists() else None


def load_trace_config(path: Optional[Union[str, Path]] = None) -> TraceConfig:
    """
    Load a TraceConfig from JSON.

    Without a path, ``seqtrace.json`` in the working directory is used when it
    exists and defaults otherwise. An explicit path must exist.
    """
    config_path = _config_path(path)
    if config_path is None:
        return TraceConfig()

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Failed to parse {config_path}: {exc}") from exc

    config = TraceConfig.from_dict(raw)
    logger.info("TRACE | config | loaded=%s", config_path)
    return config


def save_trace_config(config: TraceConfig, path: Union[str, Path]) -> None:
    """
    Persist a TraceConfig. Only known keys are written, sorted and indented.
    """
    config.validate()
    Path(path).write_text(json.dumps(config.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
