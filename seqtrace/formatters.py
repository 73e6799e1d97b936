"""
Rendering finished traces.

A formatter is a callable turning an ActivationList into a Diagram; a
Diagram knows its text and how to save itself. Formatters are looked up by
name in a FormatterRegistry, which callers construct explicitly.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from .activation import Activation, ActivationList
from .columns import assign_columns
from .errors import ConfigurationError, FormatError

logger = logging.getLogger(__name__)


class Diagram:
    def render(self) -> str:
        raise NotImplementedError

    def save(self, path: Union[str, Path]) -> None:
        try:
            Path(path).write_text(self.render(), encoding="utf-8")
        except OSError as exc:
            raise FormatError(f"Failed to save diagram to {path}: {exc}") from exc
        logger.info("TRACE | diagram | saved=%s | type=%s", path, type(self).__name__)

    def __str__(self) -> str:
        return self.render()


class TextDiagram(Diagram):
    """The indented call tree, one call per line."""

    def __init__(self, text: str):
        self.text = text

    def render(self) -> str:
        return self.text


class SdeditTextDiagram(Diagram):
    """
    Sequence diagram in the text format of the sdedit tool.

    Each root activation gets its own actor (``Actor1``, ``Actor2``...) and
    its own set of objects, named after the short class name of each owner
    with the root's index appended.
    """

    def __init__(self, activations: Iterable[Activation]):
        self.activations = ActivationList(activations)

    @staticmethod
    def class_name(owner: str) -> str:
        return owner.rpartition(".")[2]

    def object_name(self, activation: Activation, index: int) -> str:
        return f"{self.class_name(activation.owner).lower()}{index}"

    def render(self) -> str:
        lines: List[str] = []
        for index, activation in enumerate(self.activations, start=1):
            lines.append(f"Actor{index}:Actor")
            lines.extend(self._object_lines(activation, index))
        lines.append("")
        for index, activation in enumerate(self.activations, start=1):
            lines.extend(self._message_lines(activation, index))
            lines.append("")
        return "\n".join(lines)

    def _object_lines(self, activation: Activation, index: int) -> List[str]:
        lines: List[str] = []
        seen = set()
        for lane in assign_columns(activation).lanes():
            class_name = self.class_name(lane.name)
            object_name = f"{class_name.lower()}{index}"
            if object_name not in seen:
                seen.add(object_name)
                lines.append(f"{object_name}:{class_name}[a]")
        return lines

    def _message_lines(self, activation: Activation, index: int) -> List[str]:
        root_name = self.object_name(activation, index)
        lines = [f"Actor{index}:{root_name}.{activation.member.name}"]
        stack = [(child, 1) for child in reversed(activation.children)]
        while stack:
            current, level = stack.pop()
            caller = self.object_name(current.parent, index)
            lines.append(
                f"{'  ' * level}{caller}:{self.object_name(current, index)}.{current.member.name}"
            )
            stack.extend((child, level + 1) for child in reversed(current.children))
        lines.append(f"{root_name}:stop")
        return lines


Formatter = Callable[[ActivationList], Diagram]


def format_text(activations: ActivationList) -> Diagram:
    return TextDiagram(ActivationList(activations).to_text())


def format_sdedit(activations: ActivationList) -> Diagram:
    return SdeditTextDiagram(activations)


class FormatterRegistry:
    def __init__(self, formatters: Optional[Dict[str, Formatter]] = None):
        self._formatters: Dict[str, Formatter] = dict(formatters or {})

    def register(self, name: str, formatter: Formatter) -> None:
        self._formatters[name] = formatter

    def get(self, name: str) -> Formatter:
        formatter = self._formatters.get(name)
        if formatter is None:
            raise ConfigurationError(
                f"Illegal format: {name}. Should be one of {self.formatter_types()}"
            )
        return formatter

    def names(self) -> List[str]:
        return sorted(self._formatters)

    def formatter_types(self) -> str:
        return ", ".join(self.names())

    def format(self, name: str, activations: ActivationList) -> Diagram:
        return self.get(name)(activations)


def default_registry() -> FormatterRegistry:
    return FormatterRegistry({"text": format_text, "sdedit": format_sdedit})
