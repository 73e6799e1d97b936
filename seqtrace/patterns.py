"""
Simple wildcard patterns for class and method names.

Supported forms, matched against a fully qualified name:

    prefix*   the name starts with ``prefix``
    *suffix   the name ends with ``suffix``
    *         everything
    exact     plain string equality

A ``*`` anywhere else is an ordinary character.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class Matcher:
    pattern: str
    kind: str  # "any", "prefix", "suffix" or "exact"
    text: str

    def matches(self, name: str) -> bool:
        if self.kind == "any":
            return True
        if self.kind == "prefix":
            return name.startswith(self.text)
        if self.kind == "suffix":
            return name.endswith(self.text)
        return name == self.text


def compile_pattern(pattern: str) -> Matcher:
    """
    Compile a wildcard pattern.

    A trailing ``*`` wins over a leading one, so ``*foo*`` is the prefix
    ``*foo``. Any other ``*`` is compared literally.
    """
    if pattern == "*":
        return Matcher(pattern, "any", "")
    if pattern.endswith("*"):
        return Matcher(pattern, "prefix", pattern[:-1])
    if pattern.startswith("*"):
        return Matcher(pattern, "suffix", pattern[1:])
    return Matcher(pattern, "exact", pattern)


class PatternSet:
    """A group of patterns; matches when any member pattern matches."""

    def __init__(self, patterns: Iterable[str] = ()):
        self._matchers: Tuple[Matcher, ...] = tuple(compile_pattern(p) for p in patterns)

    @property
    def patterns(self) -> List[str]:
        return [m.pattern for m in self._matchers]

    def __bool__(self) -> bool:
        return bool(self._matchers)

    def __len__(self) -> int:
        return len(self._matchers)

    def matches(self, name: str) -> bool:
        return any(m.matches(name) for m in self._matchers)

    def matches_call(self, owner: str, member_name: str) -> bool:
        """Match either the owner itself or ``owner.member``."""
        full_name = f"{owner}.{member_name}"
        return any(m.matches(owner) or m.matches(full_name) for m in self._matchers)
