"""
Saving and loading finished traces as JSON.

A snapshot holds the activation tree, the class ancestry observed while
tracing (so constructor filtering still works where the traced classes
cannot be imported) and how the traced program ended.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .activation import UNKNOWN_DEPTH, Activation, ActivationList, Member
from .errors import SnapshotError
from .hierarchy import MappingTypeHierarchy

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "seqtrace-snapshot"
SNAPSHOT_VERSION = 1


@dataclass
class Snapshot:
    activations: ActivationList
    types: Dict[str, List[str]] = field(default_factory=dict)
    outcome: Optional[str] = None

    def hierarchy(self) -> MappingTypeHierarchy:
        return MappingTypeHierarchy(self.types)


def _member_to_dict(member: Member) -> Dict[str, Any]:
    data: Dict[str, Any] = {"declaring_type": member.declaring_type, "name": member.name}
    if member.signature:
        data["signature"] = list(member.signature)
    if member.synthetic:
        data["synthetic"] = True
    return data


def _activation_to_dict(activation: Activation) -> Dict[str, Any]:
    root: Dict[str, Any] = {}
    stack = [(activation, root)]
    while stack:
        source, target = stack.pop()
        target["owner"] = source.owner
        target["member"] = _member_to_dict(source.member)
        if source.repetitions != 1:
            target["repetitions"] = source.repetitions
        children: List[Dict[str, Any]] = []
        target["children"] = children
        for child in source.children:
            child_data: Dict[str, Any] = {}
            children.append(child_data)
            stack.append((child, child_data))
    return root


def _member_from_dict(data: Any) -> Member:
    if not isinstance(data, dict):
        raise SnapshotError(f"Invalid member entry: {data!r}")
    try:
        declaring_type = data["declaring_type"]
        name = data["name"]
    except KeyError as exc:
        raise SnapshotError(f"Member entry is missing {exc}") from exc
    signature = data.get("signature", [])
    if not isinstance(declaring_type, str) or not isinstance(name, str) or not isinstance(signature, list):
        raise SnapshotError(f"Invalid member entry: {data!r}")
    return Member(declaring_type, name, tuple(str(s) for s in signature), bool(data.get("synthetic", False)))


def _activation_from_dict(data: Any) -> Activation:
    roots: List[Activation] = []
    stack: List[tuple] = [(data, None)]
    while stack:
        item, parent = stack.pop()
        if not isinstance(item, dict) or not isinstance(item.get("owner"), str):
            raise SnapshotError(f"Invalid activation entry: {item!r}")
        activation = Activation(parent, item["owner"], _member_from_dict(item.get("member")), UNKNOWN_DEPTH)
        repetitions = item.get("repetitions", 1)
        if not isinstance(repetitions, int) or isinstance(repetitions, bool) or repetitions < 1:
            raise SnapshotError(f"Invalid repetition count: {repetitions!r}")
        activation.repetitions = repetitions
        if parent is None:
            roots.append(activation)
        children = item.get("children", [])
        if not isinstance(children, list):
            raise SnapshotError(f"Invalid children for {activation.qualified_name}")
        # reversed, so siblings are popped and attached in call order
        for child in reversed(children):
            stack.append((child, activation))
    return roots[0]


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    return {
        "format": SNAPSHOT_FORMAT,
        "version": SNAPSHOT_VERSION,
        "activations": [_activation_to_dict(a) for a in snapshot.activations],
        "types": {owner: list(chain) for owner, chain in sorted(snapshot.types.items())},
        "outcome": snapshot.outcome,
    }


def snapshot_from_dict(data: Any) -> Snapshot:
    if not isinstance(data, dict) or data.get("format") != SNAPSHOT_FORMAT:
        raise SnapshotError("Not a seqtrace snapshot")
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version: {version!r}")
    raw_activations = data.get("activations")
    if not isinstance(raw_activations, list):
        raise SnapshotError("Snapshot has no activation list")
    types = data.get("types") or {}
    if not isinstance(types, dict) or not all(isinstance(v, list) for v in types.values()):
        raise SnapshotError("Invalid type table in snapshot")
    outcome = data.get("outcome")
    if outcome is not None and not isinstance(outcome, str):
        raise SnapshotError(f"Invalid outcome: {outcome!r}")
    activations = ActivationList(_activation_from_dict(item) for item in raw_activations)
    return Snapshot(activations, {k: [str(n) for n in v] for k, v in types.items()}, outcome)


def save_snapshot(
    path: Union[str, Path],
    activations: Sequence[Activation],
    types: Optional[Dict[str, Sequence[str]]] = None,
    outcome: Optional[str] = None,
) -> None:
    snapshot = Snapshot(
        ActivationList(activations),
        {owner: list(chain) for owner, chain in (types or {}).items()},
        outcome,
    )
    try:
        Path(path).write_text(json.dumps(snapshot_to_dict(snapshot), indent=2), encoding="utf-8")
    except (OSError, TypeError, ValueError) as exc:
        raise SnapshotError(f"Failed to save snapshot {path}: {exc}") from exc
    logger.info("TRACE | snapshot | saved=%s | roots=%d", path, len(snapshot.activations))


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SnapshotError(f"Failed to read snapshot {path}: {exc}") from exc
    snapshot = snapshot_from_dict(raw)
    logger.info("TRACE | snapshot | loaded=%s | roots=%d", path, len(snapshot.activations))
    return snapshot
