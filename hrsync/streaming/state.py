"""Snapshot/delta state synchronization."""

import copy
from typing import Any, Dict, List, Optional, Union

from .events import (
    PatchOperation,
    StateDeltaEvent,
    StateSnapshotEvent,
    StreamEvent,
    parse_event,
)
from ..utils.logger import get_app_logger


class PatchError(ValueError):
    """A patch operation could not be applied."""


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def _parse_pointer(path: str) -> List[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise PatchError(f"Invalid JSON pointer: {path!r}")
    return [t.replace("~1", "/").replace("~0", "~") for t in path[1:].split("/")]


def _resolve_parent(document: Any, tokens: List[str]):
    target = document
    for token in tokens[:-1]:
        if isinstance(target, dict):
            if token not in target:
                raise PatchError(f"Path segment {token!r} does not exist")
            target = target[token]
        elif isinstance(target, list):
            try:
                target = target[int(token)]
            except (ValueError, IndexError):
                raise PatchError(f"Invalid list index {token!r}")
        else:
            raise PatchError(f"Cannot descend into {type(target).__name__}")
    return target


def _list_index(target: list, token: str, allow_end: bool) -> int:
    if allow_end and token == "-":
        return len(target)
    try:
        index = int(token)
    except ValueError:
        raise PatchError(f"Invalid list index {token!r}")
    upper = len(target) if allow_end else len(target) - 1
    if index < 0 or index > upper:
        raise PatchError(f"List index {index} out of range")
    return index


def apply_patch(document: Dict[str, Any], patch: List[PatchOperation]) -> Dict[str, Any]:
    """
    Apply add/remove/replace operations to a copy of ``document``.

    Raises:
        PatchError: If an operation does not apply
    """
    result = copy.deepcopy(document)
    for operation in patch:
        tokens = _parse_pointer(operation.path)
        if not tokens:
            if operation.op == "remove":
                raise PatchError("Cannot remove the document root")
            result = copy.deepcopy(operation.value)
            continue

        parent = _resolve_parent(result, tokens)
        key = tokens[-1]

        if isinstance(parent, dict):
            if operation.op in ("remove", "replace") and key not in parent:
                raise PatchError(f"Cannot {operation.op} missing member {operation.path}")
            if operation.op == "remove":
                del parent[key]
            else:
                parent[key] = copy.deepcopy(operation.value)
        elif isinstance(parent, list):
            if operation.op == "add":
                parent.insert(_list_index(parent, key, allow_end=True), copy.deepcopy(operation.value))
            elif operation.op == "remove":
                del parent[_list_index(parent, key, allow_end=False)]
            else:
                parent[_list_index(parent, key, allow_end=False)] = copy.deepcopy(operation.value)
        else:
            raise PatchError(f"Cannot apply {operation.op} at {operation.path}")
    return result


def diff_state(old: Dict[str, Any], new: Dict[str, Any], prefix: str = "") -> List[PatchOperation]:
    """
    Patch that turns ``old`` into ``new``.

    Nested objects are diffed member by member. Lists and scalars are
    replaced whole.
    """
    operations = []
    for key, value in new.items():
        path = f"{prefix}/{_escape(key)}"
        if key not in old:
            operations.append(PatchOperation(op="add", path=path, value=value))
        elif isinstance(value, dict) and isinstance(old[key], dict):
            operations.extend(diff_state(old[key], value, path))
        elif old[key] != value:
            operations.append(PatchOperation(op="replace", path=path, value=value))
    for key in old:
        if key not in new:
            operations.append(PatchOperation(op="remove", path=f"{prefix}/{_escape(key)}"))
    return operations


class ClientStateMirror:
    """
    Client-side view of conversation state built from stream events.

    A snapshot replaces the state. Deltas apply in order on top of it. When
    a sequence number is skipped, or a delta fails to apply, the mirror is
    stale and ignores deltas until the next snapshot.
    """

    def __init__(self):
        self.state: Optional[Dict[str, Any]] = None
        self.stale = False
        self.last_sequence: Optional[int] = None
        self.logger = get_app_logger()

    @property
    def needs_snapshot(self) -> bool:
        return self.state is None or self.stale

    def reset_sequence(self) -> None:
        """Forget the last sequence number, e.g. when a new stream starts."""
        self.last_sequence = None

    def apply(self, event: Union[StreamEvent, Dict[str, Any], str]) -> bool:
        """
        Apply one event.

        Returns:
            True if the state changed
        """
        if not isinstance(event, StreamEvent):
            event = parse_event(event)

        if event.sequence is not None:
            if self.last_sequence is not None and event.sequence != self.last_sequence + 1:
                self.logger.warning(
                    f"Missed stream events between {self.last_sequence} and {event.sequence}, "
                    f"waiting for a fresh snapshot"
                )
                self.stale = True
            self.last_sequence = event.sequence

        if isinstance(event, StateSnapshotEvent):
            self.state = copy.deepcopy(event.state)
            self.stale = False
            return True

        if isinstance(event, StateDeltaEvent):
            if self.needs_snapshot:
                self.logger.warning("Ignoring state delta without a current snapshot")
                return False
            try:
                self.state = apply_patch(self.state, event.patch)
            except PatchError as e:
                self.logger.warning(f"Failed to apply state delta: {e}")
                self.stale = True
                return False
            return True

        return False
