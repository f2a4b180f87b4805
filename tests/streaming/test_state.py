"""Tests for patch application, state diffs and ClientStateMirror."""

import pytest

from hrsync.streaming import (
    ClientStateMirror,
    MessageStartEvent,
    PatchError,
    PatchOperation,
    StateDeltaEvent,
    StateSnapshotEvent,
    apply_patch,
    diff_state,
)


CLOSED_AT = "2024-03-04T17:00:00Z"


def _op(op, path, value=None):
    return PatchOperation(op=op, path=path, value=value)


class TestApplyPatch:
    """SUT: apply_patch"""

    def test_replace_and_add(self):
        state = {"isOpen": True}
        result = apply_patch(state, [_op("replace", "/isOpen", False), _op("add", "/lastClosed", CLOSED_AT)])
        assert result == {"isOpen": False, "lastClosed": CLOSED_AT}
        assert state == {"isOpen": True}

    def test_remove(self):
        assert apply_patch({"a": 1, "b": 2}, [_op("remove", "/a")]) == {"b": 2}

    def test_nested_and_escaped(self):
        state = {"context": {"a/b": 1, "list": [1, 3]}}
        result = apply_patch(state, [
            _op("replace", "/context/a~1b", 2),
            _op("add", "/context/list/1", 2),
            _op("add", "/context/list/-", 4),
        ])
        assert result == {"context": {"a/b": 2, "list": [1, 2, 3, 4]}}

    def test_replace_missing_member(self):
        with pytest.raises(PatchError):
            apply_patch({}, [_op("replace", "/isOpen", False)])

    def test_missing_parent(self):
        with pytest.raises(PatchError):
            apply_patch({}, [_op("add", "/context/x", 1)])

    def test_list_index_out_of_range(self):
        with pytest.raises(PatchError):
            apply_patch({"items": [1]}, [_op("remove", "/items/3")])


class TestDiffState:
    """SUT: diff_state"""

    def test_round_trip(self):
        old = {"isClockedIn": False, "lastClockIn": None, "context": {"a": 1, "b": 2}}
        new = {"isClockedIn": True, "lastClockIn": "2024-03-04T09:00:00Z", "context": {"a": 1, "c": 3}}
        assert apply_patch(old, diff_state(old, new)) == new

    def test_identical_states(self):
        assert diff_state({"a": 1}, {"a": 1}) == []

    def test_nested_paths(self):
        operations = diff_state({"context": {"a": 1}}, {"context": {"a": 2}})
        assert [(o.op, o.path, o.value) for o in operations] == [("replace", "/context/a", 2)]


class TestClientStateMirror:
    """Tests for ClientStateMirror."""

    class TestApply:
        """SUT: ClientStateMirror.apply"""

        def test_snapshot_plus_deltas_matches_direct_snapshot(self):
            """A snapshot followed by two deltas should equal the equivalent snapshot."""
            incremental = ClientStateMirror()
            incremental.apply(StateSnapshotEvent(state={"isOpen": True}, sequence=1))
            incremental.apply(StateDeltaEvent(patch=[_op("replace", "/isOpen", False)], sequence=2))
            incremental.apply(StateDeltaEvent(patch=[_op("add", "/lastClosed", CLOSED_AT)], sequence=3))

            direct = ClientStateMirror()
            direct.apply(StateSnapshotEvent(state={"isOpen": False, "lastClosed": CLOSED_AT}, sequence=1))

            assert incremental.state == direct.state

        def test_delta_before_snapshot_ignored(self):
            """A delta without a snapshot should not create state."""
            mirror = ClientStateMirror()
            assert mirror.apply(StateDeltaEvent(patch=[_op("add", "/isOpen", True)])) is False
            assert mirror.state is None
            assert mirror.needs_snapshot is True

        def test_sequence_gap_marks_stale(self):
            """A skipped sequence number should stop deltas until the next snapshot."""
            mirror = ClientStateMirror()
            mirror.apply(StateSnapshotEvent(state={"isOpen": True}, sequence=1))
            assert mirror.apply(StateDeltaEvent(patch=[_op("replace", "/isOpen", False)], sequence=3)) is False

            assert mirror.stale is True
            assert mirror.state == {"isOpen": True}

            mirror.apply(StateSnapshotEvent(state={"isOpen": False}, sequence=4))
            assert mirror.stale is False
            assert mirror.state == {"isOpen": False}

        def test_failed_patch_marks_stale(self):
            """A delta that does not apply should mark the mirror stale."""
            mirror = ClientStateMirror()
            mirror.apply(StateSnapshotEvent(state={}, sequence=1))
            assert mirror.apply(StateDeltaEvent(patch=[_op("remove", "/missing")], sequence=2)) is False
            assert mirror.needs_snapshot is True

        def test_other_events_keep_state(self):
            """Non-state events should only advance the sequence."""
            mirror = ClientStateMirror()
            mirror.apply(StateSnapshotEvent(state={"isOpen": True}, sequence=1))
            assert mirror.apply(MessageStartEvent(message_id="m1", sequence=2)) is False
            assert mirror.last_sequence == 2

        def test_accepts_wire_dicts(self):
            """apply() should accept decoded JSON events."""
            mirror = ClientStateMirror()
            mirror.apply({"type": "state.snapshot", "timestamp": 0, "sequence": 1, "state": {"isOpen": True}})
            mirror.apply({
                "type": "state.delta",
                "timestamp": 0,
                "sequence": 2,
                "patch": [{"op": "replace", "path": "/isOpen", "value": False}],
            })
            assert mirror.state == {"isOpen": False}

        def test_reset_sequence_for_new_stream(self):
            """reset_sequence() should let a new stream start from 1 without a gap."""
            mirror = ClientStateMirror()
            mirror.apply(StateSnapshotEvent(state={"isOpen": True}, sequence=5))
            mirror.reset_sequence()
            mirror.apply(StateSnapshotEvent(state={"isOpen": False}, sequence=1))
            mirror.apply(StateDeltaEvent(patch=[_op("replace", "/isOpen", True)], sequence=2))
            assert mirror.stale is False
            assert mirror.state == {"isOpen": True}
