"""Tests for QueueStore, target parsing and target sources."""
import json
import pytest
from pydantic import ValidationError

from dialer.errors import TargetSourceError
from dialer.queue_store import (
    JsonFileTargetSource, QueueStore, StaticTargetSource, parse_targets,
)
from dialer.state import AdvanceGuard, DialerState
from models.schemas import CallTarget


class TestParseTargets:

    def test_list_of_objects(self):
        targets = parse_targets([{"phone": "+15550001"}, {"phone": "+15550002", "name": "Bravo"}])
        assert [t.phone for t in targets] == ["+15550001", "+15550002"]
        assert targets[1].extra == {"name": "Bravo"}

    def test_object_values_keep_order(self):
        targets = parse_targets({"b": {"phone": "+2"}, "a": {"phone": "+1"}})
        assert [t.phone for t in targets] == ["+2", "+1"]

    def test_malformed_entries_are_retained(self):
        targets = parse_targets([None, "text", {"phone": ""}, {"phone": 15550001}])
        assert len(targets) == 4
        assert [t.is_dialable for t in targets] == [False, False, False, True]
        assert targets[3].phone == "15550001"

    def test_scalar_source_is_empty_queue(self):
        assert parse_targets("numbers") == []
        assert parse_targets(None) == []

    def test_target_is_immutable(self):
        target = CallTarget(phone="+15550001")
        with pytest.raises(ValidationError):
            target.phone = "+15550002"


class TestJsonFileTargetSource:

    def test_load_file(self, tmp_path):
        path = tmp_path / "numbers.json"
        path.write_text(json.dumps([{"phone": "+15550001"}, {"phone": "+15550002"}]))

        targets = JsonFileTargetSource(path).load()

        assert [t.phone for t in targets] == ["+15550001", "+15550002"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(TargetSourceError, match="not found"):
            JsonFileTargetSource(tmp_path / "absent.json").load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "numbers.json"
        path.write_text("{not json")
        with pytest.raises(TargetSourceError, match="Unreadable"):
            JsonFileTargetSource(path).load()

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "numbers.json"
        source = JsonFileTargetSource(path)
        path.write_text(json.dumps([{"phone": "+1"}]))
        assert len(source.load()) == 1
        path.write_text(json.dumps([{"phone": "+1"}, {"phone": "+2"}]))
        assert len(source.load()) == 2


class TestQueueStore:

    def test_empty_store(self):
        store = QueueStore()
        assert store.current() is None
        assert store.remaining() == 0
        assert store.exhausted

    def test_load_replaces_and_rewinds(self):
        store = QueueStore()
        store.load(StaticTargetSource([{"phone": "+1"}, {"phone": "+2"}]))
        store.advance()
        store.load(StaticTargetSource([{"phone": "+3"}]))

        assert store.index == 0
        assert store.current().phone == "+3"

    def test_advance_is_bounded(self):
        store = QueueStore(parse_targets([{"phone": "+1"}, {"phone": "+2"}]))
        assert store.advance() == 1
        assert store.advance() == 2
        assert store.advance() == 2
        assert store.remaining() == 0
        assert store.current() is None

    def test_remaining(self):
        store = QueueStore(parse_targets([{"phone": "+1"}] * 3))
        store.advance()
        assert store.remaining() == 2

    @pytest.mark.parametrize("index", [-1, 3])
    def test_replace_rejects_out_of_range(self, index):
        store = QueueStore()
        with pytest.raises(ValueError):
            store.replace(parse_targets([{"phone": "+1"}] * 2), index)

    def test_replace_allows_exhausted_position(self):
        store = QueueStore()
        store.replace(parse_targets([{"phone": "+1"}]), 1)
        assert store.exhausted

    def test_seek_repositions(self):
        store = QueueStore(parse_targets([{"phone": "+1"}, {"phone": "+2"}, {"phone": "+3"}]))
        assert store.seek(2) == 2
        assert store.current().phone == "+3"
        assert store.seek(0) == 0
        assert store.remaining() == 3

    def test_seek_to_end_is_exhausted(self):
        store = QueueStore(parse_targets([{"phone": "+1"}]))
        store.seek(1)
        assert store.exhausted
        assert store.current() is None

    @pytest.mark.parametrize("index", [-1, 3])
    def test_seek_rejects_out_of_range(self, index):
        store = QueueStore(parse_targets([{"phone": "+1"}] * 2))
        store.advance()
        with pytest.raises(ValueError):
            store.seek(index)
        assert store.index == 1


class TestAdvanceGuard:

    def test_second_acquire_rejected(self):
        guard = AdvanceGuard()
        assert guard.try_acquire(1, manual=True)
        assert guard.manual_origin
        assert not guard.try_acquire(1)

    def test_release_clears_provenance(self):
        guard = AdvanceGuard()
        guard.try_acquire(1, manual=True)
        guard.release(1)
        assert not guard.advancing
        assert not guard.manual_origin

    def test_stale_holder_cannot_release_newer_session(self):
        guard = AdvanceGuard()
        guard.try_acquire(1)
        guard.clear()
        guard.try_acquire(2)

        guard.release(1)

        assert guard.advancing
        assert "epoch=2" in repr(guard)

    def test_new_session_bumps_epoch(self):
        state = DialerState()
        assert state.new_session() == 1
        assert state.new_session() == 2
        assert state.auto_next
        assert not state.calling
