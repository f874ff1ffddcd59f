"""Unit tests for drag-to-reorder."""

import itertools
from types import SimpleNamespace

import pytest

from goalpost import reorder
from goalpost.reorder import ReorderGesture, Slot


ROW = 40.0


def _items(*ids):
    return [SimpleNamespace(id=item_id) for item_id in ids]


def _ids(items):
    return [item.id for item in items]


def _slots(ids):
    return reorder.capture_slots([(item_id, index * ROW, ROW) for index, item_id in enumerate(ids)])


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestDropIndex:
    """The drop index depends only on captured midpoints."""

    def test_capture_slots_midpoints(self):
        assert _slots(["a", "b"]) == (Slot("a", 20.0), Slot("b", 60.0))

    def test_no_movement_stays_put(self):
        assert reorder.compute_drop_index(20.0, _slots("abcd"), 0) == 0

    def test_moving_down_crosses_midpoints(self):
        slots = _slots("abcd")

        assert reorder.compute_drop_index(59.0, slots, 0) == 0
        assert reorder.compute_drop_index(61.0, slots, 0) == 1
        assert reorder.compute_drop_index(101.0, slots, 0) == 2
        assert reorder.compute_drop_index(500.0, slots, 0) == 3

    def test_moving_up_crosses_midpoints(self):
        slots = _slots("abcd")

        assert reorder.compute_drop_index(99.0, slots, 3) == 2
        assert reorder.compute_drop_index(-50.0, slots, 3) == 0

    def test_empty_slots(self):
        assert reorder.compute_drop_index(10.0, (), 0) == 0


class TestShift:
    def test_items_between_shift_toward_start(self):
        assert [reorder.shift_for(i, 0, 2, ROW) for i in range(4)] == [0.0, -ROW, -ROW, 0.0]
        assert [reorder.shift_for(i, 3, 1, ROW) for i in range(4)] == [0.0, ROW, ROW, 0.0]


class TestMove:
    def test_every_pair_is_a_valid_permutation(self):
        ids = list("abcde")
        for start, drop in itertools.permutations(range(len(ids)), 2):
            result = reorder.move(ids, start, drop)

            assert sorted(result) == sorted(ids)
            assert result[drop] == ids[start]
            others = [item for item in ids if item != ids[start]]
            assert [item for item in result if item != ids[start]] == others

    def test_move_to_last_index(self):
        assert reorder.move(list("abcd"), 1, 3) == list("acdb")

    def test_out_of_range(self):
        with pytest.raises(IndexError):
            reorder.move(list("ab"), 0, 5)


class TestCommitInView:
    """Moves in a filtered view map back onto the full list."""

    def test_unfiltered_matches_move(self):
        backing = _items(*"abcde")
        visible = _ids(backing)
        for start, drop in itertools.permutations(range(5), 2):
            assert _ids(reorder.commit_in_view(backing, visible, start, drop)) == reorder.move(visible, start, drop)

    def test_filtered_drag_down_lands_after_target(self):
        backing = _items("a", "x", "b", "y", "c")
        visible = ["a", "b", "c"]

        result = _ids(reorder.commit_in_view(backing, visible, 0, 1))

        assert result == ["x", "b", "a", "y", "c"]
        assert result.index("a") == result.index("b") + 1

    def test_filtered_drag_up_lands_before_target(self):
        backing = _items("a", "x", "b", "y", "c")
        visible = ["a", "b", "c"]

        result = _ids(reorder.commit_in_view(backing, visible, 2, 0))

        assert result == ["c", "a", "x", "b", "y"]

    def test_stale_view_leaves_list_unchanged(self):
        backing = _items("a", "b")

        assert _ids(reorder.commit_in_view(backing, ["a", "gone"], 0, 1)) == ["a", "b"]


class TestReorderGesture:
    """Test cases for the press/drag/release state machine."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def gesture(self, clock):
        return ReorderGesture(long_press_ms=300, clock=clock)

    def test_quick_release_is_a_tap(self, gesture, clock):
        backing = _items(*"abc")
        gesture.press("b", _slots("abc"))
        clock.now = 0.1

        outcome = gesture.release(backing)

        assert outcome.tapped and not outcome.moved
        assert outcome.item_id == "b"
        assert gesture.state == reorder.IDLE

    def test_moves_before_long_press_are_ignored(self, gesture, clock):
        gesture.press("a", _slots("abc"))

        assert gesture.move(500.0) == 0
        assert gesture.state == reorder.PRESSING

    def test_long_press_then_drag_commits(self, gesture, clock):
        backing = _items(*"abcd")
        gesture.press("a", _slots("abcd"))
        clock.now = 0.3
        assert gesture.poll() == reorder.DRAGGING

        gesture.move(70.0)
        drop = gesture.move(110.0)

        assert drop == 2
        assert gesture.offsets(ROW) == [0.0, -ROW, -ROW, 0.0]
        outcome = gesture.release(backing)
        assert outcome.moved and not outcome.tapped
        assert _ids(outcome.items) == ["b", "c", "a", "d"]

    def test_release_at_start_is_no_change(self, gesture, clock):
        backing = _items(*"abc")
        gesture.press("b", _slots("abc"))
        clock.now = 1.0
        gesture.move(60.0)

        outcome = gesture.release(backing)

        assert not outcome.moved and not outcome.tapped
        assert _ids(outcome.items) == ["a", "b", "c"]

    def test_cancel_discards_drag(self, gesture, clock):
        gesture.press("a", _slots("abc"))
        clock.now = 1.0
        gesture.move(200.0)

        gesture.cancel()

        assert gesture.state == reorder.IDLE
        assert gesture.item_id is None
        assert gesture.offsets(ROW) == []

    def test_press_unknown_item(self, gesture):
        with pytest.raises(KeyError):
            gesture.press("zzz", _slots("abc"))
