"""Drag-to-reorder for a single list.

Item midpoints are captured once when the drag starts. The drop index is then
a pure function of the pointer position, those midpoints and the start index,
so the visual shift applied to neighbours never feeds back into the
computation.

The commit works on ids, not raw indices: the list on screen may be a
filtered view of the backing list, and the move is replayed on the backing
list relative to the item that was dropped onto.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .log import get_logger

logger = get_logger(__name__)

IDLE = "idle"
PRESSING = "pressing"
DRAGGING = "dragging"

DEFAULT_LONG_PRESS_MS = 300


@dataclass(frozen=True)
class Slot:
    id: str
    midpoint: float


def capture_slots(layout: Sequence[Tuple[str, float, float]]) -> Tuple[Slot, ...]:
    """Build slots from ``(id, top, height)`` rows in display order."""
    return tuple(Slot(item_id, top + height / 2) for item_id, top, height in layout)


def compute_drop_index(pointer_y: float, slots: Sequence[Slot], start_index: int) -> int:
    """Index of the last midpoint crossed, walking outward from ``start_index``."""
    if not slots:
        return start_index
    drop = start_index
    if pointer_y > slots[start_index].midpoint:
        for index in range(start_index + 1, len(slots)):
            if pointer_y < slots[index].midpoint:
                break
            drop = index
    elif pointer_y < slots[start_index].midpoint:
        for index in range(start_index - 1, -1, -1):
            if pointer_y > slots[index].midpoint:
                break
            drop = index
    return drop


def shift_for(index: int, start_index: int, drop_index: int, item_height: float) -> float:
    """Vertical offset for a non-dragged item while the drag is in flight."""
    if start_index < drop_index and start_index < index <= drop_index:
        return -item_height
    if drop_index < start_index and drop_index <= index < start_index:
        return item_height
    return 0.0


def move(items: Sequence[Any], start_index: int, drop_index: int) -> List[Any]:
    """Return a copy with the item at ``start_index`` relocated to ``drop_index``."""
    result = list(items)
    if start_index == drop_index:
        return result
    if not (0 <= start_index < len(result) and 0 <= drop_index < len(result)):
        raise IndexError(f"Reorder indices out of range: {start_index} -> {drop_index} for {len(result)} items")
    item = result.pop(start_index)
    result.insert(drop_index, item)
    return result


def _item_id(item: Any) -> str:
    return item.id


def commit_in_view(
    backing: Sequence[Any],
    visible_ids: Sequence[str],
    start_index: int,
    drop_index: int,
    key: Callable[[Any], str] = _item_id,
) -> List[Any]:
    """Replay a move made in a (possibly filtered) view on the full list.

    Dragging down places the item right after the drop target, dragging up
    places it right before; in an unfiltered view that is exactly ``move``.
    """
    result = list(backing)
    if start_index == drop_index:
        return result
    dragged_id = visible_ids[start_index]
    target_id = visible_ids[drop_index]
    ids = [key(item) for item in result]
    if dragged_id not in ids or target_id not in ids:
        logger.warning("Dropping reorder of %s: list changed during the drag", dragged_id)
        return result
    dragged = result.pop(ids.index(dragged_id))
    target_pos = [key(item) for item in result].index(target_id)
    result.insert(target_pos + 1 if drop_index > start_index else target_pos, dragged)
    return result


@dataclass(frozen=True)
class GestureOutcome:
    tapped: bool
    moved: bool
    items: List[Any]
    item_id: Optional[str] = None


class ReorderGesture:
    """Long-press-then-drag state machine: idle -> pressing -> dragging -> idle.

    A release before the long-press threshold is a tap (the caller opens the
    edit view). Cancelling at any point returns to idle with no change.
    """

    def __init__(self, long_press_ms: int = DEFAULT_LONG_PRESS_MS, clock: Callable[[], float] = time.monotonic) -> None:
        self.long_press = long_press_ms / 1000.0
        self.clock = clock
        self._reset()

    def _reset(self) -> None:
        self.state = IDLE
        self.slots: Tuple[Slot, ...] = ()
        self.start_index = 0
        self.drop_index = 0
        self._pressed_at = 0.0

    @property
    def item_id(self) -> Optional[str]:
        if self.state == IDLE or not self.slots:
            return None
        return self.slots[self.start_index].id

    def press(self, item_id: str, slots: Sequence[Slot]) -> None:
        ids = [slot.id for slot in slots]
        if item_id not in ids:
            raise KeyError(f"Item '{item_id}' is not in the list")
        self.slots = tuple(slots)
        self.start_index = ids.index(item_id)
        self.drop_index = self.start_index
        self._pressed_at = self.clock()
        self.state = PRESSING

    def poll(self) -> str:
        if self.state == PRESSING and self.clock() - self._pressed_at >= self.long_press:
            self.state = DRAGGING
            logger.debug("Drag started on %s", self.item_id)
        return self.state

    def move(self, pointer_y: float) -> int:
        if self.poll() == DRAGGING:
            self.drop_index = compute_drop_index(pointer_y, self.slots, self.start_index)
        return self.drop_index

    def offsets(self, item_height: float) -> List[float]:
        if self.state != DRAGGING:
            return [0.0] * len(self.slots)
        return [
            0.0 if index == self.start_index else shift_for(index, self.start_index, self.drop_index, item_height)
            for index in range(len(self.slots))
        ]

    def release(self, backing: Sequence[Any], key: Callable[[Any], str] = _item_id) -> GestureOutcome:
        state = self.poll() if self.state == PRESSING else self.state
        item_id = self.item_id
        try:
            if state == PRESSING:
                return GestureOutcome(tapped=True, moved=False, items=list(backing), item_id=item_id)
            if state != DRAGGING or self.drop_index == self.start_index:
                return GestureOutcome(tapped=False, moved=False, items=list(backing), item_id=item_id)
            visible_ids = [slot.id for slot in self.slots]
            items = commit_in_view(backing, visible_ids, self.start_index, self.drop_index, key)
            moved = [key(item) for item in items] != [key(item) for item in backing]
            return GestureOutcome(tapped=False, moved=moved, items=items, item_id=item_id)
        finally:
            self._reset()

    def cancel(self) -> None:
        self._reset()
