"""Test the client slots shared between workers."""

import threading
from pathlib import Path

import pytest

from ..concurrency import ClientSlots


def test_slots_are_exclusive(tmp_path: Path):
    """A held slot is not handed out again until it is released."""
    slots = ClientSlots(tmp_path, 2, poll_interval=0.01)
    with slots.acquire() as first:
        with slots.acquire() as second:
            assert {first, second} == {0, 1}
            with pytest.raises(TimeoutError):
                with slots.acquire(timeout=0.05):
                    pass
    with slots.acquire(timeout=0.05) as again:
        assert again == 0


def test_slot_released_on_error(tmp_path: Path):
    """A failing scenario gives its slot back."""
    slots = ClientSlots(tmp_path, 1, poll_interval=0.01)
    with pytest.raises(RuntimeError):
        with slots.acquire():
            raise RuntimeError("scenario failed")
    with slots.acquire(timeout=0.05) as index:
        assert index == 0


def test_waiting_for_a_slot(tmp_path: Path):
    """A waiting holder gets the slot as soon as it is released."""
    slots = ClientSlots(tmp_path, 1, poll_interval=0.01)
    acquired = threading.Event()
    release = threading.Event()

    def hold():
        with slots.acquire():
            acquired.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold)
    holder.start()
    assert acquired.wait(timeout=5)
    threading.Timer(0.05, release.set).start()
    with slots.acquire(timeout=5) as index:
        assert index == 0
    holder.join(timeout=5)


def test_at_least_one_slot(tmp_path: Path):
    """An empty pool would never let a scenario run."""
    with pytest.raises(ValueError):
        ClientSlots(tmp_path, 0)
