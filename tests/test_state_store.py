"""Task state, cursor and their file stores."""

from __future__ import annotations

import os
import sys
from datetime import timedelta

import pytest

from conftest import make_space
from jobharvest.core.jsonfile import atomic_write_json, read_json
from jobharvest.core.orchestrator import Cursor, CursorStore, StateStore, TaskState, TaskStatus
from jobharvest.core.orchestrator.state import RunTotals, utcnow
from jobharvest.core.orchestrator.store import owned_elsewhere, pid_alive

# Far above any pid_max, so no such process exists
DEAD_PID = 999_999_999


def test_missing_state_file_loads_fresh_stopped_state(tmp_path):
    state = StateStore(tmp_path / "state.json").load()
    assert state.status is TaskStatus.STOPPED
    assert state.cursor == Cursor()
    assert not state.running


def test_state_round_trips_through_file(tmp_path):
    store = StateStore(tmp_path / "state.json")
    original = TaskState(
        status=TaskStatus.PAUSED,
        cursor=Cursor(1, 2, 3),
        current_keyword="react",
        current_region_id="103644278",
        current_region_name="North America-United States",
        current_step="past-week",
        started_at=utcnow(),
        elapsed_seconds=12.5,
        last_batch_count=7,
        last_error="blocked: rate limited",
        totals=RunTotals(cells=3, stored=20),
    )
    store.save(original)

    loaded = store.load()
    assert loaded.status is TaskStatus.PAUSED
    assert loaded.cursor == Cursor(1, 2, 3)
    assert loaded.current_step == "past-week"
    assert loaded.elapsed_seconds == 12.5
    assert loaded.totals.stored == 20
    assert loaded.started_at == original.started_at
    assert loaded.updated_at is not None


def test_serialized_state_carries_running_flag(tmp_path):
    path = tmp_path / "state.json"
    StateStore(path).save(TaskState(status=TaskStatus.RUNNING, owner_pid=os.getpid()))

    data = read_json(path)
    assert data["status"] == "running"
    assert data["running"] is True


def test_running_state_of_live_owner_is_trusted(tmp_path):
    store = StateStore(tmp_path / "state.json")
    store.save(TaskState(status=TaskStatus.RUNNING, owner_pid=os.getpid()))

    assert store.load().status is TaskStatus.RUNNING


def test_running_state_of_dead_owner_is_repaired(tmp_path):
    path = tmp_path / "state.json"
    store = StateStore(path)
    store.save(TaskState(status=TaskStatus.RUNNING, owner_pid=DEAD_PID, cursor=Cursor(0, 1, 0)))

    state = store.load()
    assert state.status is TaskStatus.STOPPED
    assert state.owner_pid is None
    # Cursor survives so the run can be resumed
    assert state.cursor == Cursor(0, 1, 0)
    assert read_json(path)["status"] == "stopped"


def test_owned_by_caller_repairs_state_of_own_process(tmp_path):
    store = StateStore(tmp_path / "state.json")
    store.save(TaskState(status=TaskStatus.STOPPING, owner_pid=os.getpid()))

    assert store.load(owned_by_caller=True).status is TaskStatus.STOPPED


@pytest.mark.skipif(sys.platform.startswith("win"), reason="owner liveness is not probed on Windows")
def test_owned_by_caller_keeps_state_of_live_foreign_process(tmp_path):
    store = StateStore(tmp_path / "state.json")
    store.save(TaskState(status=TaskStatus.RUNNING, owner_pid=os.getppid()))

    state = store.load(owned_by_caller=True)
    assert state.status is TaskStatus.RUNNING
    assert state.owner_pid == os.getppid()
    assert owned_elsewhere(state)
    assert not owned_elsewhere(TaskState(status=TaskStatus.RUNNING, owner_pid=os.getpid()))
    assert not owned_elsewhere(TaskState(status=TaskStatus.PAUSED, owner_pid=os.getppid()))


def test_repair_freezes_elapsed_time_at_last_update(tmp_path):
    path = tmp_path / "state.json"
    resumed = utcnow() - timedelta(seconds=100)
    data = TaskState(status=TaskStatus.RUNNING, resumed_at=resumed, elapsed_seconds=5.0).to_dict()
    data["updated_at"] = (resumed + timedelta(seconds=10)).isoformat()
    atomic_write_json(path, data)

    state = StateStore(path).load()
    assert state.status is TaskStatus.STOPPED
    assert state.elapsed_seconds == 15.0


def test_corrupt_state_file_is_moved_aside(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    state = StateStore(path).load()
    assert state.status is TaskStatus.STOPPED
    assert not path.exists()
    assert (tmp_path / "state.json.corrupt").exists()


def test_pid_alive():
    assert pid_alive(os.getpid())
    assert not pid_alive(None)
    assert not pid_alive(0)
    assert not pid_alive(DEAD_PID)


def test_elapsed_accumulates_only_while_running():
    now = utcnow()
    state = TaskState(status=TaskStatus.RUNNING, elapsed_seconds=10.0, resumed_at=now - timedelta(seconds=5))
    assert state.current_elapsed(now) == 15.0

    state.status = TaskStatus.PAUSED
    state.freeze_elapsed(now)
    assert state.elapsed_seconds == 15.0
    assert state.resumed_at is None
    assert state.current_elapsed(now + timedelta(seconds=60)) == 15.0


def test_snapshot_is_independent():
    state = TaskState(totals=RunTotals(stored=1))
    snap = state.snapshot()
    state.totals.stored = 99
    assert snap.totals.stored == 1


# =============================================================================
# Cursor
# =============================================================================


def test_cursor_clamps_to_search_space():
    space = make_space(2, 3, 2)
    assert Cursor(5, 9, 9).clamp(space) == Cursor(1, 2, 1)
    assert Cursor(1, 1, 1).clamp(space) == Cursor(1, 1, 1)
    assert Cursor(-1, 0, 0).clamp(space) == Cursor(0, 0, 0)


def test_cursor_from_unusable_data():
    assert Cursor.from_dict(None) is None
    assert Cursor.from_dict({"keyword_index": "x"}) is None
    assert Cursor.from_dict({"keyword_index": 2}) == Cursor(2, 0, 0)


def test_cursor_store_save_load_clear(tmp_path):
    store = CursorStore(tmp_path / "cursor.json")
    assert store.load() is None
    assert not store.exists()

    store.save(Cursor(1, 2, 0))
    assert store.load() == Cursor(1, 2, 0)
    assert "saved_at" in read_json(store.path)

    store.clear()
    assert not store.exists()
    store.clear()


def test_unreadable_cursor_file_means_no_cursor(tmp_path):
    path = tmp_path / "cursor.json"
    path.write_text("[[[", encoding="utf-8")
    assert CursorStore(path).load() is None
