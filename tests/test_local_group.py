from __future__ import annotations

import numpy as np
import pytest

from sharedwin.group import GroupLaunchError, LocalGroupContext, Status, WindowAssert, launch

from . import group_workers
from .conftest import ELEMENT_TYPES, LAUNCH_TIMEOUT


# ---------------------------------------------------------------------------
# Ownership of the window memory
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("size", [1, 3])
def test_default_lead_owns_everything(size):
    results = launch(size, group_workers.default_ownership, "int32", 12, timeout=LAUNCH_TIMEOUT)
    for rank, out in enumerate(results):
        assert out["rank"] == rank
        assert out["global"] == 12
        assert out["local"] == (12 if out["is_lead"] else 0)
    assert sum(out["is_lead"] for out in results) == 1


def test_default_ownership_every_element_type():
    for t in ELEMENT_TYPES:
        name = np.dtype(t).name
        results = launch(2, group_workers.default_ownership, name, 5, timeout=LAUNCH_TIMEOUT)
        assert [out["local"] for out in results] == [5, 0]
        assert all(out["global"] == 5 for out in results)
        assert all(out["disp_unit"] == np.dtype(t).itemsize for out in results)


def test_non_zero_lead_rank_owns_by_default():
    results = launch(3, group_workers.default_ownership, "float64", 7, lead_rank=2, timeout=LAUNCH_TIMEOUT)
    assert [out["local"] for out in results] == [0, 0, 7]


def test_explicit_local_lengths_are_contiguous_in_rank_order():
    lengths = [2, 0, 3, 1]
    results = launch(4, group_workers.explicit_ownership, lengths, timeout=LAUNCH_TIMEOUT)

    expected = [1.0] * 2 + [3.0] * 3 + [4.0] * 1
    for rank, out in enumerate(results):
        assert out["local"] == lengths[rank]
        assert out["global"] == sum(lengths)
        assert out["seen"] == expected


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def test_four_ranks_disjoint_writes_visible_after_sync():
    results = launch(4, group_workers.disjoint_writes, 400, timeout=LAUNCH_TIMEOUT)

    assert [out["local"] for out in results] == [400, 0, 0, 0]
    expected = list(range(400))
    for out in results:
        assert out["seen"] == expected


def test_fence_hint_does_not_change_visibility():
    hints = [WindowAssert.NONE, WindowAssert.NOSTORE, WindowAssert.NOPUT | WindowAssert.NOPRECEDE]
    seen = [launch(3, group_workers.fence_phases, 9, int(h), timeout=LAUNCH_TIMEOUT) for h in hints]

    expected = [0.5, 1.5, 2.5] * 3
    for per_hint in seen:
        for per_rank in per_hint:
            assert per_rank == expected


def test_zero_length_window_on_every_rank():
    results = launch(3, group_workers.zero_length, timeout=LAUNCH_TIMEOUT)
    for out in results:
        assert out == {"global": 0, "local": 0, "size": 0, "allocated_after_free": False}


def test_use_after_free_rejected_on_every_rank():
    results = launch(2, group_workers.use_after_free, timeout=LAUNCH_TIMEOUT)
    for rejected in results:
        assert rejected == ["lock", "unlock", "sync", "fence", "free", "view"]


# ---------------------------------------------------------------------------
# Failure policy across processes
# ---------------------------------------------------------------------------

def test_abort_policy_terminates_rank_with_status():
    with pytest.raises(GroupLaunchError) as excinfo:
        launch(2, group_workers.overrun_query, "abort", timeout=LAUNCH_TIMEOUT)
    assert excinfo.value.exitcode == Status.ERR_SIZE


def test_raise_policy_surfaces_query_error():
    with pytest.raises(GroupLaunchError) as excinfo:
        launch(2, group_workers.overrun_query, "raise", timeout=LAUNCH_TIMEOUT)
    assert "QueryError" in str(excinfo.value)
    assert excinfo.value.exitcode is None


# ---------------------------------------------------------------------------
# Context and in-process transport
# ---------------------------------------------------------------------------

def test_context_validates_size_and_lead():
    with pytest.raises(ValueError):
        LocalGroupContext(0)
    with pytest.raises(ValueError):
        LocalGroupContext(2, lead_rank=2)
    with pytest.raises(ValueError):
        LocalGroupContext(2).group(5)


def test_group_properties():
    ctx = LocalGroupContext(3, lead_rank=1)
    g = ctx.group(1)
    assert (g.size, g.rank, g.lead_rank, g.is_lead) == (3, 1, 1, True)
    assert not ctx.group(0).is_lead
    assert g.handle == ctx.name
    assert "rank=1" in repr(g)


def test_single_rank_transport_roundtrip(solo_group):
    status, win = solo_group.allocate_shared(32, 8)
    assert status == Status.SUCCESS
    assert win.sizes == [32] and win.offsets == [0]

    status, buf = solo_group.shared_query(win, 0, 40)
    assert status == Status.ERR_SIZE and buf is None

    status, buf = solo_group.shared_query(win, 0, 32)
    assert status == Status.SUCCESS
    assert len(buf) == 32
    del buf

    assert solo_group.lock_all(win, WindowAssert.NOCHECK) == Status.SUCCESS
    assert solo_group.unlock_all(win) == Status.SUCCESS
    assert solo_group.win_sync(win) == Status.SUCCESS
    assert solo_group.fence(win) == Status.SUCCESS
    assert solo_group.free(win) == Status.SUCCESS

    assert solo_group.free(win) == Status.ERR_WIN
    assert solo_group.win_sync(win) == Status.ERR_WIN


def test_free_with_aliasing_arrays_reports_in_use_once(solo_group):
    status, win = solo_group.allocate_shared(16, 4)
    assert status == Status.SUCCESS
    _, buf = solo_group.shared_query(win, 0, 16)
    held = np.frombuffer(buf, dtype=np.int32)
    held[:] = 7
    del buf

    assert solo_group.free(win) == Status.ERR_IN_USE
    assert win.freed
    # the collective already happened; a second free must not enter the barrier again
    assert solo_group.free(win) == Status.ERR_WIN
    assert held.tolist() == [7, 7, 7, 7]
    del held


def test_failed_free_completes_on_every_rank():
    results = launch(2, group_workers.hold_slice_across_free, timeout=LAUNCH_TIMEOUT)

    assert results[0] == {"free": "ok", "is_allocated": False, "retry": "WindowStateError"}
    assert results[1] == {
        "free": f"EpochError code={int(Status.ERR_IN_USE)}",
        "is_allocated": False,
        "retry": "WindowStateError",
        "held": [0, 1, 2, 3],
    }


def test_invalid_allocation_arguments(solo_group):
    assert solo_group.allocate_shared(-1, 4) == (Status.ERR_ARG, None)
    assert solo_group.allocate_shared(8, 0) == (Status.ERR_ARG, None)


def test_star_exports_do_not_need_mpi4py():
    import sharedwin.group as group_pkg
    assert "MPIProcessGroup" not in group_pkg.__all__
    for name in group_pkg.__all__:
        assert getattr(group_pkg, name) is not None
