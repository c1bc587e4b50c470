from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from sharedwin.group import LocalGroupContext, ProcessGroup, WindowAssert


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

LAUNCH_TIMEOUT = 60.0


class Aborted(Exception):
    """Raised by ScriptedGroup.abort instead of terminating the test process."""

    def __init__(self, code: int):
        self.code = code
        super().__init__(f"aborted with code {code}")


class ScriptedGroup(ProcessGroup):
    """Single-process group that records transport calls and fails on demand.

    Calls are forwarded to a real one-process LocalProcessGroup unless their
    name appears in ``failures``, in which case the scripted status is
    returned without touching the transport.
    """

    def __init__(self, failures: dict[str, int] | None = None):
        self._inner = LocalGroupContext(1).group(0)
        self.failures = dict(failures or {})
        self.calls: list[str] = []
        self.lock_assertions: list[WindowAssert] = []
        self.lead_rank = 0

    @property
    def size(self) -> int:
        return 1

    @property
    def rank(self) -> int:
        return 0

    @property
    def handle(self) -> Any:
        return self._inner.handle

    def _status(self, name: str, *args):
        self.calls.append(name)
        if name in self.failures:
            return self.failures[name]
        return getattr(self._inner, name)(*args)

    def allocate_shared(self, nbytes, disp_unit):
        self.calls.append("allocate_shared")
        if "allocate_shared" in self.failures:
            return self.failures["allocate_shared"], None
        return self._inner.allocate_shared(nbytes, disp_unit)

    def shared_query(self, win, rank, nbytes):
        self.calls.append("shared_query")
        if "shared_query" in self.failures:
            return self.failures["shared_query"], None
        return self._inner.shared_query(win, rank, nbytes)

    def lock_all(self, win, assertion=WindowAssert.NONE):
        self.lock_assertions.append(assertion)
        return self._status("lock_all", win, assertion)

    def unlock_all(self, win):
        return self._status("unlock_all", win)

    def win_sync(self, win):
        return self._status("win_sync", win)

    def barrier(self):
        return self._status("barrier")

    def fence(self, win, assertion=WindowAssert.NONE):
        return self._status("fence", win, assertion)

    def free(self, win):
        return self._status("free", win)

    def abort(self, code):
        self.calls.append("abort")
        raise Aborted(code)


@pytest.fixture
def solo_group():
    """A real one-process local group living in the test process."""
    return LocalGroupContext(1).group(0)


@pytest.fixture
def scripted_group():
    """Factory: ``scripted_group(win_sync=7)`` fails ``win_sync`` with status 7."""
    def make(**failures: int) -> ScriptedGroup:
        return ScriptedGroup(failures)
    return make


# ---------------------------------------------------------------------------
# Element types
# ---------------------------------------------------------------------------

ELEMENT_TYPES = [
    np.int8, np.int16, np.int32, np.int64,
    np.float32, np.float64,
    np.complex64, np.complex128,
]


@pytest.fixture(params=ELEMENT_TYPES, ids=lambda t: np.dtype(t).name)
def element_type(request):
    return request.param
