from __future__ import annotations

# third-pary
import numpy as np
# built-in
import logging
from typing import TYPE_CHECKING, Any, Callable, Literal, NoReturn

if TYPE_CHECKING:
    from .window import SharedWindow

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_logger = logging.getLogger(__name__)

ErrorPolicy = Literal["abort", "raise"]
ERROR_POLICIES: tuple[str, ...] = ("abort", "raise")

# *----------------------------------------------------*
#                       EXCEPTIONS
# *----------------------------------------------------*

class WindowError(RuntimeError):
    """A transport call of a window operation reported failure.

    Attributes:
        code: Raw status returned by the transport.
        operation: Label of the failing step, e.g. ``"sync:barrier"``.
    """
    def __init__(self, code: int, operation: str) -> None:
        self.code = int(code)
        self.operation = operation
        super().__init__(f"{operation} failed with status {self.code}")


class AllocationError(WindowError):
    """The collective allocation itself failed (no memory, bad arguments)."""


class QueryError(WindowError):
    """Memory was allocated but the window base could not be queried."""


class EpochError(WindowError):
    """lock/unlock/sync/fence/free failed in the transport."""


class WindowStateError(RuntimeError):
    """A window or view was used outside its valid lifetime.

    This is a programming error (e.g. use after ``free``, unmatched
    ``unlock``), never a recoverable runtime condition.
    """

# *----------------------------------------------------*
#                        CLASSES
# *----------------------------------------------------*

class ErrorReporter:
    """Apply the window's error policy to a raw transport status.

    ``"raise"`` surfaces the code as an exception of the taxonomy;
    ``"abort"`` terminates the process through ``abort``, since the other
    ranks may already be blocked in the same collective call.
    """

    def __init__(self, policy: ErrorPolicy, abort: Callable[[int], NoReturn]) -> None:
        if policy not in ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {ERROR_POLICIES}; got: {policy!r}")
        self.policy = policy
        self._abort = abort

    def __repr__(self):
        return f"ErrorReporter(policy={self.policy!r})"

    def check(self, status: int, operation: str, error_cls: type[WindowError] = EpochError) -> None:
        """Return if ``status`` is success, otherwise raise or abort."""
        if status == 0:
            return
        if self.policy == "raise":
            _logger.error("%s failed with status %d", operation, status)
            raise error_cls(status, operation)
        _logger.critical("%s failed with status %d; aborting", operation, status)
        self._abort(int(status))


class WindowView:
    """1-D NumPy-facing view over memory owned by a :class:`SharedWindow`.

    The view does **not** own the bytes; they belong to the transport and are
    only valid while the window that produced the view stays allocated. Each
    access checks this and raises :class:`WindowStateError` once the window
    has been freed (or freed and allocated again).

    Concurrency:
      - Writes made through one process' view reach the others only after a
        synchronization point of the window (``sync``, ``unlock`` or
        ``fence``).
      - Arrays obtained from :py:attr:`array`, :py:meth:`view` or indexing
        alias the shared bytes and are not tracked. Drop them before the
        window is freed; use :py:meth:`snapshot` to keep data around.
    """

    def __init__(self,
                 window: SharedWindow,
                 buffer: Any,
                 length: int,
                 dtype: np.dtype,
                 *,
                 kind: Literal["global", "local"],
                 default_readonly: bool = False):
        self._window = window
        self._generation = window.generation
        self._buffer = buffer
        self.length = int(length)
        self.dtype = np.dtype(dtype)
        self.kind = kind
        self._default_readonly = default_readonly

    def __len__(self) -> int:
        return self.length

    def __repr__(self):
        state = "open" if self.is_valid else "released"
        return f"WindowView(kind={self.kind!r}, length={self.length}, dtype={self.dtype}, {state})"

    def __getitem__(self, ids):
        return self.array[ids]

    def __setitem__(self, ids, value) -> None:
        arr = self.view(readonly=False)
        arr[ids] = value

    def __array__(self, dtype=None, copy=None):
        arr = self.array
        if dtype is not None and np.dtype(dtype) != arr.dtype:
            return arr.astype(dtype)
        return arr.copy() if copy else arr

    # --------- PRIVATE ----------

    def _release(self) -> None:
        self._buffer = None

    # --------- PUBLIC ----------

    @property
    def is_valid(self) -> bool:
        """True while the producing window is allocated in the same generation."""
        return (self._buffer is not None
                and self._window.is_allocated
                and self._window.generation == self._generation)

    def view(self, *, readonly: bool | None = None) -> np.ndarray:
        """Return a zero-copy NumPy array over the window bytes.

        Args:
            readonly: Mark the returned array read-only. ``None`` follows the
                view's default.

        Raises:
            WindowStateError: If the window is no longer allocated.
        """
        if not self.is_valid:
            _logger.error("Access to a %s view of a released window", self.kind)
            raise WindowStateError(f"The {self.kind} view belongs to a window that is no longer allocated")
        arr = np.frombuffer(self._buffer, dtype=self.dtype, count=self.length)
        ro = self._default_readonly if readonly is None else readonly
        if ro: arr.flags.writeable = False
        return arr

    @property
    def array(self) -> np.ndarray:
        """Default zero-copy view honoring ``default_readonly``."""
        return self.view(readonly=self._default_readonly)

    def snapshot(self) -> np.ndarray:
        """Copy of the current contents, detached from the shared bytes."""
        return np.array(self.view(readonly=True), copy=True)


if __name__ == "__main__":
    pass
