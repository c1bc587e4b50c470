from __future__ import annotations

# third-pary
import numpy as np
# built-in
import logging
from contextlib import contextmanager
from typing import Any, ClassVar, Iterator
# local
from . import window_util
from .window_util import (
    AllocationError, EpochError, QueryError, WindowStateError, WindowView, ErrorPolicy
)
from .. import sharedwin_util
from ..group.process_group import ProcessGroup, WindowAssert

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_logger = logging.getLogger(__name__)

# *----------------------------------------------------*
#                        CLASSES
# *----------------------------------------------------*

class SharedWindow:
    """A memory window allocated collectively by a process group.

    One instance per process. All processes of the group ``allocate``
    together, then coordinate access with ``lock``/``unlock`` epochs plus
    ``sync``, or with ``fence``, and finally ``free`` together.

    The element type is fixed per instance, either by subscripting the class
    (``SharedWindow[np.float64]()``) or through ``dtype=``. Supported types are
    listed in :data:`sharedwin.sharedwin_util.SUPPORTED_DTYPES`.

    Collective calls block until the peers reach the same call; there is no
    timeout, so a stalled peer stalls every rank.

    Attributes:
        id: Transport handle of the allocated window; ``None`` outside the
            ``allocate`` .. ``free`` interval.
        group_id: Handle of the group the window was allocated against.
        dtype: Element type.
        disp_unit: Byte size of one element.
        generation: Number of successful allocations made with this instance.
    """

    dtype: ClassVar[np.dtype | None] = None
    _specializations: ClassVar[dict[np.dtype, type[SharedWindow]]] = {}

    def __class_getitem__(cls, element_type: Any) -> type[SharedWindow]:
        if cls.dtype is not None:
            raise TypeError(f"{cls.__name__} is already specialized")
        dtype = sharedwin_util.resolve_dtype(element_type)
        specialized = SharedWindow._specializations.get(dtype)
        if specialized is None:
            specialized = type(f"{cls.__name__}[{dtype.name}]", (cls,), {"dtype": dtype})
            SharedWindow._specializations[dtype] = specialized
        return specialized

    def __init__(self, dtype: Any = None, *, on_error: ErrorPolicy | None = None) -> None:
        if dtype is None:
            if type(self).dtype is None:
                raise TypeError("SharedWindow needs an element type: SharedWindow[np.int32]() or dtype=...")
            dtype = type(self).dtype
        dtype = sharedwin_util.resolve_dtype(dtype)
        if type(self).dtype is not None and dtype != type(self).dtype:
            raise TypeError(f"{type(self).__name__} cannot hold elements of type {dtype}")

        self.dtype = dtype
        self.disp_unit = sharedwin_util.displacement_unit(dtype)
        self.on_error: ErrorPolicy = on_error or sharedwin_util.get_config("on_error")
        if self.on_error not in window_util.ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {window_util.ERROR_POLICIES}; got: {self.on_error!r}")

        self.id: Any = None
        self.group_id: Any = None
        self.generation = 0

        self._group: ProcessGroup | None = None
        self._reporter: window_util.ErrorReporter | None = None
        self._views: list[WindowView] = []
        self._in_epoch = False

    def __repr__(self):
        state = "allocated" if self.is_allocated else "unallocated"
        return f"{type(self).__name__}(dtype={self.dtype}, on_error={self.on_error!r}, {state})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.is_allocated:
            if self._in_epoch:
                self.unlock()
            self.free()

    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #
    #                               PRIVATE
    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #

    def _require_allocated(self, operation: str) -> ProcessGroup:
        if not self.is_allocated:
            _logger.error("%s called on a window that is not allocated", operation)
            raise WindowStateError(f"{operation}() requires an allocated window (call allocate() first; "
                                   "a freed window cannot be used again until re-allocated)")
        return self._group

    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #
    #                                PUBLIC
    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #

    @property
    def is_allocated(self) -> bool:
        return self.id is not None

    @property
    def in_epoch(self) -> bool:
        """True between ``lock()`` and the matching ``unlock()``."""
        return self._in_epoch

    @property
    def group(self) -> ProcessGroup | None:
        return self._group

    def allocate(self,
                 group: ProcessGroup,
                 global_length: int,
                 local_length: int | None = None,
                 *,
                 local_view: bool = True) -> tuple[WindowView, WindowView | None]:
        """Collectively allocate the window and map its views.

        Every process of ``group`` must call this with the same
        ``global_length``; mismatched values are not detected here and leave
        the transport in an undefined state.

        A failure after the collective allocation succeeded (a base-address
        query) leaves the window unallocated on this process, but the
        transport window created by the first step is not released: on the
        local transport the lead's segment stays in ``/dev/shm`` until the
        resource tracker removes it at interpreter exit.

        Args:
            group: Process group to allocate against; must stay valid for the
                lifetime of the window.
            global_length: Total number of elements of the window (>= 0).
            local_length: Number of elements this process contributes. When
                omitted, the lead process contributes ``global_length`` and
                every other process contributes nothing.
            local_view: Whether to also map the slice this process owns.

        Returns:
            ``(global_view, local_view)``. The global view spans
            ``global_length`` elements from the lead's base; the local view
            (``None`` unless requested) spans this process' own contribution.

        Raises:
            WindowStateError: If the window is already allocated.
            ValueError: If the group is empty or a length is negative.
            AllocationError: If the collective allocation fails (``"raise"`` policy).
            QueryError: If the base-address query fails (``"raise"`` policy).
        """
        if self.is_allocated:
            _logger.error("allocate called on an allocated window")
            raise WindowStateError("Window is already allocated; free() it first")
        if group.size < 1:
            raise ValueError(f"Cannot allocate a window over an empty group: {group!r}")

        local_length = sharedwin_util.resolve_local_length(global_length, local_length, is_lead=group.is_lead)
        global_length = int(global_length)
        reporter = window_util.ErrorReporter(self.on_error, group.abort)
        _logger.info("allocate: rank %d/%d dtype=%s global_length=%d local_length=%d",
                     group.rank, group.size, self.dtype, global_length, local_length)

        status, win = group.allocate_shared(local_length * self.disp_unit, self.disp_unit)
        reporter.check(status, "allocate:allocate_shared", AllocationError)

        status, global_buf = group.shared_query(win, group.lead_rank, global_length * self.disp_unit)
        reporter.check(status, "allocate:shared_query", QueryError)

        local_buf = None
        if local_view:
            status, local_buf = group.shared_query(win, group.rank, local_length * self.disp_unit)
            reporter.check(status, "allocate:shared_query_local", QueryError)

        self.id = win
        self.group_id = group.handle
        self.generation += 1
        self._group = group
        self._reporter = reporter
        self._in_epoch = False

        gview = WindowView(self, global_buf, global_length, self.dtype, kind="global")
        self._views = [gview]
        lview = None
        if local_view:
            lview = WindowView(self, local_buf, local_length, self.dtype, kind="local")
            self._views.append(lview)
        _logger.debug("allocate: rank %d mapped %s", group.rank, self._views)
        return gview, lview

    def lock(self) -> None:
        """Begin a shared access epoch to every process of the group.

        The epoch asserts that no conflicting lock is held; this process must
        not make unprotected conflicting stores to the window until
        :meth:`unlock`.

        Raises:
            WindowStateError: If not allocated or an epoch is already open.
            EpochError: On transport failure (``"raise"`` policy).
        """
        group = self._require_allocated("lock")
        if self._in_epoch:
            _logger.error("lock: epoch already open on rank %d", group.rank)
            raise WindowStateError("lock() called twice without unlock(); epochs do not nest")
        status = group.lock_all(self.id, WindowAssert.NOCHECK)
        self._reporter.check(status, "lock", EpochError)
        self._in_epoch = True
        _logger.debug("lock: rank %d opened an epoch", group.rank)

    def unlock(self) -> None:
        """End the access epoch; this process' stores are complete on return.

        Raises:
            WindowStateError: If not allocated or no epoch is open.
            EpochError: On transport failure (``"raise"`` policy).
        """
        group = self._require_allocated("unlock")
        if not self._in_epoch:
            _logger.error("unlock: no epoch open on rank %d", group.rank)
            raise WindowStateError("unlock() without a matching lock()")
        status = group.unlock_all(self.id)
        self._reporter.check(status, "unlock", EpochError)
        self._in_epoch = False
        _logger.debug("unlock: rank %d closed its epoch", group.rank)

    @contextmanager
    def epoch(self) -> Iterator[SharedWindow]:
        """``lock()`` on entry and ``unlock()`` on exit."""
        self.lock()
        try:
            yield self
        finally:
            self.unlock()

    def sync(self) -> None:
        """Flush memory consistency locally, then barrier the whole group.

        No process returns before every process has completed its flush. If
        the flush fails the barrier is not entered.

        Raises:
            WindowStateError: If not allocated.
            EpochError: On transport failure (``"raise"`` policy).
        """
        group = self._require_allocated("sync")
        status = group.win_sync(self.id)
        self._reporter.check(status, "sync:win_sync", EpochError)
        status = group.barrier()
        self._reporter.check(status, "sync:barrier", EpochError)
        _logger.debug("sync: rank %d passed the barrier", group.rank)

    def fence(self, assert_hint: WindowAssert | int = WindowAssert.NONE) -> None:
        """Collective fence: complete pending stores and synchronize the group.

        Args:
            assert_hint: Optional :class:`WindowAssert` flags describing the
                access pattern; affects performance only.

        Raises:
            WindowStateError: If not allocated.
            EpochError: On transport failure (``"raise"`` policy).
        """
        group = self._require_allocated("fence")
        status = group.fence(self.id, WindowAssert(assert_hint))
        self._reporter.check(status, "fence", EpochError)
        _logger.debug("fence: rank %d (assert=%s)", group.rank, WindowAssert(assert_hint))

    def free(self) -> None:
        """Collectively release the window and invalidate its views.

        Once the collective call has been made the window counts as freed on
        this process as well, whatever status the transport reports, so a
        failed ``free`` is never retried against peers that already left.
        On the local transport, NumPy arrays still aliasing the memory make
        the call report ``ERR_IN_USE``; their mapping stays readable until
        they are dropped.

        Raises:
            WindowStateError: If not allocated or an epoch is still open.
            EpochError: On transport failure (``"raise"`` policy).
        """
        group = self._require_allocated("free")
        if self._in_epoch:
            _logger.error("free: epoch still open on rank %d", group.rank)
            raise WindowStateError("free() inside an open epoch; unlock() first")

        # views hold exports of the transport buffer and must drop them before it closes
        for v in self._views:
            v._release()
        self._views = []

        status = group.free(self.id)
        group_id = self.group_id
        self.id = None
        self.group_id = None
        self._group = None
        self._reporter.check(status, "free", EpochError)
        _logger.info("free: rank %d released window of group %s", group.rank, group_id)


if __name__ == "__main__":
    pass
