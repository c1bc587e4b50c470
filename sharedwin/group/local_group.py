from __future__ import annotations

# built-in
import os
import time
import uuid
import queue
import logging
import threading
import traceback
import multiprocessing
from dataclasses import dataclass, field
from multiprocessing import resource_tracker
from multiprocessing.shared_memory import SharedMemory
from typing import Any, Callable, NoReturn
# local
from .process_group import ProcessGroup, Status, WindowAssert
from ..sharedwin_util import get_config

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_logger = logging.getLogger(__name__)

_NAME_SLOT = 64  # bytes reserved for the published segment name

# segments whose close() found live arrays; kept referenced so no finalizer
# closes them again while those arrays still read the mapping
_unclosed: list[SharedMemory] = []

# *----------------------------------------------------*
#                        CLASSES
# *----------------------------------------------------*

class GroupLaunchError(RuntimeError):
    """A rank started by :func:`launch` raised or exited abnormally."""
    def __init__(self, rank: int, detail: str, exitcode: int | None = None) -> None:
        self.rank = rank
        self.exitcode = exitcode
        super().__init__(f"rank {rank} failed: {detail}")


class LocalGroupContext:
    """Synchronization state shared by the processes of one local group.

    Create it in the parent and hand it to every child (as a ``Process``
    argument, so the primitives are inherited); each child then builds its
    :class:`LocalProcessGroup` from it.
    """

    def __init__(self,
                 size: int,
                 *,
                 lead_rank: int | None = None,
                 start_method: str | None = None) -> None:
        if size < 1:
            _logger.error("LocalGroupContext: size must be >= 1 (got %s)", size)
            raise ValueError(f"A process group needs at least one process; got size={size}")
        lead_rank = get_config("lead_rank") if lead_rank is None else lead_rank
        if not (0 <= int(lead_rank) < size):
            _logger.error("LocalGroupContext: lead_rank %s out of range for size %s", lead_rank, size)
            raise ValueError(f"lead_rank must be in [0, {size}); got: {lead_rank}")

        start_method = start_method or get_config("start_method")
        self.mp = multiprocessing.get_context(start_method)
        self.size = int(size)
        self.lead_rank = int(lead_rank)
        self.name = f"sharedwin-{uuid.uuid4().hex[:12]}"

        self.barrier = self.mp.Barrier(self.size)
        self.lock = self.mp.Lock()
        # per-rank contribution (bytes) and the name of the segment in flight
        self.sizes = self.mp.Array("q", self.size, lock=False)
        self.segment = self.mp.Array("c", _NAME_SLOT, lock=False)
        _logger.debug("LocalGroupContext %s: size=%d lead_rank=%d start_method=%s",
                      self.name, self.size, self.lead_rank, self.mp.get_start_method())

    def __getstate__(self):
        state = dict(self.__dict__)
        state["mp"] = self.mp.get_start_method()
        return state

    def __setstate__(self, state):
        state["mp"] = multiprocessing.get_context(state["mp"])
        self.__dict__.update(state)

    def group(self, rank: int) -> LocalProcessGroup:
        return LocalProcessGroup(self, rank)


@dataclass
class LocalWindow:
    """Transport-side record of one window allocated by a local group."""
    shm: SharedMemory | None
    sizes: list[int]
    offsets: list[int]
    disp_unit: int
    freed: bool = field(default=False)

    @property
    def total(self) -> int:
        return sum(self.sizes)


class LocalProcessGroup(ProcessGroup):
    """Process group of ``multiprocessing`` processes on a single host.

    A window is one OS shared-memory segment holding every contribution back
    to back in rank order, so the view mapped from the lead's base address
    covers the contributions of all ranks after it.
    """

    def __init__(self, context: LocalGroupContext, rank: int) -> None:
        if not (0 <= rank < context.size):
            raise ValueError(f"rank must be in [0, {context.size}); got: {rank}")
        self._context = context
        self._rank = int(rank)
        self.lead_rank = context.lead_rank

    @property
    def size(self) -> int:
        return self._context.size

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def handle(self) -> str:
        return self._context.name

    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #
    #                               PRIVATE
    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #

    def _flush(self) -> None:
        # acquiring and releasing a process-shared semaphore is a full memory barrier
        with self._context.lock:
            pass

    def _publish_segment(self, name: str) -> None:
        raw = name.encode("ascii")
        if len(raw) >= _NAME_SLOT:
            raise ValueError(f"Segment name too long: {name!r}")
        self._context.segment.value = raw

    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #
    #                                PUBLIC
    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #

    def barrier(self) -> int:
        try:
            self._context.barrier.wait()
        except threading.BrokenBarrierError:
            _logger.error("rank %d: barrier of group %s is broken", self.rank, self.handle)
            return Status.ERR_BARRIER
        return Status.SUCCESS

    def allocate_shared(self, nbytes: int, disp_unit: int) -> tuple[int, LocalWindow | None]:
        if nbytes < 0 or disp_unit < 1:
            _logger.error("rank %d: invalid allocate_shared(nbytes=%s, disp_unit=%s)", self.rank, nbytes, disp_unit)
            return Status.ERR_ARG, None

        ctx = self._context
        ctx.sizes[self.rank] = int(nbytes)
        status = self.barrier()
        if status:
            return status, None

        sizes = [int(s) for s in ctx.sizes[:]]
        offsets = [sum(sizes[:r]) for r in range(self.size)]
        total = sum(sizes)
        _logger.debug("rank %d: contributions=%s total=%d bytes", self.rank, sizes, total)

        shm = None
        if self.is_lead:
            name = ""
            if total > 0:
                try:
                    shm = SharedMemory(create=True, size=total)
                    name = shm.name
                except OSError:
                    _logger.exception("rank %d: could not create a %d byte segment", self.rank, total)
            self._publish_segment(name)

        status = self.barrier()
        if status:
            return status, None

        name = ctx.segment.value.decode("ascii")
        if total > 0 and not name:
            return Status.ERR_NO_MEM, None
        if total > 0 and not self.is_lead:
            try:
                shm = SharedMemory(name=name, create=False)
            except (FileNotFoundError, OSError):
                _logger.exception("rank %d: could not attach to segment %s", self.rank, name)
                return Status.ERR_WIN, None

        return Status.SUCCESS, LocalWindow(shm=shm, sizes=sizes, offsets=offsets, disp_unit=int(disp_unit))

    def shared_query(self, win: LocalWindow, rank: int, nbytes: int) -> tuple[int, Any]:
        if win.freed:
            return Status.ERR_WIN, None
        if not (0 <= rank < self.size) or nbytes < 0:
            return Status.ERR_ARG, None
        start = win.offsets[rank]
        if start + nbytes > win.total:
            _logger.error("rank %d: query of %d bytes at rank %d overruns the %d byte window",
                          self.rank, nbytes, rank, win.total)
            return Status.ERR_SIZE, None
        if win.shm is None:
            return Status.SUCCESS, bytearray()
        return Status.SUCCESS, win.shm.buf[start:start + nbytes]

    def lock_all(self, win: LocalWindow, assertion: WindowAssert = WindowAssert.NONE) -> int:
        if win.freed:
            return Status.ERR_WIN
        self._flush()
        return Status.SUCCESS

    def unlock_all(self, win: LocalWindow) -> int:
        if win.freed:
            return Status.ERR_WIN
        self._flush()
        return Status.SUCCESS

    def win_sync(self, win: LocalWindow) -> int:
        if win.freed:
            return Status.ERR_WIN
        self._flush()
        return Status.SUCCESS

    def fence(self, win: LocalWindow, assertion: WindowAssert = WindowAssert.NONE) -> int:
        if win.freed:
            return Status.ERR_WIN
        self._flush()
        return self.barrier()

    def free(self, win: LocalWindow) -> int:
        if win.freed:
            return Status.ERR_WIN
        status = self.barrier()
        if status:
            return status
        # the peers are past the barrier, so the window is freed whatever close() reports
        win.freed = True
        if win.shm is None:
            return Status.SUCCESS
        status = Status.SUCCESS
        try:
            win.shm.close()
        except BufferError:
            # the mapping lives on until the caller drops its arrays
            _logger.error("rank %d: window memory is still referenced by live arrays", self.rank)
            _unclosed.append(win.shm)
            status = Status.ERR_IN_USE
        if self.is_lead:
            win.shm.unlink()
        return status

    def abort(self, code: int) -> NoReturn:
        _logger.critical("rank %d: aborting group %s with code %d", self.rank, self.handle, code)
        logging.shutdown()
        os._exit(code if 0 < code < 256 else 1)

# *----------------------------------------------------*
#                       FUNCTIONS
# *----------------------------------------------------*

def _run_rank(context: LocalGroupContext, rank: int, results, target: Callable, args: tuple) -> None:
    try:
        out = target(context.group(rank), *args)
    except Exception:
        results.put((rank, False, traceback.format_exc()))
        return
    results.put((rank, True, out))

def _terminate(procs: list) -> None:
    for p in procs:
        if p.is_alive():
            p.terminate()
    for p in procs:
        p.join()

def launch(size: int,
           target: Callable[..., Any],
           *args: Any,
           lead_rank: int | None = None,
           start_method: str | None = None,
           timeout: float | None = None) -> list[Any]:
    """Run ``target(group, *args)`` on every rank of a fresh local group.

    Each rank is its own process; ``target`` receives its
    :class:`LocalProcessGroup` and must return something picklable.

    Args:
        size: Number of processes.
        target: Module-level callable executed by every rank.
        *args: Extra positional arguments forwarded to ``target``.
        lead_rank: Lead rank of the group; defaults to the configured value.
        start_method: ``multiprocessing`` start method; defaults to the
            configured value or the platform default.
        timeout: Seconds to wait for all ranks. ``None`` waits forever.

    Returns:
        The return values of ``target`` in rank order.

    Raises:
        GroupLaunchError: If a rank raised or exited with a non-zero code
            (e.g. after an abort). Remaining ranks are terminated.
        TimeoutError: If ``timeout`` expired first.
    """
    context = LocalGroupContext(size, lead_rank=lead_rank, start_method=start_method)
    # children must share one tracker, otherwise each reports the segment as leaked
    resource_tracker.ensure_running()

    results = context.mp.Queue()
    procs = [
        context.mp.Process(target=_run_rank, args=(context, rank, results, target, args),
                           name=f"{context.name}-rank{rank}")
        for rank in range(size)
    ]
    _logger.info("launch: starting %d ranks of %s (target=%s)",
                 size, context.name, getattr(target, "__name__", repr(target)))
    for p in procs:
        p.start()

    deadline = None if timeout is None else time.monotonic() + timeout
    collected: dict[int, Any] = {}
    try:
        while len(collected) < size:
            try:
                rank, ok, payload = results.get(timeout=0.1)
            except queue.Empty:
                for rank, p in enumerate(procs):
                    if rank not in collected and p.exitcode not in (None, 0):
                        raise GroupLaunchError(rank, f"exited with code {p.exitcode}", p.exitcode)
                if deadline is not None and time.monotonic() > deadline:
                    raise TimeoutError(f"{context.name}: only {len(collected)}/{size} ranks finished in {timeout}s")
                continue
            if not ok:
                raise GroupLaunchError(rank, payload)
            collected[rank] = payload
    except BaseException:
        _logger.error("launch: %s failed; terminating remaining ranks", context.name)
        _terminate(procs)
        raise

    for p in procs:
        p.join()
    _logger.info("launch: %s finished", context.name)
    return [collected[r] for r in range(size)]


if __name__ == "__main__":
    pass
