from __future__ import annotations

# built-in
import logging
from typing import Any, NoReturn
# local
from .process_group import ProcessGroup, WindowAssert

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_logger = logging.getLogger(__name__)

# WindowAssert bit -> name of the matching MPI assertion constant
_MPI_MODES = {
    WindowAssert.NOCHECK:   "MODE_NOCHECK",
    WindowAssert.NOSTORE:   "MODE_NOSTORE",
    WindowAssert.NOPUT:     "MODE_NOPUT",
    WindowAssert.NOPRECEDE: "MODE_NOPRECEDE",
    WindowAssert.NOSUCCEED: "MODE_NOSUCCEED",
}

# *----------------------------------------------------*
#                       FUNCTIONS
# *----------------------------------------------------*

def _mpi():
    """Import ``mpi4py.MPI`` on first use; initializes MPI."""
    try:
        from mpi4py import MPI
    except ImportError as e:
        raise ImportError(
            "The MPI transport requires mpi4py. Install it with `pip install sharedwin[mpi]`."
        ) from e
    return MPI

def to_mpi_assert(assertion: WindowAssert | int) -> int:
    """Translate :class:`WindowAssert` bits into the MPI library's assertion value."""
    MPI = _mpi()
    assertion = WindowAssert(assertion)
    out = 0
    for flag, name in _MPI_MODES.items():
        if assertion & flag:
            out |= getattr(MPI, name)
    return out

# *----------------------------------------------------*
#                        CLASSES
# *----------------------------------------------------*

class MPIProcessGroup(ProcessGroup):
    """Process group backed by an MPI communicator.

    Windows are ``MPI.Win.Allocate_shared`` windows, so every rank of the
    communicator must be able to share memory (use :meth:`node_local` to
    split a larger communicator by node).
    """

    def __init__(self, comm: Any = None, *, lead_rank: int = 0) -> None:
        MPI = _mpi()
        self.comm = MPI.COMM_WORLD if comm is None else comm
        if not (0 <= lead_rank < self.comm.Get_size()):
            raise ValueError(f"lead_rank must be in [0, {self.comm.Get_size()}); got: {lead_rank}")
        self.lead_rank = int(lead_rank)

    @classmethod
    def node_local(cls, comm: Any = None, *, lead_rank: int = 0) -> MPIProcessGroup:
        """Group of the ranks of ``comm`` that share this process' node."""
        MPI = _mpi()
        base = MPI.COMM_WORLD if comm is None else comm
        shm_comm = base.Split_type(MPI.COMM_TYPE_SHARED, base.Get_rank(), MPI.INFO_NULL)
        _logger.debug("node_local: rank %d of %d on this node", shm_comm.Get_rank(), shm_comm.Get_size())
        return cls(shm_comm, lead_rank=lead_rank)

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def handle(self) -> Any:
        return self.comm

    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #
    #                                PUBLIC
    # -=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-=-= #

    def allocate_shared(self, nbytes: int, disp_unit: int) -> tuple[int, Any]:
        MPI = _mpi()
        try:
            win = MPI.Win.Allocate_shared(nbytes, disp_unit, comm=self.comm)
            win.Set_errhandler(MPI.ERRORS_RETURN)
        except MPI.Exception as e:
            _logger.error("rank %d: Allocate_shared(%d, %d) failed: %s", self.rank, nbytes, disp_unit, e)
            return e.Get_error_code(), None
        return MPI.SUCCESS, win

    def shared_query(self, win: Any, rank: int, nbytes: int) -> tuple[int, Any]:
        MPI = _mpi()
        try:
            buf, _ = win.Shared_query(rank)
            if nbytes and len(buf) == 0:
                # a zero-byte segment has no meaningful base; start at the first non-empty one
                buf, _ = win.Shared_query(MPI.PROC_NULL)
            if nbytes == 0:
                return MPI.SUCCESS, bytearray()
            return MPI.SUCCESS, MPI.buffer.fromaddress(buf.address, nbytes)
        except MPI.Exception as e:
            _logger.error("rank %d: Shared_query(%d) failed: %s", self.rank, rank, e)
            return e.Get_error_code(), None

    def lock_all(self, win: Any, assertion: WindowAssert = WindowAssert.NONE) -> int:
        MPI = _mpi()
        try:
            win.Lock_all(to_mpi_assert(assertion))
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def unlock_all(self, win: Any) -> int:
        MPI = _mpi()
        try:
            win.Unlock_all()
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def win_sync(self, win: Any) -> int:
        MPI = _mpi()
        try:
            win.Sync()
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def barrier(self) -> int:
        MPI = _mpi()
        try:
            self.comm.Barrier()
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def fence(self, win: Any, assertion: WindowAssert = WindowAssert.NONE) -> int:
        MPI = _mpi()
        try:
            win.Fence(to_mpi_assert(assertion))
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def free(self, win: Any) -> int:
        MPI = _mpi()
        try:
            win.Free()
        except MPI.Exception as e:
            return e.Get_error_code()
        return MPI.SUCCESS

    def abort(self, code: int) -> NoReturn:
        _logger.critical("rank %d: aborting communicator with code %d", self.rank, code)
        logging.shutdown()
        self.comm.Abort(code)


if __name__ == "__main__":
    pass
