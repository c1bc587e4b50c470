from __future__ import annotations

# built-in
from abc import ABC, abstractmethod
from enum import IntEnum, IntFlag
from typing import Any, NoReturn

# *----------------------------------------------------*
#                        CLASSES
# *----------------------------------------------------*

class Status(IntEnum):
    """Raw status codes produced by the local transport.

    Transports are free to report their own codes (the MPI transport passes
    MPI error codes through); ``0`` always means success.
    """
    SUCCESS     = 0
    ERR_NO_MEM  = 1
    ERR_ARG     = 2
    ERR_SIZE    = 3
    ERR_WIN     = 4
    ERR_BARRIER = 5
    ERR_IN_USE  = 6


class WindowAssert(IntFlag):
    """Assertion hints for lock and fence calls.

    Hints only let the transport skip bookkeeping; they never change what
    data is visible after the call.
    """
    NONE      = 0
    NOCHECK   = 1   # no conflicting lock is held (lock)
    NOSTORE   = 2   # no local stores since the last synchronization
    NOPUT     = 4   # no remote stores until the next synchronization
    NOPRECEDE = 8   # fence does not complete any earlier accesses
    NOSUCCEED = 16  # fence does not start any later accesses


class ProcessGroup(ABC):
    """A static set of cooperating processes able to run collective calls.

    Implementations own the transport. Every primitive returns a raw integer
    status (``0`` on success) instead of raising, so that the window can apply
    one error policy uniformly after each call.

    Attributes:
        lead_rank: Rank of the lead process; base-address queries and the
            default ownership of a window refer to it.
    """

    lead_rank: int = 0

    # --------- GROUP ----------

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of processes in the group."""

    @property
    @abstractmethod
    def rank(self) -> int:
        """Rank of the calling process, ``0 <= rank < size``."""

    @property
    @abstractmethod
    def handle(self) -> Any:
        """Stable handle identifying the group to the transport."""

    @property
    def is_lead(self) -> bool:
        return self.rank == self.lead_rank

    def __repr__(self):
        return f"{type(self).__name__}(rank={self.rank}, size={self.size}, lead_rank={self.lead_rank})"

    # --------- TRANSPORT ----------

    @abstractmethod
    def allocate_shared(self, nbytes: int, disp_unit: int) -> tuple[int, Any]:
        """Collectively allocate a window; this process contributes ``nbytes``.

        Returns:
            ``(status, win)``; ``win`` is ``None`` on failure.
        """

    @abstractmethod
    def shared_query(self, win: Any, rank: int, nbytes: int) -> tuple[int, Any]:
        """Map ``nbytes`` starting at the base of ``rank``'s segment.

        Returns:
            ``(status, buffer)``; ``buffer`` is a writable buffer-protocol
            object, ``None`` on failure.
        """

    @abstractmethod
    def lock_all(self, win: Any, assertion: WindowAssert = WindowAssert.NONE) -> int:
        """Start a shared access epoch to every process of the window."""

    @abstractmethod
    def unlock_all(self, win: Any) -> int:
        """End the access epoch, completing this process' stores."""

    @abstractmethod
    def win_sync(self, win: Any) -> int:
        """Synchronize the public and private copies of the window memory."""

    @abstractmethod
    def barrier(self) -> int:
        """Block until every process of the group has entered the barrier."""

    @abstractmethod
    def fence(self, win: Any, assertion: WindowAssert = WindowAssert.NONE) -> int:
        """Collective fence: complete pending stores and synchronize."""

    @abstractmethod
    def free(self, win: Any) -> int:
        """Collectively release the window."""

    @abstractmethod
    def abort(self, code: int) -> NoReturn:
        """Terminate the calling process with ``code``."""


if __name__ == "__main__":
    pass
