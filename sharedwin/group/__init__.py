from .process_group import ProcessGroup, Status, WindowAssert
from .local_group import LocalGroupContext, LocalProcessGroup, GroupLaunchError, launch

# MPIProcessGroup is imported on demand so that mpi4py stays optional
def __getattr__(name):
    if name == "MPIProcessGroup":
        from .mpi_group import MPIProcessGroup
        return MPIProcessGroup
    raise AttributeError(name)

__all__ = [
    "ProcessGroup", "Status", "WindowAssert",
    "LocalGroupContext", "LocalProcessGroup", "GroupLaunchError", "launch",
]
