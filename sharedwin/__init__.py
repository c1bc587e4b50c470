from .window import (
    SharedWindow, WindowView,
    WindowError, AllocationError, QueryError, EpochError, WindowStateError,
)
from .group import ProcessGroup, WindowAssert, LocalProcessGroup, launch

# expose subpackages on demand
def __getattr__(name):
    if name in {
        "sharedwin_util", "logging_util", "group", "window"
    }:
        import importlib
        return importlib.import_module(f"{__name__}.{name}")
    raise AttributeError(name)

__all__ = [
    # window
    "SharedWindow", "WindowView",
    "WindowError", "AllocationError", "QueryError", "EpochError", "WindowStateError",
    # groups
    "ProcessGroup", "WindowAssert", "LocalProcessGroup", "launch",
    # namespaces (lazy) (see above)
    "sharedwin_util", "logging_util", "group", "window"
]
