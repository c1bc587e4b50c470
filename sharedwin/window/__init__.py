from .window import SharedWindow
from .window_util import (
    WindowView, ErrorReporter,
    WindowError, AllocationError, QueryError, EpochError, WindowStateError,
)

__all__ = [
    "SharedWindow", "WindowView", "ErrorReporter",
    "WindowError", "AllocationError", "QueryError", "EpochError", "WindowStateError",
]
