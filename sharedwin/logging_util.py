from __future__ import annotations

# built-in
import logging
from datetime import datetime
from pathlib import Path

from .sharedwin_util import get_config

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_LOG_FORMAT = "%(asctime)s [%(levelname)s] pid=%(process)d %(name)s: %(message)s"
_HANDLER_MARK = "_sharedwin_handler"

# *----------------------------------------------------*
#                       FUNCTIONS
# *----------------------------------------------------*

def configure_logging(logs_dir: str | Path, level: int | str | None = None) -> Path:
    """Attach a timestamped ``sharedwin_*.log`` file handler to the root logger.

    Every process of a group may call this; each record carries the pid so the
    interleaved output of the ranks can be told apart. Calling it again is a
    no-op apart from updating the level.

    Args:
        logs_dir: Directory for the log file; created if missing.
        level: Logging level (name or number). Defaults to the configured
            ``log_level``.

    Returns:
        Path of the log file in use.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """
    if level is None:
        level = get_config("log_level")
    if isinstance(level, str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Invalid log level: {level}")
        level = numeric_level

    root = logging.getLogger()
    root.setLevel(level)

    for h in root.handlers:
        if getattr(h, _HANDLER_MARK, False):
            return Path(h.baseFilename)

    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_file = logs_dir / f"sharedwin_{stamp}.log"

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)

    logging.getLogger(__name__).info("Logging to %s (level=%s)", log_file, logging.getLevelName(level))
    return log_file


if __name__ == "__main__":
    pass
