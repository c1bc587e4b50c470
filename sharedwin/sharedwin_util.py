from __future__ import annotations

# third-pary
import numpy as np
# built-in
import os
import json
import logging
from pathlib import Path
from typing import Any

# *----------------------------------------------------*
#                        GLOBALS
# *----------------------------------------------------*

_logger = logging.getLogger(__name__)

_default_config_path = Path(__file__).resolve().parent / "default_config.json"

# environment variable -> config key
_ENV_OVERRIDES = {
    "SHAREDWIN_ON_ERROR": "on_error",
    "SHAREDWIN_START_METHOD": "start_method",
    "SHAREDWIN_LOG_LEVEL": "log_level",
}

# signed integers, real and complex floating point (single/double)
SUPPORTED_DTYPES: tuple[np.dtype, ...] = tuple(
    np.dtype(t) for t in (
        np.int8, np.int16, np.int32, np.int64,
        np.float32, np.float64,
        np.complex64, np.complex128,
    )
)

# *----------------------------------------------------*
#                       FUNCTIONS
# *----------------------------------------------------*

# -=-=-=-=-=-=-=-=-=-=-=- #
#      CONFIGURATION
# -=-=-=-=-=-=-=-=-=-=-=- #

def load_json_config(config_location: str | Path) -> dict:
    """Load a JSON configuration file.

    Args:
        config_location: Path to the JSON configuration file.

    Returns:
        The parsed configuration mapping.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the top-level JSON value is not an object.
    """
    with open(config_location, "r", encoding="utf-8") as config_file:
        config = json.load(config_file)
    if not isinstance(config, dict):
        _logger.error("Config at %s is not a JSON object", config_location)
        raise ValueError(f"Expected a JSON object in {config_location}; got: {type(config).__name__}")
    return config

def _with_env_overrides(config: dict) -> dict:
    out = dict(config)
    for var, key in _ENV_OVERRIDES.items():
        val = os.environ.get(var)
        if val:
            _logger.debug("Config override from %s: %s=%s", var, key, val)
            out[key] = val
    return out

try:
    default_config: dict = load_json_config(_default_config_path)
except FileNotFoundError:
    raise RuntimeError(f"Configuration file 'default_config.json' not found at {_default_config_path}.")

def get_config(key: str) -> Any:
    """Return a configuration value, honoring ``SHAREDWIN_*`` environment overrides.

    Environment variables are re-read on every call so that processes launched
    with a modified environment pick up their own values.

    Raises:
        KeyError: If ``key`` is not a known configuration key.
    """
    config = _with_env_overrides(default_config)
    if key not in config:
        raise KeyError(f"Unknown configuration key: {key!r}")
    return config[key]

# -=-=-=-=-=-=-=-=-=-=-=- #
#     ELEMENT TYPES
# -=-=-=-=-=-=-=-=-=-=-=- #

def resolve_dtype(element_type: Any) -> np.dtype:
    """Normalize ``element_type`` to one of :data:`SUPPORTED_DTYPES`.

    Accepts anything :class:`numpy.dtype` understands (``np.int32``, ``"f8"``,
    ``np.dtype("complex64")`` ...). Non-native byte orders are rejected since
    every process maps the same bytes.

    Raises:
        TypeError: If the element type is not in the supported set.
    """
    try:
        dtype = np.dtype(element_type)
    except TypeError as e:
        raise TypeError(f"Not a NumPy element type: {element_type!r}") from e
    if dtype not in SUPPORTED_DTYPES or not dtype.isnative:
        _logger.error("Unsupported window element type: %s", dtype)
        supported = ", ".join(d.name for d in SUPPORTED_DTYPES)
        raise TypeError(f"Unsupported window element type {dtype}; expected one of: {supported}")
    return dtype

def displacement_unit(dtype: np.dtype) -> int:
    """Byte size of one element; the window's addressing unit."""
    return int(np.dtype(dtype).itemsize)

def resolve_local_length(global_length: int,
                         local_length: int | None,
                         *,
                         is_lead: bool) -> int:
    """Number of elements this process contributes to the window.

    An explicit ``local_length`` is used as given. When omitted, the lead
    process contributes the whole ``global_length`` and every other process
    contributes nothing.

    Raises:
        ValueError: If either length is negative.
    """
    if global_length < 0:
        _logger.error("Negative global_length: %s", global_length)
        raise ValueError(f"global_length must be >= 0; got: {global_length}")
    if local_length is None:
        return int(global_length) if is_lead else 0
    if local_length < 0:
        _logger.error("Negative local_length: %s", local_length)
        raise ValueError(f"local_length must be >= 0; got: {local_length}")
    return int(local_length)


if __name__ == "__main__":
    pass
