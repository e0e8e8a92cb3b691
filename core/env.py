"""Environment variable helpers.

Numeric values outside their bounds, or ones that do not parse, fall back to the
default with a warning so a typo in a deployment never takes login down.
"""

from __future__ import annotations

import os
from typing import Callable, Optional, TypeVar, Union

from core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", int, float)

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    """Return the stripped value of ``key``; blank values count as unset."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_first(*keys: str, default: Optional[str] = None) -> Optional[str]:
    """First non-blank value among ``keys`` (primary name, then legacy aliases)."""
    for key in keys:
        value = env_str(key)
        if value is not None:
            return value
    return default


def _env_number(
    key: str,
    default: T,
    parse: Callable[[str], T],
    minimum: Optional[Union[int, float]],
    maximum: Optional[Union[int, float]],
) -> T:
    raw = env_str(key)
    if raw is None:
        return default
    try:
        value = parse(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %s.", key, raw, default)
        return default
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        logger.warning("%s=%s is out of range [%s, %s]. Falling back to %s.", key, value, minimum, maximum, default)
        return default
    return value


def env_int(key: str, default: int, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    return _env_number(key, default, int, minimum, maximum)


def env_float(
    key: str,
    default: float,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    return _env_number(key, default, float, minimum, maximum)


def env_bool(key: str, default: bool) -> bool:
    raw = env_str(key)
    if raw is None:
        return default
    normalized = raw.lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("Invalid boolean env %s='%s'. Using default=%s.", key, raw, default)
    return default


__all__ = ["env_bool", "env_first", "env_float", "env_int", "env_str"]
