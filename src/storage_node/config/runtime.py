"""
Environment lookups with ``.env`` file fallback.

Process environment always wins. Values missing from it are looked up in
the first ``.env`` candidate that defines them; the files are read once and
cached until :func:`reset_default_values`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple, TypeVar

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE_VALUES = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "f", "no", "n", "off"})

_DOTENV_CANDIDATES: Tuple[Path, ...] = (Path(".env"), Path.home() / ".env")

_DEFAULT_VALUES: Optional[Dict[str, str]] = None


def parse_dotenv(text: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, tolerating comments, ``export`` prefixes and quotes."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :]
        key, _, raw_value = stripped.partition("=")
        key = key.strip()
        if key:
            values[key] = raw_value.strip().strip("'\"")
    return values


def _dotenv_defaults() -> Dict[str, str]:
    global _DEFAULT_VALUES
    if _DEFAULT_VALUES is not None:
        return _DEFAULT_VALUES

    defaults: Dict[str, str] = {}
    for path in _DOTENV_CANDIDATES:
        if not path.is_file():
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError.unreadable_file(path, exc) from exc
        for key, value in parse_dotenv(text).items():
            defaults.setdefault(key, value)
        logger.debug("Loaded configuration defaults from %s", path)

    _DEFAULT_VALUES = defaults
    return defaults


def reset_default_values() -> None:
    """Forget cached ``.env`` values so the next lookup re-reads them."""
    global _DEFAULT_VALUES
    _DEFAULT_VALUES = None


def _is_unset(value: Optional[str], *, strip: bool, allow_blank: bool) -> bool:
    if value is None:
        return True
    if allow_blank:
        return False
    return (value.strip() if strip else value) == ""


def env_str(
    name: str,
    or_value: Optional[str] = None,
    *,
    required: bool = False,
    strip: bool = True,
    allow_blank: bool = False,
) -> Optional[str]:
    value = os.getenv(name)
    if _is_unset(value, strip=strip, allow_blank=allow_blank):
        value = _dotenv_defaults().get(name)
    if _is_unset(value, strip=strip, allow_blank=allow_blank):
        if required:
            raise ConfigurationError.missing_value(name, "set it in the environment or a .env file")
        return or_value
    return value.strip() if strip else value


def _coerce(name: str, or_value: Optional[T], required: bool, expected: str, convert: Callable[[str], T]) -> Optional[T]:
    raw = env_str(name)
    if raw is None:
        if required and or_value is None:
            raise ConfigurationError.missing_value(name)
        return or_value
    try:
        return convert(raw)
    except ValueError as exc:
        raise ConfigurationError.invalid_value(name, raw, f"Expected {expected}") from exc


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(raw)


def env_int(name: str, or_value: Optional[int] = None, *, required: bool = False) -> Optional[int]:
    return _coerce(name, or_value, required, "an integer", int)


def env_float(name: str, or_value: Optional[float] = None, *, required: bool = False) -> Optional[float]:
    return _coerce(name, or_value, required, "a number", float)


def env_bool(name: str, or_value: Optional[bool] = None, *, required: bool = False) -> Optional[bool]:
    return _coerce(name, or_value, required, "a boolean such as true/false or 1/0", _to_bool)


def env_seconds(name: str, or_value: Optional[float] = None, *, required: bool = False) -> Optional[float]:
    """Durations in (possibly fractional) seconds; negative values are rejected."""
    value = env_float(name, or_value, required=required)
    if value is not None and value < 0:
        raise ConfigurationError.invalid_value(name, value, "Durations must be non-negative")
    return value


def env_list(
    name: str,
    *,
    or_value: Optional[Sequence[str]] = None,
    separator: str = ",",
    unique: bool = True,
    required: bool = False,
) -> Optional[Tuple[str, ...]]:
    """Split a delimited value, dropping blank items and (by default) repeats."""
    raw = env_str(name)
    items = [] if raw is None else [part.strip() for part in raw.split(separator) if part.strip()]
    if not items:
        if required and not or_value:
            raise ConfigurationError.missing_value(name, "expected at least one value")
        return None if or_value is None else tuple(or_value)
    if unique:
        items = list(dict.fromkeys(items))
    return tuple(items)


__all__ = [
    "env_bool",
    "env_float",
    "env_int",
    "env_list",
    "env_seconds",
    "env_str",
    "parse_dotenv",
    "reset_default_values",
]
