"""Errors raised while reading or validating node settings."""

from __future__ import annotations

from typing import Any, Optional


class ConfigurationError(RuntimeError):
    """
    A setting is missing, malformed or out of range.

    ``setting`` names the offending option (an attribute or environment
    variable) when one is known.
    """

    def __init__(self, message: str, *, setting: Optional[str] = None) -> None:
        super().__init__(message)
        self.setting = setting

    @classmethod
    def missing_value(cls, setting: str, hint: str = "") -> "ConfigurationError":
        message = f"{setting} is missing or empty"
        return cls(f"{message}: {hint}" if hint else message, setting=setting)

    @classmethod
    def invalid_value(cls, setting: str, value: Any, reason: str = "") -> "ConfigurationError":
        message = f"Invalid value for {setting}: {value!r}"
        return cls(f"{message}. {reason}" if reason else message, setting=setting)

    @classmethod
    def invalid_format(cls, setting: str, value: str, expected: str = "") -> "ConfigurationError":
        message = f"{setting} has invalid format (received {value!r})"
        return cls(f"{message}. Expected {expected}" if expected else message, setting=setting)

    @classmethod
    def unreadable_file(cls, path: Any, reason: Any) -> "ConfigurationError":
        return cls(f"Could not read settings file {path}: {reason}")


__all__ = ["ConfigurationError"]
