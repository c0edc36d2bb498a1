"""Typed reads of environment variables.

These only read ``os.environ``; ``.env`` is loaded once by ``siro.core.config``.
"""
import os


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def env_none_or_str(name: str, default=None):
    value = os.getenv(name)
    if value is None or value.strip().lower() in ("", "none"):
        return default
    return value


def env_list(name: str, default: list[str] | None = None) -> list[str]:
    """Comma separated values, blanks dropped."""
    value = os.getenv(name)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]
