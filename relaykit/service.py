"""Registry of runnable services created from ``name,arg1,arg2,...`` strings."""

from __future__ import annotations

from typing import Any, Callable

__all__ = ["UnknownServiceError", "register", "create"]

_creators: dict[str, Callable[..., Any]] = {}


class UnknownServiceError(LookupError):
    """Raised when no service is registered under a name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown service name: '{name}'")
        self.name = name


def register(name: str, creator: Callable[..., Any]) -> None:
    """Register ``creator`` under ``name``; names are case-insensitive."""
    _creators[name.lower()] = creator


def create(s: str) -> Any:
    """Create the service described by ``name,arg1,arg2,...``."""
    name, *args = s.split(",")
    creator = _creators.get(name.lower())
    if creator is None:
        raise UnknownServiceError(name)
    return creator(*args)