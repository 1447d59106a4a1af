"""Rule files: forwarders, strategy settings and the targets they apply to.

A rule file holds ``key=value`` lines. Blank lines and lines starting with
``#`` are ignored. List keys may be given more than once.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable

__all__ = ["Strategy", "RuleConfig", "load_rule_config", "list_dir"]

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


@dataclass
class Strategy:
    """How a forwarder group schedules and health-checks its forwarders.

    Times are in seconds, except ``check_tolerance`` which is in milliseconds.
    """

    strategy: str = "rr"
    check: str = "http://www.msftconnecttest.com/connecttest.txt#expect=200"
    check_interval: int = 30
    check_timeout: int = 10
    check_tolerance: int = 0
    check_latency_samples: int = 10
    check_disabled_only: bool = False
    max_failures: int = 3
    dial_timeout: int = 3
    relay_timeout: int = 0
    interface: str = ""


@dataclass
class RuleConfig:
    """A rule: the forwarders to use for the listed domains, IPs and CIDRs."""

    rule_path: str = ""
    forward: list[str] = field(default_factory=list)
    strategy: Strategy = field(default_factory=Strategy)
    dns_servers: list[str] = field(default_factory=list)
    ipset: str = ""
    domain: list[str] = field(default_factory=list)
    ip: list[str] = field(default_factory=list)
    cidr: list[str] = field(default_factory=list)


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value {value!r}")


def _parse_int(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise ValueError(f"invalid integer value {value!r}") from None


_Converter = Callable[[str], object]

# key -> (attribute on Strategy, converter)
_STRATEGY_KEYS: dict[str, tuple[str, _Converter]] = {
    "strategy": ("strategy", str),
    "check": ("check", str),
    "checkinterval": ("check_interval", _parse_int),
    "checktimeout": ("check_timeout", _parse_int),
    "checklatencysamples": ("check_latency_samples", _parse_int),
    "checktolerance": ("check_tolerance", _parse_int),
    "checkdisabledonly": ("check_disabled_only", _parse_bool),
    "maxfailures": ("max_failures", _parse_int),
    "dialtimeout": ("dial_timeout", _parse_int),
    "relaytimeout": ("relay_timeout", _parse_int),
    "interface": ("interface", str),
}

# key -> (attribute on RuleConfig, unique)
_LIST_KEYS: dict[str, tuple[str, bool]] = {
    "forward": ("forward", True),
    "dnsserver": ("dns_servers", True),
    "domain": ("domain", False),
    "ip": ("ip", False),
    "cidr": ("cidr", False),
}


def _apply(config: RuleConfig, key: str, value: str, has_value: bool) -> None:
    if key in _STRATEGY_KEYS:
        attr, convert = _STRATEGY_KEYS[key]
        if not has_value:
            if convert is _parse_bool:
                setattr(config.strategy, attr, True)
                return
            raise ValueError(f"flag needs an argument: {key}")
        setattr(config.strategy, attr, convert(value))
        return

    if not has_value:
        raise ValueError(f"flag needs an argument: {key}")

    if key in _LIST_KEYS:
        attr, unique = _LIST_KEYS[key]
        values = getattr(config, attr)
        if not unique or value not in values:
            values.append(value)
    elif key == "ipset":
        config.ipset = value
    else:
        raise ValueError(f"flag provided but not defined: {key}")


def load_rule_config(path: str) -> RuleConfig:
    """Read a rule file; raise ``ValueError`` for unknown keys or bad values."""
    config = RuleConfig(rule_path=path)
    with open(path, encoding="utf-8") as f:
        for lineno, raw in enumerate(f, 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            try:
                _apply(config, key.strip(), value.strip(), bool(sep))
            except ValueError as exc:
                raise ValueError(f"{path}:{lineno}: {exc}") from None
    return config


def list_dir(path: str, suffix: str) -> list[str]:
    """Return the files in ``path`` whose names end with ``suffix``, ignoring case."""
    suffix = suffix.lower()
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda e: e.name)
    return [
        path + os.sep + entry.name
        for entry in entries
        if not entry.is_dir(follow_symlinks=False)
        and entry.name.lower().endswith(suffix)
    ]