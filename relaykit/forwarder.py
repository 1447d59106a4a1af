"""Forwarders: a dialer, or a chain of dialers, with health state."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Optional
from urllib.parse import parse_qs

__all__ = ["Forwarder", "StatusHandler"]

log = logging.getLogger(__name__)

_UINT32_MAX = 0xFFFFFFFF
_DIGITS_RE = re.compile(r"[0-9]+")

StatusHandler = Callable[["Forwarder"], None]


class Forwarder:
    """A dialer with priority, failure counting and an enabled/disabled status.

    Handlers added with :meth:`add_handler` are called whenever the status
    changes between enabled and disabled.
    """

    def __init__(
        self,
        dialer: Any,
        url: str = "",
        addr: Optional[str] = None,
        *,
        priority: int = 0,
        max_failures: int = 0,
        interface: str = "",
        disabled: bool = False,
    ) -> None:
        self.dialer = dialer
        self.url = url
        self.addr = getattr(dialer, "addr", "") if addr is None else addr
        self.priority = priority
        self.max_failures = max_failures
        self.interface = interface
        self.latency = 0.0
        self._failures = 0
        self._disabled = disabled
        self._handlers: list[StatusHandler] = []
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"Forwarder({self.addr!r}, priority={self.priority}, {state})"

    def parse_option(self, option: str) -> None:
        """Apply ``priority=N&interface=NAME`` options.

        An invalid priority leaves the priority at 0 (or at the 32-bit maximum
        when it is too large) and raises ``ValueError`` after the interface
        has been set.
        """
        query = parse_qs(option, keep_blank_values=True)

        def first(name: str) -> str:
            return query.get(name, [""])[0]

        error = None
        priority = 0
        raw = first("priority")
        if raw:
            if not _DIGITS_RE.fullmatch(raw):
                error = f"invalid priority: {raw!r}"
            elif int(raw) > _UINT32_MAX:
                priority = _UINT32_MAX
                error = f"priority out of range: {raw}"
            else:
                priority = int(raw)
        self.priority = priority
        self.interface = first("interface")

        if error is not None:
            raise ValueError(error)

    def dial(self, network: str, addr: str) -> Any:
        """Dial ``addr`` through the dialer, counting a failure if it raises."""
        try:
            return self.dialer.dial(network, addr)
        except Exception:
            self.inc_failures()
            raise

    def dial_udp(self, network: str, addr: str) -> Any:
        """Open a packet connection to ``addr`` through the dialer."""
        return self.dialer.dial_udp(network, addr)

    @property
    def failures(self) -> int:
        """The number of failures recorded since the last enable."""
        with self._lock:
            return self._failures

    @property
    def enabled(self) -> bool:
        with self._lock:
            return not self._disabled

    def inc_failures(self) -> None:
        """Count a failure; disable the forwarder when it reaches max failures."""
        with self._lock:
            self._failures += 1
            failures = self._failures
        if self.max_failures == 0:
            return
        if failures == self.max_failures and self.enabled:
            log.info(
                "[forwarder] %s(%d) reaches maxfailures: %d",
                self.addr,
                self.priority,
                self.max_failures,
            )
            self.disable()

    def add_handler(self, handler: StatusHandler) -> None:
        """Add a handler called with this forwarder when its status changes."""
        self._handlers.append(handler)

    def _set_disabled(self, disabled: bool) -> bool:
        with self._lock:
            changed = self._disabled != disabled
            self._disabled = disabled
        return changed

    def _notify(self) -> None:
        for handler in list(self._handlers):
            handler(self)

    def enable(self) -> None:
        """Enable the forwarder and reset its failure count."""
        if self._set_disabled(False):
            self._notify()
        with self._lock:
            self._failures = 0

    def disable(self) -> None:
        """Disable the forwarder."""
        if self._set_disabled(True):
            self._notify()