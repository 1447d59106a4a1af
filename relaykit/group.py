"""Forwarder groups: scheduling between forwarders and health checking."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Sequence

from .checker import make_checker
from .forwarder import Forwarder
from .rule_config import Strategy

__all__ = ["FwdrGroup"]

log = logging.getLogger(__name__)

_MAX_WAIT = 16


def _fnv1a32(data: bytes) -> int:
    h = 0x811C9DC5
    for b in data:
        h = ((h ^ b) * 0x01000193) & 0xFFFFFFFF
    return h


class FwdrGroup:
    """A group of forwarders chosen by a strategy: rr, ha, lha or dh.

    Only enabled forwarders of the highest enabled priority are available.
    When none is available, all forwarders are used in turn.
    """

    def __init__(
        self,
        name: str,
        forwarders: Sequence[Forwarder],
        strategy: Optional[Strategy] = None,
    ) -> None:
        if not forwarders:
            raise ValueError("a forwarder group needs at least one forwarder")
        self.name = name
        self.config = strategy if strategy is not None else Strategy()
        self.fwdrs: list[Forwarder] = sorted(
            forwarders, key=lambda f: f.priority, reverse=True
        )
        self.avail: list[Forwarder] = []
        self.priority = 0
        self._index = 0
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

        self._init()

        self._next: Callable[[str], Forwarder] = self._schedule_rr
        count = len(self.fwdrs)
        if count > 1:
            schedulers = {
                "rr": (self._schedule_rr, "round robin"),
                "ha": (self._schedule_ha, "high availability"),
                "lha": (self._schedule_lha, "latency based high availability"),
                "dh": (self._schedule_dh, "destination hashing"),
            }
            if self.config.strategy in schedulers:
                self._next, mode = schedulers[self.config.strategy]
                log.info("[strategy] %s: %d forwarders forward in %s mode.", name, count, mode)
            else:
                log.info(
                    "[strategy] %s: not supported forward mode '%s', "
                    "use round robin mode for %d forwarders.",
                    name,
                    self.config.strategy,
                    count,
                )

        for f in self.fwdrs:
            f.add_handler(self.on_status_changed)

    def __repr__(self) -> str:
        return f"FwdrGroup({self.name!r}, {len(self.fwdrs)} forwarders)"

    def _init(self) -> None:
        for f in self.fwdrs:
            if f.enabled:
                self.priority = f.priority
                break
        self.avail = [f for f in self.fwdrs if f.enabled and f.priority >= self.priority]
        if not self.avail:
            # nothing available: check every forwarder
            self.priority = 0

    def _next_index(self) -> int:
        self._index = (self._index + 1) & 0xFFFFFFFF
        return self._index

    def next_dialer(self, dst_addr: str) -> Forwarder:
        """Return the forwarder to use for ``dst_addr``."""
        with self._lock:
            if not self.avail:
                return self.fwdrs[self._next_index() % len(self.fwdrs)]
            return self._next(dst_addr)

    def dial(self, network: str, addr: str) -> tuple[Any, Forwarder]:
        """Dial ``addr`` through the next forwarder; return ``(conn, forwarder)``."""
        nd = self.next_dialer(addr)
        return nd.dial(network, addr), nd

    def dial_udp(self, network: str, addr: str) -> tuple[Any, Forwarder]:
        """Open a packet connection through the next forwarder."""
        nd = self.next_dialer(addr)
        return nd.dial_udp(network, addr), nd

    def on_status_changed(self, fwdr: Forwarder) -> None:
        """Update the available forwarders after ``fwdr`` changed status."""
        with self._lock:
            if fwdr.enabled:
                if fwdr.priority == self.priority:
                    self.avail.append(fwdr)
                elif fwdr.priority > self.priority:
                    self._init()
                log.info(
                    "[group] %s: %s(%d) changed status from DISABLED to ENABLED "
                    "(%d of %d currently enabled)",
                    self.name, fwdr.addr, fwdr.priority, len(self.avail), len(self.fwdrs),
                )
            else:
                for i, f in enumerate(self.avail):
                    if f is fwdr:
                        self.avail[i] = self.avail[-1]
                        self.avail.pop()
                        break
                log.info(
                    "[group] %s: %s(%d) changed status from ENABLED to DISABLED "
                    "(%d of %d currently enabled)",
                    self.name, fwdr.addr, fwdr.priority, len(self.avail), len(self.fwdrs),
                )

            if not self.avail:
                self._init()

    def check(self) -> Any:
        """Start health checking each forwarder in a background thread.

        Returns the checker in use, or ``None`` when checking is disabled:
        for a single forwarder or an unusable check setting.
        """
        if len(self.fwdrs) == 1:
            log.info("[group] %s: only 1 forwarder found, disable health checking", self.name)
            return None
        try:
            checker = make_checker(self.config.check, self.config.check_timeout)
        except ValueError as exc:
            log.info("[group] %s: %s, disable health checking", self.name, exc)
            return None

        log.info("[group] %s: using check config: %s", self.name, self.config.check)
        for f in self.fwdrs:
            thread = threading.Thread(target=self._check_loop, args=(f, checker), daemon=True)
            thread.start()
            self._threads.append(thread)
        return checker

    def close(self) -> None:
        """Stop the health check threads."""
        self._stop.set()
        for thread in self._threads:
            thread.join()
        self._threads.clear()

    def _check_loop(self, fwdr: Forwarder, checker: Any) -> None:
        wait = 0
        interval = self.config.check_interval
        while not self._stop.wait(interval * wait):
            # every forwarder is checked at least once
            if wait > 0 and fwdr.priority < self.priority:
                continue
            if fwdr.enabled and self.config.check_disabled_only:
                wait = max(wait, 1)
                continue

            try:
                elapsed = checker.check(fwdr)
            except NotImplementedError as exc:
                fwdr.max_failures = 0
                log.info("[check] %s: %s(%d), %s, stop checking",
                         self.name, fwdr.addr, fwdr.priority, exc)
                fwdr.enable()
                return
            except Exception as exc:
                wait = min(wait + 1, _MAX_WAIT)
                log.info("[check] %s: %s(%d), FAILED. error: %s",
                         self.name, fwdr.addr, fwdr.priority, exc)
                fwdr.disable()
                continue

            wait = 1
            self.set_latency(fwdr, elapsed)
            log.info(
                "[check] %s: %s(%d), SUCCESS. Elapsed: %dms, Latency: %dms.",
                self.name, fwdr.addr, fwdr.priority,
                int(elapsed * 1000), int(fwdr.latency * 1000),
            )
            fwdr.enable()

    def set_latency(self, fwdr: Forwarder, elapsed: float) -> None:
        """Record a check time, averaged over the configured number of samples."""
        latency = elapsed
        samples = self.config.check_latency_samples
        if samples > 1 and fwdr.latency > 0:
            latency = (fwdr.latency * (samples - 1) + elapsed) / samples
        fwdr.latency = latency

    def _schedule_rr(self, dst_addr: str) -> Forwarder:
        return self.avail[self._next_index() % len(self.avail)]

    def _schedule_ha(self, dst_addr: str) -> Forwarder:
        return self.avail[0]

    def _schedule_lha(self, dst_addr: str) -> Forwarder:
        old = self.avail[0]
        best = min(self.avail, key=lambda f: f.latency)
        if best.latency >= old.latency:
            best = old
        tolerance = self.config.check_tolerance / 1000
        if best.latency < old.latency - tolerance:
            return best
        return old

    def _schedule_dh(self, dst_addr: str) -> Forwarder:
        return self.avail[_fnv1a32(dst_addr.encode()) % len(self.avail)]