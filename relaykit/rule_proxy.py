"""Rule-based proxy: picks a forwarder group by destination domain, IP or CIDR."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterator, Optional, Union

from .addr import split_host_port
from .forwarder import Forwarder
from .group import FwdrGroup
from .rule_config import RuleConfig

__all__ = ["RuleProxy"]

log = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _suffixes(host: str) -> Iterator[str]:
    """Yield domain suffixes of ``host``, shortest first, ending with the host."""
    parts = host.split(".")
    for k in range(1, len(parts) + 1):
        yield ".".join(parts[-k:])


def _parse_ip(s: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(s)
    except ValueError:
        return None


class RuleProxy:
    """Routes destinations to forwarder groups according to rules.

    Destinations not matched by any rule use the ``main`` group. When a
    ``direct`` group is given, the domain ``direct`` and the host names of
    the main forwarders are routed through it.
    """

    def __init__(self, main: FwdrGroup, direct: Optional[FwdrGroup] = None) -> None:
        self.main = main
        self.direct = direct
        self.all: list[FwdrGroup] = []
        self.domain_map: dict[str, FwdrGroup] = {}
        self.ip_map: dict[IPAddress, FwdrGroup] = {}
        self.cidr_map: list[tuple[IPNetwork, FwdrGroup]] = []

        if direct is not None:
            self.domain_map["direct"] = direct
            # the main forwarders themselves must be reached directly
            for f in main.fwdrs:
                first = f.addr.split(",")[0]
                try:
                    host, _ = split_host_port(first)
                except ValueError:
                    continue
                if host and _parse_ip(host) is None:
                    self.domain_map[host.lower()] = direct

    def add_rule(self, config: RuleConfig, group: FwdrGroup) -> None:
        """Route the domains, IPs and CIDRs of ``config`` through ``group``.

        Unparsable IPs and CIDRs are logged and skipped.
        """
        self.all.append(group)

        for domain in config.domain:
            self.domain_map[domain.lower()] = group

        for s in config.ip:
            ip = _parse_ip(s)
            if ip is None:
                log.info("[rule] parse ip error: %r", s)
                continue
            self.ip_map[ip] = group

        for s in config.cidr:
            try:
                network = ipaddress.ip_network(s, strict=False)
            except ValueError as exc:
                log.info("[rule] parse cidr error: %s", exc)
                continue
            self.cidr_map.append((network, group))

    def find_dialer(self, dst_addr: str) -> FwdrGroup:
        """Return the group for ``dst_addr`` (``host:port``)."""
        try:
            host, _ = split_host_port(dst_addr)
        except ValueError:
            return self.main

        ip = _parse_ip(host)
        if ip is not None:
            group = self.ip_map.get(ip)
            if group is not None:
                return group
            for network, group in self.cidr_map:
                if network.version == ip.version and ip in network:
                    return group

        for suffix in _suffixes(host.lower()):
            group = self.domain_map.get(suffix)
            if group is not None:
                return group

        return self.main

    def dial(self, network: str, addr: str) -> tuple[Any, Forwarder]:
        """Dial ``addr`` through its group; return ``(conn, forwarder)``."""
        return self.find_dialer(addr).dial(network, addr)

    def dial_udp(self, network: str, addr: str) -> tuple[Any, Forwarder]:
        """Open a packet connection to ``addr`` through its group."""
        return self.find_dialer(addr).dial_udp(network, addr)

    def next_dialer(self, dst_addr: str) -> Forwarder:
        """Return the forwarder that would be used for ``dst_addr``."""
        return self.find_dialer(dst_addr).next_dialer(dst_addr)

    def record(self, dialer: Any, success: bool) -> None:
        """Record the outcome of using ``dialer``; other dialers are ignored."""
        if not isinstance(dialer, Forwarder):
            return
        if success:
            dialer.enable()
        else:
            dialer.inc_failures()

    def add_domain_ip(self, domain: str, ip: Union[str, IPAddress]) -> None:
        """Route ``ip`` like ``domain``, as learned from a DNS answer."""
        address = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
        for suffix in _suffixes(domain.lower()):
            group = self.domain_map.get(suffix)
            if group is not None:
                self.ip_map[address] = group

    def check(self) -> list[Any]:
        """Start health checks in every group; return each group's checker."""
        return [self.main.check(), *(group.check() for group in self.all)]