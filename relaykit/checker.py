"""Health checkers for forwarders.

A checker's ``check(fwdr)`` returns the elapsed time in seconds or raises.
Connections returned by ``fwdr.dial`` are expected to be socket objects.
"""

from __future__ import annotations

import os
import re
import ssl
import subprocess
import time
from typing import Any, Union
from urllib.parse import parse_qs, urlsplit

from .addr import join_host_port, split_host_port

__all__ = ["TcpChecker", "HttpChecker", "FileChecker", "make_checker"]


def _with_default_port(addr: str, port: int) -> str:
    try:
        _, current = split_host_port(addr)
    except ValueError:
        current = ""
    if not current:
        return join_host_port(addr, port)
    return addr


class TcpChecker:
    """Healthy when a TCP connection to ``addr`` can be made."""

    def __init__(self, addr: str, timeout: float = 0.0) -> None:
        self.addr = _with_default_port(addr, 80)
        self.timeout = timeout

    def check(self, fwdr: Any) -> float:
        start = time.monotonic()
        rc = fwdr.dial("tcp", self.addr)
        rc.close()
        return time.monotonic() - start


class HttpChecker:
    """Healthy when the first response line of a GET matches ``expect``."""

    def __init__(
        self,
        addr: str,
        uri: str = "/",
        expect: str = "HTTP",
        timeout: float = 0.0,
        with_tls: bool = False,
    ) -> None:
        self.addr = _with_default_port(addr, 443 if with_tls else 80)
        self.uri = uri
        self.expect = expect
        self.timeout = timeout
        self.with_tls = with_tls
        self.server_name = self.addr[: self.addr.rfind(":")]
        self.regex = re.compile(expect)

    def check(self, fwdr: Any) -> float:
        start = time.monotonic()
        rc = fwdr.dial("tcp", self.addr)

        if self.with_tls:
            context = ssl.create_default_context()
            try:
                rc = context.wrap_socket(rc, server_hostname=self.server_name)
            except Exception:
                rc.close()
                raise

        try:
            if self.timeout > 0:
                rc.settimeout(self.timeout)
            request = f"GET {self.uri} HTTP/1.1\r\nHost:{self.server_name}\r\n\r\n"
            rc.sendall(request.encode())
            with rc.makefile("rb") as reader:
                raw = reader.readline()
        finally:
            rc.close()

        if not raw.endswith(b"\n"):
            raise EOFError("connection closed before the status line ended")
        line = raw.decode("latin-1")
        if not self.regex.search(line):
            raise ValueError(f"expect: {self.expect}, got: {line}")

        elapsed = time.monotonic() - start
        if elapsed > self.timeout:
            raise TimeoutError("timeout")
        return elapsed


class FileChecker:
    """Healthy when the script at ``path`` exits with status 0.

    The script gets ``FORWARDER_ADDR`` and ``FORWARDER_URL`` in its environment.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def check(self, fwdr: Any) -> float:
        env = dict(os.environ)
        env["FORWARDER_ADDR"] = fwdr.addr
        env["FORWARDER_URL"] = fwdr.url
        subprocess.run([self.path], env=env, check=True)
        return 0.0


Checker = Union[TcpChecker, HttpChecker, FileChecker]


def make_checker(spec: str, timeout: float) -> Checker:
    """Build a checker from a check setting.

    Accepted forms: ``tcp[://HOST:PORT]``,
    ``http[s]://HOST[:PORT][/URI][#expect=STRING]`` and ``file://SCRIPT_PATH``.
    Anything else, ``disable`` included, raises ``ValueError``.
    """
    if "://" not in spec:
        spec += "://"
    parts = urlsplit(spec)
    host = parts.netloc.rpartition("@")[2]

    if parts.scheme == "tcp":
        return TcpChecker(host, timeout)
    if parts.scheme in ("http", "https"):
        expect = parse_qs(parts.fragment).get("expect", [""])[0] or "HTTP"
        uri = parts.path or "/"
        if parts.query:
            uri += "?" + parts.query
        return HttpChecker(host, uri, expect, timeout, parts.scheme == "https")
    if parts.scheme == "file":
        return FileChecker(host + parts.path)
    raise ValueError(f"unknown scheme in check config `{spec}`")