import socket
import subprocess
import threading

import pytest

from relaykit.addr import split_host_port
from relaykit.checker import FileChecker, HttpChecker, TcpChecker, make_checker
from relaykit.forwarder import Forwarder


class _SocketDialer:
    addr = "DIRECT"

    def dial(self, network, addr):
        host, port = split_host_port(addr)
        return socket.create_connection((host, int(port)), timeout=5)


class _FailingDialer:
    addr = "DIRECT"

    def dial(self, network, addr):
        raise ConnectionRefusedError("refused")


def _serve_http_once(response):
    srv = socket.create_server(("127.0.0.1", 0))
    port = srv.getsockname()[1]
    received = []

    def run():
        with srv:
            conn, _ = srv.accept()
            with conn:
                data = b""
                while b"\r\n\r\n" not in data:
                    chunk = conn.recv(1024)
                    if not chunk:
                        break
                    data += chunk
                received.append(data)
                conn.sendall(response)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return port, received, thread


def _serve_accept_once():
    srv = socket.create_server(("127.0.0.1", 0))
    port = srv.getsockname()[1]

    def run():
        with srv:
            conn, _ = srv.accept()
            conn.close()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return port, thread


def test_tcp_checker_default_port():
    assert TcpChecker("example.com").addr == "example.com:80"
    assert TcpChecker("example.com:8080").addr == "example.com:8080"


def test_http_checker_default_ports_and_server_name():
    plain = HttpChecker("example.com")
    secure = HttpChecker("example.com", with_tls=True)
    assert plain.addr == "example.com:80"
    assert secure.addr == "example.com:443"
    assert secure.server_name == "example.com"


def test_tcp_check_success():
    port, thread = _serve_accept_once()
    fwdr = Forwarder(_SocketDialer())
    elapsed = TcpChecker(f"127.0.0.1:{port}", 5).check(fwdr)
    thread.join(5)
    assert 0 <= elapsed < 5


def test_tcp_check_failure_counts_on_forwarder():
    fwdr = Forwarder(_FailingDialer())
    with pytest.raises(ConnectionRefusedError):
        TcpChecker("127.0.0.1:1", 5).check(fwdr)
    assert fwdr.failures == 1


def test_http_check_success_sends_request():
    port, received, thread = _serve_http_once(b"HTTP/1.1 200 OK\r\n\r\n")
    checker = HttpChecker(f"127.0.0.1:{port}", "/ping", "200", 5)
    elapsed = checker.check(Forwarder(_SocketDialer()))
    thread.join(5)
    assert 0 <= elapsed < 5
    assert received == [b"GET /ping HTTP/1.1\r\nHost:127.0.0.1\r\n\r\n"]


def test_http_check_unexpected_status():
    port, _, thread = _serve_http_once(b"HTTP/1.1 500 Error\r\n\r\n")
    checker = HttpChecker(f"127.0.0.1:{port}", "/", "200", 5)
    with pytest.raises(ValueError, match="expect: 200"):
        checker.check(Forwarder(_SocketDialer()))
    thread.join(5)


def test_file_checker_passes_environment(tmp_path):
    out = tmp_path / "out.txt"
    script = tmp_path / "check.sh"
    script.write_text(f"#!/bin/sh\nprintf '%s %s' \"$FORWARDER_ADDR\" \"$FORWARDER_URL\" > '{out}'\n")
    script.chmod(0o755)
    fwdr = Forwarder(_SocketDialer(), url="http://proxy:8080", addr="proxy:8080")
    assert FileChecker(str(script)).check(fwdr) == 0.0
    assert out.read_text() == "proxy:8080 http://proxy:8080"


def test_file_checker_nonzero_exit(tmp_path):
    script = tmp_path / "fail.sh"
    script.write_text("#!/bin/sh\nexit 1\n")
    script.chmod(0o755)
    with pytest.raises(subprocess.CalledProcessError):
        FileChecker(str(script)).check(Forwarder(_SocketDialer()))


def test_make_checker_default_http_setting():
    checker = make_checker("http://www.msftconnecttest.com/connecttest.txt#expect=200", 10)
    assert isinstance(checker, HttpChecker)
    assert checker.addr == "www.msftconnecttest.com:80"
    assert checker.uri == "/connecttest.txt"
    assert checker.expect == "200"
    assert checker.timeout == 10


def test_make_checker_https_defaults():
    checker = make_checker("https://example.com", 3)
    assert isinstance(checker, HttpChecker)
    assert checker.addr == "example.com:443"
    assert checker.uri == "/"
    assert checker.expect == "HTTP"
    assert checker.with_tls is True


def test_make_checker_tcp_and_file():
    tcp = make_checker("tcp://example.com:22", 3)
    assert isinstance(tcp, TcpChecker)
    assert tcp.addr == "example.com:22"
    script = make_checker("file:///usr/local/bin/check.sh", 3)
    assert isinstance(script, FileChecker)
    assert script.path == "/usr/local/bin/check.sh"


def test_make_checker_disable_raises():
    with pytest.raises(ValueError, match="unknown scheme"):
        make_checker("disable", 3)