import pytest

from relaykit.forwarder import Forwarder


class _Dialer:
    addr = "10.0.0.1:1080"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def dial(self, network, addr):
        self.calls.append((network, addr))
        if self.fail:
            raise ConnectionRefusedError("refused")
        return ("conn", network, addr)

    def dial_udp(self, network, addr):
        return ("packet", network, addr)


def test_addr_defaults_to_dialer_addr():
    fwdr = Forwarder(_Dialer())
    assert fwdr.addr == "10.0.0.1:1080"


def test_explicit_addr_and_url():
    fwdr = Forwarder(_Dialer(), url="socks5://h:1", addr="a:1,b:2")
    assert fwdr.addr == "a:1,b:2"
    assert fwdr.url == "socks5://h:1"


def test_dial_success_returns_connection():
    fwdr = Forwarder(_Dialer())
    assert fwdr.dial("tcp", "x:80") == ("conn", "tcp", "x:80")
    assert fwdr.failures == 0


def test_dial_failure_counts_and_reraises():
    fwdr = Forwarder(_Dialer(fail=True))
    with pytest.raises(ConnectionRefusedError):
        fwdr.dial("tcp", "x:80")
    assert fwdr.failures == 1


def test_dial_udp_delegates():
    fwdr = Forwarder(_Dialer())
    assert fwdr.dial_udp("udp", "x:53") == ("packet", "udp", "x:53")


def test_parse_option_sets_priority_and_interface():
    fwdr = Forwarder(_Dialer())
    fwdr.parse_option("priority=100&interface=eth0")
    assert fwdr.priority == 100
    assert fwdr.interface == "eth0"


def test_parse_option_invalid_priority():
    fwdr = Forwarder(_Dialer(), priority=5)
    with pytest.raises(ValueError):
        fwdr.parse_option("priority=abc&interface=eth1")
    assert fwdr.priority == 0
    assert fwdr.interface == "eth1"


def test_parse_option_without_priority_resets_to_zero():
    fwdr = Forwarder(_Dialer(), priority=7)
    fwdr.parse_option("interface=wlan0")
    assert fwdr.priority == 0


def test_handlers_called_only_on_status_change():
    fwdr = Forwarder(_Dialer())
    seen = []
    fwdr.add_handler(lambda f: seen.append(f.enabled))
    fwdr.enable()
    assert seen == []
    fwdr.disable()
    fwdr.disable()
    assert seen == [False]
    fwdr.enable()
    assert seen == [False, True]


def test_starts_disabled_when_asked():
    fwdr = Forwarder(_Dialer(), disabled=True)
    assert fwdr.enabled is False


def test_inc_failures_disables_at_max():
    fwdr = Forwarder(_Dialer(), max_failures=3)
    fwdr.inc_failures()
    fwdr.inc_failures()
    assert fwdr.enabled is True
    fwdr.inc_failures()
    assert fwdr.enabled is False
    assert fwdr.failures == 3


def test_inc_failures_without_max_never_disables():
    fwdr = Forwarder(_Dialer(), max_failures=0)
    for _ in range(10):
        fwdr.inc_failures()
    assert fwdr.enabled is True
    assert fwdr.failures == 10


def test_enable_resets_failures():
    fwdr = Forwarder(_Dialer(), max_failures=2)
    fwdr.inc_failures()
    fwdr.inc_failures()
    fwdr.enable()
    assert fwdr.enabled is True
    assert fwdr.failures == 0