# relaykit

relaykit holds the pieces that a rule-based forwarding proxy is built from:
wire formats for several proxy protocols, forwarder scheduling and health
checks, rule files, and a DHCP lease pool. The protocol code works over any
object with `read(n)` and `write(data)`, so it can be driven from sockets,
pipes or `io.BytesIO` alike.

## Modules

### Wire protocols

- `relaykit.addr`: the `host:port` target encoding carried by VMess and
  VLESS (`port | atyp | host`). `parse_addr`, `read_addr`,
  `read_addr_string` and `addr_string`, with the `Atyp` enum;
  `split_host_port` and `join_host_port` handle bracketed IPv6 hosts.
- `relaykit.vmess_user`: `str_to_uuid` turns a UUID string, or a short name
  of 1 to 30 bytes, into 16 bytes; `new_user` builds a `User` with its
  command key (`get_key`); `User.gen_alter_id_users` derives alternate ids;
  `timestamp_hash` gives the legacy header IV.
- `relaykit.chunk`: VMess body framing. `ShakeSizeParser` masks chunk sizes
  with SHAKE-128; `ChunkedWriter`/`ChunkedReader` carry plain chunks and
  `AEADWriter`/`AEADReader` carry sealed ones.
- `relaykit.vmess_auth`: `kdf`, `create_auth_id`, `seal_aead_header` and
  `open_aead_header` for the AEAD request and response headers.
- `relaykit.vmess`: `Client(uuid, security="", alter_id=0, aead=True)`.
  `security` is `aes-128-gcm`, `chacha20-poly1305`, `none`, `zero`, or empty
  for a default picked by machine type. `Client.new_conn(rc, target, cmd)`
  sends the request and returns a `Conn`, whose first `read` checks the
  response header. `PktConn` gives a packet view of a `Conn`.
- `relaykit.vless`: `VLess.from_url("vless://uuid@host:port[?fallback=...]")`,
  `VLess.read_header` for the server side, `VLess.dial`/`dial_udp` through a
  dialer object you supply, `new_client_conn`, `ClientConn`, `ServerConn`
  and the length-prefixed `PktConn`.
- `relaykit.trojan`: `Trojan.from_url` for `trojan://` and `trojanc://`
  (no TLS) URLs, `Trojan.build_request` and `Trojan.read_header`,
  `client_ssl_context`/`server_ssl_context`, the SOCKS5 address helpers
  `encode_socks_addr`/`read_socks_addr`, `hash_password`, and `PktConn` for
  packets over a trojan stream.
- `relaykit.ws_frame`: WebSocket binary frames. `FrameWriter` masks payloads
  on the client side; `FrameReader` unmasks them on the server side.

### Forwarding rules

- `relaykit.forwarder`: `Forwarder` wraps a dialer object and tracks its
  priority, failure count, latency and enabled state. It disables itself
  when failures reach `max_failures` and calls the handlers added with
  `add_handler` on every status change. `parse_option` applies
  `priority=N&interface=NAME`.
- `relaykit.group`: `FwdrGroup(name, forwarders, strategy)` picks among the
  enabled forwarders of the highest priority in `rr` (round robin), `ha`
  (first available), `lha` (lowest latency, with a tolerance) or `dh`
  (FNV-1a hash of the destination) mode. `check()` starts a health-check
  thread per forwarder; `close()` stops them.
- `relaykit.checker`: `TcpChecker`, `HttpChecker` and `FileChecker` (runs a
  script with `FORWARDER_ADDR` and `FORWARDER_URL` set). `make_checker`
  builds one from a spec such as `tcp://example.com:80`,
  `http://example.com/status#expect=200` or `file:///path/to/script`, and
  raises `ValueError` for anything else, `disable` included.
- `relaykit.rule_config`: `load_rule_config(path)` reads a `key=value` rule
  file into a `RuleConfig` holding a `Strategy`. Keys: `forward`,
  `strategy`, `check`, `checkinterval`, `checktimeout`,
  `checklatencysamples`, `checktolerance`, `checkdisabledonly`,
  `maxfailures`, `dialtimeout`, `relaytimeout`, `interface`, `dnsserver`,
  `ipset`, `domain`, `ip`, `cidr`. `list_dir` finds rule files by suffix.
- `relaykit.rule_proxy`: `RuleProxy(main, direct=None)` sends each
  destination to a group by exact IP, CIDR or domain suffix, falling back to
  `main`. With a `direct` group, the domain `direct` and the host names of
  the main forwarders go through it. `add_domain_ip` routes a resolved IP
  like its domain; `record` feeds results back to a forwarder.

### Other

- `relaykit.service`: `register(name, creator)` and `create("name,arg1,...")`;
  an unknown name raises `UnknownServiceError`.
- `relaykit.dhcp_pool`: `Pool(lease, start, end, auto_expire=False)` hands
  out IPv4 leases in a range, keeps static bindings (`lease_static_ip`),
  frees leases on `release_ip` and, when `expire()` is called or the
  `auto_expire` thread runs, once they run out. `PoolExhaustedError` is
  raised when no address is left. `checksum` computes the IPv4 header
  checksum.

## Installing

```
pip install relaykit
```

relaykit needs Python 3.10 or later; its one dependency is `cryptography`.

## Examples

Encoding a destination address:

```python
from relaykit.addr import Atyp, parse_addr, addr_string

atyp, host, port = parse_addr("example.com:443")
assert atyp is Atyp.DOMAIN
print(addr_string(Atyp.DOMAIN, b"example.com", port))  # example.com:443
```

Deriving VMess user ids:

```python
from relaykit.vmess_user import str_to_uuid, new_user

user = new_user(str_to_uuid("00000000-0000-4000-8000-000000000001"))
alternates = user.gen_alter_id_users(4)
```

A Trojan request header:

```python
from relaykit.trojan import Trojan, hash_password

trojan = Trojan.from_url("trojan://password@example.com:443")
header = trojan.build_request("tcp", "example.com:80")
assert header.startswith(hash_password("password"))
```

WebSocket frames on any binary stream:

```python
import io
from relaykit.ws_frame import FrameWriter, FrameReader

wire = io.BytesIO()
FrameWriter(wire, server=True).write(b"hello")
wire.seek(0)
print(FrameReader(wire, server=False).read(5))  # b'hello'
```

Routing destinations to forwarder groups:

```python
import socket

from relaykit.addr import split_host_port
from relaykit.forwarder import Forwarder
from relaykit.group import FwdrGroup
from relaykit.rule_config import RuleConfig, Strategy
from relaykit.rule_proxy import RuleProxy


class Direct:
    addr = "DIRECT"

    def dial(self, network, addr):
        host, port = split_host_port(addr)
        return socket.create_connection((host, int(port)))


main = FwdrGroup(
    "main",
    [
        Forwarder(Direct(), addr="proxy-a.example.com:1080"),
        Forwarder(Direct(), addr="proxy-b.example.com:1080"),
    ],
    Strategy(strategy="ha"),
)
direct = FwdrGroup("direct", [Forwarder(Direct())])

proxy = RuleProxy(main, direct)
proxy.add_rule(RuleConfig(domain=["example.org"], cidr=["10.0.0.0/8"]), direct)

assert proxy.find_dialer("www.example.org:443") is direct
assert proxy.find_dialer("10.1.2.3:22") is direct
assert proxy.find_dialer("example.net:80") is main
```

A service registry:

```python
from relaykit import service

service.register("echo", lambda *args: list(args))
print(service.create("echo,first,second"))  # ['first', 'second']
```

## What it does not do

relaykit is a library of parts, not a running proxy. It has no command line,
no listeners or accept loops, and no dialers of its own: the objects passed
to `Forwarder`, `VLess.dial` and the checkers open the connections. It does
not resolve or turn URLs into dialer chains, and it does not send DHCP
replies; `Pool` only keeps track of leases.

## Running the tests

```
pip install "relaykit[test]"
pytest
```