"""Protocol framing, forwarder scheduling, rule routing and a DHCP lease pool for proxies."""

__version__ = "0.1.0"

__all__ = [
    "addr",
    "checker",
    "chunk",
    "dhcp_pool",
    "forwarder",
    "group",
    "rule_config",
    "rule_proxy",
    "service",
    "trojan",
    "vless",
    "vmess",
    "vmess_auth",
    "vmess_user",
    "ws_frame",
]