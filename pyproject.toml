[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "relaykit"
version = "0.1.0"
description = "Building blocks for a rule-based forwarding proxy: VMess, VLESS, Trojan and WebSocket framing, forwarder groups, health checks and a DHCP lease pool."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "proxy",
    "vmess",
    "vless",
    "trojan",
    "websocket",
    "forwarder",
    "load-balancing",
    "dhcp",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["relaykit"]

[tool.hatch.build.targets.sdist]
include = [
    "relaykit",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
