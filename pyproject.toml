[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "quicnet"
version = "0.1.0"
description = "Building blocks for a QUIC networking layer: addresses, options, datagram buffering, streams, UDP sockets and a threaded event loop"
requires-python = ">=3.10"
dependencies = []
keywords = ["quic", "udp", "networking", "datagrams", "event-loop", "ecn"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["quicnet"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
