[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tuicproto"
version = "1.6.5"
description = "TUIC v5 relay protocol building blocks: wire codec, UDP fragmentation and reassembly, SNI sniffing and ACL rules"
requires-python = ">=3.11"
dependencies = []
keywords = ["tuic", "quic", "proxy", "protocol", "acl", "sni", "udp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["tuicproto"]

[tool.hatch.build.targets.sdist]
include = ["tuicproto", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "UP", "B"]
