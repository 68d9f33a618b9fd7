[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "limakit"
version = "0.1.0"
description = "Guest agent, port discovery, image downloading and CLI helpers for Linux virtual machines"
requires-python = ">=3.10"
dependencies = [
    "tqdm",
]
keywords = [
    "virtual-machine",
    "guest-agent",
    "port-forwarding",
    "iptables",
    "ssh",
    "downloader",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
lima-guestagent = "limakit.agentcli:main"

[tool.hatch.build.targets.wheel]
packages = ["limakit"]

[tool.hatch.build.targets.sdist]
include = [
    "limakit",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
