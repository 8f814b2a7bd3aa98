[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loranode"
version = "0.1.0"
description = "Interactive LoRa network node speaking SLIP-framed packets to a modem over a serial line"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = ["lora", "slip", "serial", "uart", "modem", "radio", "packet"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Ham Radio",
    "Topic :: Terminals :: Serial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
loranode = "loranode.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["loranode"]

[tool.pytest.ini_options]
addopts = "-ra"
