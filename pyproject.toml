[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mbkit"
version = "0.1.0"
description = "Modbus protocol toolkit: PDU handlers for slave and master, ASCII framing and a slave poll loop"
requires-python = ">=3.10"
dependencies = []
keywords = ["modbus", "ascii", "lrc", "protocol", "slave", "master", "fieldbus"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mbkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
