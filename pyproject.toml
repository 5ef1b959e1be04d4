[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bleserial"
version = "0.1.0"
description = "Framed, CRC-16 checked serial link protocol between a BLE co-processor and its host"
requires-python = ">=3.10"
dependencies = []
keywords = ["ble", "uart", "serial", "framing", "crc16", "protocol"]
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
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bleserial"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
