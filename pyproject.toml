[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "skybridge"
version = "0.1.0"
description = "Serial framing, bootloader DFU, OTA and BLE bridge logic for a UART-attached host controller"
requires-python = ">=3.10"
dependencies = []
keywords = ["dfu", "ota", "uart", "ble", "crc", "firmware", "bridge", "framing"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["skybridge"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
