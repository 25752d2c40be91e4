[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tangara"
version = "0.1.0"
description = "Find, inspect, script and flash firmware onto a Tangara music player over USB serial"
requires-python = ">=3.10"
keywords = ["tangara", "serial", "firmware", "flash", "lua", "console", "esp32"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Terminals :: Serial",
    "Topic :: System :: Hardware",
    "Topic :: Utilities",
]
dependencies = [
    "pyserial>=3.5",
    "semver>=3.0",
    "requests>=2.28",
    "blessed>=1.20",
    "tqdm>=4.64",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "pytest-asyncio>=0.21",
    "responses>=0.23",
]

[project.scripts]
tangara = "tangara.cli.main:main"

[tool.hatch.build.targets.wheel]
packages = ["tangara"]

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
ignore_missing_imports = true
