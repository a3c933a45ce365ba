[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blockexchange"
version = "0.1.0"
description = "Building blocks for a content-addressed block exchange: block notifications, fetch helpers, DONT_HAVE timeouts and provider queries."
requires-python = ">=3.10"
dependencies = []
keywords = ["blocks", "exchange", "peer-to-peer", "asyncio", "content-addressed", "providers"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["blockexchange"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
