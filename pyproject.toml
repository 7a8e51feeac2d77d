[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "respasync"
version = "0.1.0"
description = "Event-loop agnostic asynchronous RESP client state machine with pub/sub callback bookkeeping"
requires-python = ">=3.10"
dependencies = []
keywords = ["redis", "resp", "async", "pubsub", "client", "callbacks"]
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
    "Topic :: Database :: Front-Ends",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["respasync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
