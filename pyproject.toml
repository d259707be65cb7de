[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "servicekit"
version = "0.1.0"
description = "Service building blocks: layered configuration, buffered event logging, in-process metrics and a Redis store wrapper."
requires-python = ">=3.10"
keywords = ["config", "yaml", "logging", "metrics", "redis", "service"]
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
    "Topic :: Software Development :: Libraries",
    "Typing :: Typed",
]
dependencies = [
    "pyyaml>=6.0",
    "redis>=5.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["servicekit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
