[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "syncinspect"
version = "0.1.0"
description = "Building blocks for checking that replicated MySQL-compatible tables agree: table-rule selection, configuration parsing and checks, result reports, file watching and TLS helpers."
requires-python = ">=3.11"
dependencies = []
keywords = [
    "mysql",
    "tidb",
    "replication",
    "data-consistency",
    "table-routing",
    "wildcard",
    "file-watcher",
    "tls",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["syncinspect"]

[tool.hatch.build.targets.sdist]
include = ["syncinspect", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
