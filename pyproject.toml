[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "permen"
version = "0.1.0"
description = "Building blocks for a JSON web API: request binding, AES-GCM payload encryption, an LRU cache, a REST client, object streaming helpers and JWT handling."
requires-python = ">=3.10"
keywords = ["web", "api", "aes-gcm", "jwt", "lru-cache", "rest-client", "request-binding", "http-range"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Security :: Cryptography",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]
dependencies = [
    "cryptography>=41",
    "pyjwt>=2.8",
    "requests>=2.31",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "responses>=0.24",
]

[tool.hatch.build.targets.wheel]
packages = ["permen"]

[tool.hatch.build.targets.sdist]
include = ["permen", "tests"]

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
warn_redundant_casts = true
