[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cardbank"
version = "0.1.0"
description = "Card banking services: API gateway, card management, card authorisation and push notifications"
requires-python = ">=3.10"
dependencies = [
    "flask",
]
keywords = [
    "banking",
    "cards",
    "payments",
    "api-gateway",
    "card-authorisation",
    "redis-streams",
    "push-notifications",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Financial and Insurance Industry",
    "Framework :: Flask",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cardbank"]

[tool.hatch.build.targets.sdist]
include = [
    "cardbank",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
