[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trafficmanager"
version = "0.1.0"
description = "WSGI middleware, structured logging and ad/sales insight aggregation for a traffic management API"
requires-python = ">=3.10"
dependencies = []
keywords = ["wsgi", "middleware", "cors", "logging", "insights", "advertising", "sales"]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Office/Business",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["trafficmanager"]

[tool.pytest.ini_options]
addopts = "-ra"
