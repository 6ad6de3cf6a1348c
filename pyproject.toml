[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "onlineddl"
version = "0.1.0"
description = "Table chunking, watermark tracking, replication throttling and ALTER checks for online MySQL schema changes"
requires-python = ">=3.10"
dependencies = []
keywords = ["mysql", "schema-migration", "online-ddl", "chunking", "throttling"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["onlineddl"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
