[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "couponflow"
version = "0.1.0"
description = "Watches directories for gzipped coupon-code files and loads them into MongoDB, with resumable batch processing, a small logger and a layered configuration manager."
requires-python = ">=3.10"
keywords = ["coupons", "mongodb", "batch", "gzip", "file-watcher", "configuration", "logging"]
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
    "Topic :: Database",
    "Topic :: System :: Logging",
]
dependencies = [
    "pyyaml>=6.0",
    "pymongo>=4.0",
    "watchdog>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["couponflow"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
