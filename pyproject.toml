[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mountutil"
version = "0.1.0"
description = "Mount, unmount and inspect filesystems, with parsers for the kernel's mount tables and an in-memory mounter for tests"
requires-python = ">=3.10"
dependencies = []
keywords = ["mount", "unmount", "filesystem", "mountinfo", "proc-mounts", "bind-mount", "smb"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mountutil"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
