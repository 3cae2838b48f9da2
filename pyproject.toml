[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chaosagent"
version = "1.1.0"
description = "Chaos engineering agent core: server reporting, heartbeat monitoring and incremental Kubernetes resource reports"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "chaos-engineering",
    "agent",
    "kubernetes",
    "monitoring",
    "heartbeat",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["chaosagent"]

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
