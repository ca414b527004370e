[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kafkakit"
version = "0.1.0"
description = "Inbox/outbox event storage on PostgreSQL and a consumer loop for Kafka-style messaging"
requires-python = ">=3.10"
dependencies = []
keywords = ["kafka", "outbox", "inbox", "events", "postgresql", "messaging"]
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
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kafkakit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
