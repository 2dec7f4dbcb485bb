[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mergebot"
version = "0.1.0"
description = "A GitHub webhook service that performs try-merges of pull requests on bot commands."
requires-python = ">=3.10"
keywords = ["github", "webhook", "merge", "bot", "ci", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Version Control :: Git",
]
dependencies = [
    "aiohttp>=3.9",
    "aiosqlite>=0.19",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "pytest-asyncio>=0.21",
]

[project.scripts]
mergebot = "mergebot.app:main"

[tool.hatch.build.targets.wheel]
packages = ["mergebot"]

[tool.pytest.ini_options]
addopts = "-ra"
