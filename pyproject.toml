[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wasmforge"
version = "0.1.0"
description = "Asset pipelines, external tool management and proxy handlers for building WebAssembly web applications from an HTML entry point."
requires-python = ">=3.11"
keywords = ["wasm", "webassembly", "bundler", "build", "cargo", "wasm-bindgen", "wasm-opt", "sass"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "beautifulsoup4",
    "aiohttp",
    "platformdirs",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["wasmforge"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
