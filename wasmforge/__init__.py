"""Asset pipelines, external tool management and proxy handlers for WebAssembly web apps."""

__version__ = "0.1.0"