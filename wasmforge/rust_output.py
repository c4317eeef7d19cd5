"""Rust application pipeline pieces: option types, cargo metadata and the HTML finaliser."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup

from wasmforge.assets import (
    BuildConfig,
    PipelineError,
    ToolVersions,
    append_html,
    remove_elements,
    replace_with_html,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


class RustAppType(Enum):
    """How the compiled Rust application is used."""

    MAIN = "main"
    WORKER = "worker"

    @classmethod
    def parse(cls, value: str) -> RustAppType:
        """Parse the value of a ``data-type`` attribute."""
        try:
            return cls(value)
        except ValueError:
            raise PipelineError(
                f'unknown `data-type="{value}"` value for <link data-trunk rel="rust" .../> attr; '
                "please ensure the value is lowercase and is a supported type"
            ) from None


class WasmOptLevel(Enum):
    """Optimisation levels understood by wasm-opt; the value is the flag suffix."""

    DEFAULT = ""
    OFF = "0"
    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    S = "s"
    Z = "z"

    @classmethod
    def parse(cls, value: str) -> WasmOptLevel:
        """Parse the value of a ``data-wasm-opt`` attribute."""
        normalised = value.lower() if value in ("S", "Z") else value
        try:
            return cls(normalised)
        except ValueError:
            raise PipelineError(f"unknown wasm-opt level `{value}`") from None


@dataclass(frozen=True)
class CargoMetadata:
    """The parts of ``cargo metadata`` output that the build needs."""

    manifest_path: str
    package_name: str
    package_id: str
    target_directory: Path
    packages: tuple[tuple[str, str], ...] = ()

    @classmethod
    def _from_metadata(cls, data: dict[str, Any], manifest_path: Path) -> CargoMetadata:
        wanted = manifest_path.resolve()
        try:
            root = next(
                pkg
                for pkg in data["packages"]
                if Path(pkg["manifest_path"]).resolve() == wanted
            )
            return cls(
                manifest_path=str(root["manifest_path"]),
                package_name=root["name"],
                package_id=root["id"],
                target_directory=Path(data["target_directory"]),
                packages=tuple((pkg["name"], pkg["version"]) for pkg in data["packages"]),
            )
        except StopIteration:
            raise PipelineError(
                f"could not find the package for manifest {str(manifest_path)!r}"
            ) from None
        except (KeyError, TypeError) as err:
            raise PipelineError("malformed cargo metadata output") from err

    @classmethod
    async def load(cls, manifest_path: str | os.PathLike) -> CargoMetadata:
        """Run ``cargo metadata`` for the given manifest and parse its output."""
        manifest_path = Path(manifest_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                "cargo",
                "metadata",
                "--format-version",
                "1",
                "--manifest-path",
                str(manifest_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise PipelineError("error running cargo metadata") from err
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise PipelineError(f"error getting cargo metadata: {message}")
        try:
            data = json.loads(stdout)
        except ValueError as err:
            raise PipelineError("error parsing cargo metadata output") from err
        return cls._from_metadata(data, manifest_path)


def pattern_evaluate(template: str, params: dict[str, str]) -> str:
    """Substitute ``{key}`` placeholders; values starting with ``@`` name a file to insert."""
    result = template
    for key, value in params.items():
        pattern = f"{{{key}}}"
        if value.startswith("@"):
            try:
                contents = Path(value[1:]).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            result = result.replace(pattern, contents)
        else:
            result = result.replace(pattern, value)
    return result


def _version_from_lock(manifest: CargoMetadata) -> str | None:
    lock_path = Path(manifest.manifest_path).parent / "Cargo.lock"
    try:
        with lock_path.open("rb") as handle:
            lockfile = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    packages = lockfile.get("package", [])
    if not isinstance(packages, list):
        return None
    return next(
        (
            str(pkg.get("version"))
            for pkg in packages
            if isinstance(pkg, dict) and pkg.get("name") == "wasm-bindgen" and "version" in pkg
        ),
        None,
    )


def _version_from_manifest(manifest: CargoMetadata) -> str | None:
    return next(
        (version for name, version in manifest.packages if name == "wasm-bindgen"), None
    )


def find_wasm_bindgen_version(tools: ToolVersions, manifest: CargoMetadata) -> str | None:
    """Pick the wasm-bindgen version: user setting, then Cargo.lock, then cargo metadata."""
    if tools.wasm_bindgen is not None:
        return tools.wasm_bindgen
    return _version_from_lock(manifest) or _version_from_manifest(manifest)


@dataclass
class RustAppOutput:
    """The result of a Rust application pipeline."""

    cfg: BuildConfig
    id: int | None
    js_output: str
    wasm_output: str
    ts_output: str | None = None
    app_type: RustAppType = RustAppType.MAIN

    def finalize(self, dom: BeautifulSoup) -> None:
        """Insert the preload links and the loader script into the document."""
        if self.app_type is RustAppType.WORKER:
            # Workers are loaded by the application at runtime; only drop the link.
            if self.id is not None:
                remove_elements(dom, trunk_id_selector(self.id))
            return

        base, js, wasm = self.cfg.public_url, self.js_output, self.wasm_output
        params = dict(self.cfg.pattern_params or {})
        params.update(base=base, js=js, wasm=wasm)

        if self.cfg.pattern_preload is not None:
            preload = pattern_evaluate(self.cfg.pattern_preload, params)
        else:
            preload = (
                f'\n<link rel="preload" href="{base}{wasm}" as="fetch" '
                f'type="application/wasm" crossorigin>\n'
                f'<link rel="modulepreload" href="{base}{js}">'
            )
        append_html(dom, "html head", preload)

        if self.cfg.pattern_script is not None:
            script = pattern_evaluate(self.cfg.pattern_script, params)
        else:
            script = (
                f"<script type=\"module\">import init from '{base}{js}';"
                f"init('{base}{wasm}');</script>"
            )
        if self.id is not None:
            replace_with_html(dom, trunk_id_selector(self.id), script)
        else:
            append_html(dom, "html body", script)