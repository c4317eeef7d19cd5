"""Rust application pipeline: cargo build, wasm-bindgen and wasm-opt."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from wasmforge import tools
from wasmforge.assets import (
    ATTR_HREF,
    SNIPPETS_DIR,
    BuildConfig,
    Features,
    PipelineError,
    href_to_path,
    seahash,
)
from wasmforge.rust_output import (
    CargoMetadata,
    RustAppOutput,
    RustAppType,
    WasmOptLevel,
    find_wasm_bindgen_version,
)

log = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"


async def run_command(name: str, path: str | os.PathLike, args: Sequence[str]) -> None:
    """Run the program at ``path`` with ``args``, raising if it fails or is missing."""
    try:
        proc = await asyncio.create_subprocess_exec(str(path), *args)
    except FileNotFoundError as err:
        raise PipelineError(f"{name} not found") from err
    except OSError as err:
        raise PipelineError(f"error spawning {name} call") from err
    code = await proc.wait()
    if code != 0:
        raise PipelineError(f"{name} call returned a bad status: {code}")


def _find_artifact(stdout: bytes, package_id: str) -> dict[str, Any]:
    artifact: dict[str, Any] | None = None
    failed = False
    for line in stdout.splitlines():
        try:
            message = json.loads(line)
        except ValueError:
            continue
        if not isinstance(message, dict):
            continue
        reason = message.get("reason")
        if reason == "compiler-artifact" and message.get("package_id") == package_id:
            artifact, failed = message, False
        elif reason == "build-finished" and not message.get("success", False):
            failed = True
    if failed:
        raise PipelineError("error while fetching cargo artifact info")
    if artifact is None:
        raise PipelineError("cargo artifacts not found for target crate")
    return artifact


async def _copy(source: Path, dest: Path, context: str) -> None:
    try:
        await asyncio.to_thread(shutil.copyfile, source, dest)
    except OSError as err:
        raise PipelineError(context) from err


@dataclass
class RustApp:
    """Builds a Rust crate to WebAssembly and prepares its JS loader."""

    TYPE: ClassVar[str] = "rust"

    cfg: BuildConfig
    manifest: CargoMetadata
    name: str
    id: int | None = None
    cargo_features: Features = field(default_factory=Features)
    app_type: RustAppType = RustAppType.MAIN
    ignore: Callable[[Path], None] | None = None
    bin: str | None = None
    keep_debug: bool = False
    typescript: bool = False
    no_demangle: bool = False
    reference_types: bool = False
    weak_refs: bool = False
    wasm_opt: WasmOptLevel = WasmOptLevel.OFF

    @classmethod
    async def from_attrs(
        cls,
        cfg: BuildConfig,
        html_dir: str | os.PathLike,
        ignore: Callable[[Path], None] | None,
        attrs: dict[str, str],
        id: int,
    ) -> RustApp:
        """Build the pipeline from the attributes of a ``rel="rust"`` link."""
        html_dir = Path(html_dir)
        href = attrs.get(ATTR_HREF)
        if href is None:
            manifest_path = html_dir / MANIFEST_NAME
        else:
            manifest_path = href_to_path(href)
            if not manifest_path.is_absolute():
                manifest_path = html_dir / manifest_path
            if manifest_path.name != MANIFEST_NAME:
                manifest_path = manifest_path / MANIFEST_NAME

        bin_name = attrs.get("data-bin")
        app_type = RustAppType.parse(attrs.get("data-type", "main"))
        opt_attr = attrs.get("data-wasm-opt")
        if opt_attr is not None:
            wasm_opt = WasmOptLevel.parse(opt_attr)
        else:
            wasm_opt = WasmOptLevel.DEFAULT if cfg.release else WasmOptLevel.OFF

        all_features = "data-cargo-all-features" in attrs
        cargo_features = Features(
            all_features=all_features,
            features=attrs.get("data-cargo-features"),
            no_default_features="data-cargo-no-default-features" in attrs,
        )

        manifest = await CargoMetadata.load(manifest_path)
        return cls(
            cfg=cfg,
            manifest=manifest,
            name=bin_name if bin_name is not None else manifest.package_name,
            id=id,
            cargo_features=cargo_features,
            app_type=app_type,
            ignore=ignore,
            bin=bin_name,
            keep_debug="data-keep-debug" in attrs,
            typescript="data-typescript" in attrs,
            no_demangle="data-no-demangle" in attrs,
            reference_types="data-reference-types" in attrs,
            weak_refs="data-weak-refs" in attrs,
            wasm_opt=wasm_opt,
        )

    @classmethod
    async def default(
        cls,
        cfg: BuildConfig,
        html_dir: str | os.PathLike,
        ignore: Callable[[Path], None] | None,
    ) -> RustApp:
        """Build the pipeline for the crate next to the HTML file when no link names one."""
        manifest = await CargoMetadata.load(Path(html_dir) / MANIFEST_NAME)
        return cls(
            cfg=cfg,
            manifest=manifest,
            name=manifest.package_name,
            cargo_features=cfg.cargo_features,
            ignore=ignore,
        )

    async def run(self) -> RustAppOutput:
        """Build the crate, generate bindings and optimise the result."""
        wasm, hashed_name = await self._cargo_build()
        output = await self._wasm_bindgen_build(wasm, hashed_name)
        await self._wasm_opt_build(output.wasm_output)
        return output

    def _cargo_args(self) -> list[str]:
        args = [
            "build",
            "--target=wasm32-unknown-unknown",
            "--manifest-path",
            self.manifest.manifest_path,
        ]
        if self.cfg.release:
            args.append("--release")
        if self.bin is not None:
            args += ["--bin", self.bin]
        features = self.cargo_features
        if features.all_features:
            args.append("--all-features")
        else:
            if features.no_default_features:
                args.append("--no-default-features")
            if features.features is not None:
                args += ["--features", features.features]
        return args

    async def _cargo_build(self) -> tuple[Path, str]:
        log.info("building %s", self.manifest.package_name)
        args = self._cargo_args()
        build_error: PipelineError | None = None
        try:
            await run_command("cargo", "cargo", args)
        except PipelineError as err:
            build_error = err

        # The target dir must be ignored even when the build failed.
        if self.ignore is not None:
            self.ignore(self.manifest.target_directory)
        if build_error is not None:
            raise PipelineError("error during cargo build execution") from build_error

        log.info("fetching cargo artifacts")
        args.append("--message-format=json")
        try:
            proc = await asyncio.create_subprocess_exec(
                "cargo",
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise PipelineError("error spawning cargo build artifacts task") from err
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            print(stderr.decode("utf-8", errors="replace"), file=sys.stderr)
            raise PipelineError("bad status returned from cargo artifacts request")

        artifact = _find_artifact(stdout, self.manifest.package_id)
        wasm = next(
            (Path(name) for name in artifact.get("filenames", []) if Path(name).suffix == ".wasm"),
            None,
        )
        if wasm is None:
            raise PipelineError("could not find WASM output after cargo build")

        log.info("processing WASM for %s", self.name)
        try:
            wasm_bytes = await asyncio.to_thread(wasm.read_bytes)
        except OSError as err:
            raise PipelineError("error reading wasm file for hash generation") from err
        if self.cfg.filehash:
            hashed_name = f"{self.name}-{seahash(wasm_bytes):x}"
        else:
            hashed_name = self.name
        return wasm, hashed_name

    def _tool_out_dir(self, app: tools.Application) -> Path:
        mode = "release" if self.cfg.release else "debug"
        return self.manifest.target_directory / app.executable_name() / mode

    async def _wasm_bindgen_build(self, wasm: Path, hashed_name: str) -> RustAppOutput:
        # Workers are loaded by name at runtime, so they never get a hashed name.
        if self.app_type is RustAppType.WORKER:
            hashed_name = self.name

        version = find_wasm_bindgen_version(self.cfg.tools, self.manifest)
        wasm_bindgen = await tools.get(tools.Application.WASM_BINDGEN, version)
        bindgen_name = tools.Application.WASM_BINDGEN.executable_name()

        bindgen_out = self._tool_out_dir(tools.Application.WASM_BINDGEN)
        try:
            await asyncio.to_thread(bindgen_out.mkdir, parents=True, exist_ok=True)
        except OSError as err:
            raise PipelineError("error creating wasm-bindgen output dir") from err

        target = "--target=web" if self.app_type is RustAppType.MAIN else "--target=no-modules"
        args = [target, f"--out-dir={bindgen_out}", f"--out-name={hashed_name}", str(wasm)]
        flags = (
            (self.keep_debug, "--keep-debug"),
            (self.no_demangle, "--no-demangle"),
            (self.reference_types, "--reference-types"),
            (self.weak_refs, "--weak-refs"),
            (not self.typescript, "--no-typescript"),
        )
        args += [flag for enabled, flag in flags if enabled]

        log.info("calling wasm-bindgen for %s", self.name)
        await run_command(bindgen_name, wasm_bindgen, args)

        log.info("copying generated wasm-bindgen artifacts")
        staging = self.cfg.staging_dist
        js_name = f"{hashed_name}.js"
        wasm_name = f"{hashed_name}_bg.wasm"
        ts_name = f"{hashed_name}.d.ts"
        await _copy(bindgen_out / js_name, staging / js_name,
                    "error copying JS loader file to stage dir")
        await _copy(bindgen_out / wasm_name, staging / wasm_name,
                    "error copying wasm file to stage dir")
        if self.typescript:
            await _copy(bindgen_out / ts_name, staging / ts_name,
                        "error copying TS files to stage dir")

        snippets = bindgen_out / SNIPPETS_DIR
        if snippets.exists():
            try:
                await asyncio.to_thread(
                    shutil.copytree, snippets, staging / SNIPPETS_DIR, dirs_exist_ok=True
                )
            except (OSError, shutil.Error) as err:
                raise PipelineError("error copying snippets dir to stage dir") from err

        return RustAppOutput(
            cfg=self.cfg,
            id=self.id,
            js_output=js_name,
            wasm_output=wasm_name,
            ts_output=ts_name if self.typescript else None,
            app_type=self.app_type,
        )

    async def _wasm_opt_build(self, hashed_name: str) -> None:
        if not self.cfg.release or self.wasm_opt is WasmOptLevel.OFF:
            return

        wasm_opt = await tools.get(tools.Application.WASM_OPT, self.cfg.tools.wasm_opt)
        opt_name = tools.Application.WASM_OPT.executable_name()

        out_dir = self._tool_out_dir(tools.Application.WASM_OPT)
        try:
            await asyncio.to_thread(out_dir.mkdir, parents=True, exist_ok=True)
        except OSError as err:
            raise PipelineError("error creating wasm-opt output dir") from err

        output = out_dir / hashed_name
        target_wasm = self.cfg.staging_dist / hashed_name
        args = [f"--output={output}", f"-O{self.wasm_opt.value}", str(target_wasm)]

        log.info("calling wasm-opt")
        await run_command(opt_name, wasm_opt, args)

        log.info("copying generated wasm-opt artifacts")
        await _copy(output, target_wasm, "error copying wasm file to dist dir")