"""Locate external tools and download them when they are missing."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import sys
import tarfile
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO

import aiohttp
import platformdirs

log = logging.getLogger(__name__)


class ToolError(Exception):
    """Raised when a tool cannot be located, downloaded or installed."""


def _current_os() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("linux"):
        return "linux"
    raise ToolError("unsupported OS")


def _current_arch() -> str:
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x86_64"
    if machine in ("aarch64", "arm64"):
        return "aarch64"
    raise ToolError("unsupported target architecture")


class Application(Enum):
    """An external application used by the build pipeline."""

    SASS = "sass"
    WASM_BINDGEN = "wasm-bindgen"
    WASM_OPT = "wasm-opt"

    def executable_name(self) -> str:
        """Base name of the executable without extension."""
        return self.value

    def archive_path(self, os_name: str | None = None) -> str:
        """Path of the executable within the downloaded archive."""
        os_name = os_name or _current_os()
        if os_name == "windows":
            return {
                Application.SASS: "sass.bat",
                Application.WASM_BINDGEN: "wasm-bindgen.exe",
                Application.WASM_OPT: "bin/wasm-opt.exe",
            }[self]
        return {
            Application.SASS: "sass",
            Application.WASM_BINDGEN: "wasm-bindgen",
            Application.WASM_OPT: "bin/wasm-opt",
        }[self]

    def extra_paths(self, os_name: str | None = None) -> tuple[str, ...]:
        """Additional archive files required to run the main binary."""
        os_name = os_name or _current_os()
        if self is Application.SASS:
            if os_name == "windows":
                return ("src/dart.exe", "src/sass.snapshot")
            if os_name == "macos":
                return ("src/dart", "src/sass.snapshot")
            return ()
        if self is Application.WASM_OPT and os_name == "macos":
            return ("lib/libbinaryen.dylib",)
        return ()

    def default_version(self) -> str:
        """Version used when the user sets none."""
        return {
            Application.SASS: "1.50.0",
            Application.WASM_BINDGEN: "0.2.80",
            Application.WASM_OPT: "version_105",
        }[self]

    def url(self, version: str, os_name: str | None = None, arch: str | None = None) -> str:
        """Direct download URL of a release of this application."""
        os_name = os_name or _current_os()
        arch = arch or _current_arch()
        if os_name not in ("windows", "macos", "linux"):
            raise ToolError("unsupported OS")
        if arch not in ("x86_64", "aarch64"):
            raise ToolError("unsupported target architecture")

        if self is Application.SASS:
            base = f"https://github.com/sass/dart-sass/releases/download/{version}/dart-sass-{version}"
            if os_name == "windows" and arch == "x86_64":
                return f"{base}-windows-x64.zip"
            if os_name in ("macos", "linux"):
                suffix = "x64" if arch == "x86_64" else "arm64"
                return f"{base}-{os_name}-{suffix}.tar.gz"
            raise ToolError(f"Unable to download Sass for {os_name} {arch}")

        if self is Application.WASM_BINDGEN:
            triple = {
                "windows": "pc-windows-msvc",
                "macos": "apple-darwin",
                "linux": "unknown-linux-musl",
            }[os_name]
            return (
                "https://github.com/rustwasm/wasm-bindgen/releases/download/"
                f"{version}/wasm-bindgen-{version}-x86_64-{triple}.tar.gz"
            )

        base = f"https://github.com/WebAssembly/binaryen/releases/download/{version}/binaryen-{version}"
        if os_name == "macos" and arch == "aarch64":
            return f"{base}-arm64-macos.tar.gz"
        return f"{base}-{arch}-{os_name}.tar.gz"

    def version_test(self) -> str:
        """The command-line flag used to query the application's version."""
        return "--version"

    def format_version_output(self, text: str) -> str:
        """Extract the version from the output of the version check."""
        text = text.strip()
        error = ToolError(f"missing or malformed version output: {text}")
        if self is Application.SASS:
            lines = text.splitlines()
            if not lines:
                raise error
            return lines[0]
        words = text.split(" ")
        if self is Application.WASM_BINDGEN:
            if len(words) < 2:
                raise error
            return words[1]
        if len(words) < 3:
            raise error
        return f"version_{words[2]}"


def _strip_first(parts: tuple[str, ...]) -> PurePosixPath:
    return PurePosixPath(*parts[1:]) if len(parts) > 1 else PurePosixPath()


def _enclosed_name(name: str) -> PurePosixPath | None:
    if "\0" in name:
        return None
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute():
        return None
    depth = 0
    for part in path.parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return None
        else:
            depth += 1
    return path


def _write_out(source: BinaryIO, file: str, target: Path, mode: int | None) -> None:
    out = target / file
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise ToolError("failed creating output directory") from err
    try:
        with out.open("wb") as handle:
            shutil.copyfileobj(source, handle)
    except OSError as err:
        raise ToolError("failed copying over final output file from archive") from err
    if mode and os.name == "posix":
        try:
            out.chmod(mode & 0o7777)
        except OSError as err:
            raise ToolError("failed setting file permissions") from err


class Archive:
    """A downloaded release archive, either gzipped tar or zip.

    Entry names have their first path component dropped, as that is
    usually the folder the archive was created from.
    """

    def __init__(self, path: str | os.PathLike, is_zip: bool = False) -> None:
        self.path = Path(path)
        self.is_zip = is_zip
        if is_zip and not zipfile.is_zipfile(self.path):
            raise ToolError(f"not a valid zip archive: {self.path}")

    def extract_file(self, file: str, target: str | os.PathLike) -> None:
        """Extract the entry named ``file`` into the ``target`` directory."""
        target = Path(target)
        wanted = PurePosixPath(file)
        if self.is_zip:
            self._extract_zip(file, wanted, target)
        else:
            self._extract_tar(file, wanted, target)

    def _extract_tar(self, file: str, wanted: PurePosixPath, target: Path) -> None:
        try:
            with tarfile.open(self.path, "r:gz") as archive:
                for member in archive:
                    if _strip_first(PurePosixPath(member.name).parts) != wanted:
                        continue
                    source = archive.extractfile(member)
                    if source is None:
                        raise ToolError("file not found in archive")
                    with source:
                        _write_out(source, file, target, member.mode)
                    return
        except (tarfile.TarError, OSError, EOFError) as err:
            raise ToolError("failed getting archive entries") from err
        raise ToolError("file not found in archive")

    def _extract_zip(self, file: str, wanted: PurePosixPath, target: Path) -> None:
        try:
            with zipfile.ZipFile(self.path) as archive:
                for info in archive.infolist():
                    name = _enclosed_name(info.filename)
                    if name is None:
                        raise ToolError("invalid entry path")
                    if _strip_first(name.parts) != wanted:
                        continue
                    mode = info.external_attr >> 16 if info.create_system == 3 else None
                    with archive.open(info) as source:
                        _write_out(source, file, target, mode)
                    return
        except (zipfile.BadZipFile, OSError) as err:
            raise ToolError("error while getting archive entry") from err
        raise ToolError("file not found in archive")


@dataclass
class _CacheEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    done: bool = False


class AppCache:
    """Tracks tools installed during this run so none is installed twice."""

    def __init__(self) -> None:
        self._entries: dict[tuple[Application, str], _CacheEntry] = {}

    async def install_once(self, app: Application, version: str, app_dir: str | os.PathLike) -> None:
        """Download and install ``app`` into ``app_dir`` unless already done."""
        entry = self._entries.setdefault((app, version), _CacheEntry())
        async with entry.lock:
            if entry.done:
                return
            try:
                archive_path = await download(app, version)
            except ToolError as err:
                raise ToolError("failed downloading release archive") from err
            await install(app, archive_path, Path(app_dir))
            try:
                archive_path.unlink()
            except OSError as err:
                raise ToolError("failed deleting temporary archive") from err
            entry.done = True


_GLOBAL_APP_CACHE = AppCache()


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


async def get(app: Application, version: str | None = None) -> Path:
    """Locate ``app``, downloading it into the cache if needed."""
    found = await find_system(app, version)
    if found is not None:
        path, system_version = found
        log.info("using system installed binary %s %s", app.executable_name(), system_version)
        return path

    version = version or app.default_version()
    app_dir = cache_dir() / f"{app.executable_name()}-{version}"
    bin_path = app_dir / app.archive_path()
    if not _is_executable(bin_path):
        await _GLOBAL_APP_CACHE.install_once(app, version, app_dir)
    return bin_path


async def find_system(app: Application, version: str | None = None) -> tuple[Path, str] | None:
    """Find a system-installed ``app`` of the requested version, if any."""
    try:
        found = shutil.which(app.executable_name())
        if found is None:
            raise ToolError(f"{app.executable_name()} not found on PATH")
        proc = await asyncio.create_subprocess_exec(
            found,
            app.version_test(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            raise ToolError(f"running command `{found} {app.version_test()}` failed")
        system_version = app.format_version_output(stdout.decode("utf-8", errors="replace"))
    except (ToolError, OSError) as err:
        log.debug("system version not found for %s: %s", app.executable_name(), err)
        return None

    if version is not None and version != system_version:
        return None
    return Path(found), system_version


async def download(app: Application, version: str) -> Path:
    """Download the release archive of ``app`` into the cache directory."""
    log.info("downloading %s %s", app.executable_name(), version)
    temp_out = cache_dir() / f"{app.executable_name()}-{version}.tmp"
    url = app.url(version)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise ToolError(f"error downloading archive file: {resp.status}\n{url}")
                with temp_out.open("wb") as handle:
                    async for chunk in resp.content.iter_chunked(64 * 1024):
                        handle.write(chunk)
    except aiohttp.ClientError as err:
        raise ToolError("error sending HTTP request") from err
    except OSError as err:
        raise ToolError("failed creating temporary output file") from err
    return temp_out


def _install_sync(app: Application, archive_path: Path, target: Path) -> None:
    os_name = _current_os()
    is_zip = app is Application.SASS and os_name == "windows"
    archive = Archive(archive_path, is_zip)
    archive.extract_file(app.archive_path(os_name), target)
    for extra in app.extra_paths(os_name):
        archive.extract_file(extra, target)


async def install(app: Application, archive_path: str | os.PathLike, target: str | os.PathLike) -> None:
    """Extract ``app`` and its support files from an archive into ``target``."""
    log.info("installing %s", app.executable_name())
    await asyncio.to_thread(_install_sync, app, Path(archive_path), Path(target))


def cache_dir() -> Path:
    """Return the tool cache directory, creating it if needed."""
    path = platformdirs.user_cache_path("trunk", "trunkrs")
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise ToolError("failed creating cache directory") from err
    return path