"""Shared pieces of the asset pipelines: build settings, asset files and DOM edits."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bs4 import BeautifulSoup

ATTR_INLINE = "data-inline"
ATTR_HREF = "href"
ATTR_TYPE = "type"
ATTR_REL = "rel"
SNIPPETS_DIR = "snippets"
TRUNK_ID = "data-trunk-id"

LinkAttrs = dict[str, str]

_MASK = (1 << 64) - 1
_DIFFUSE_FACTOR = 0x6EED0E9DA4D94A4F
_SEEDS = (
    0x16F11FE89B0D677C,
    0xB480A793D8E6C86C,
    0x6FE2E5AAF078EBC9,
    0x14F994A4C5259381,
)


class PipelineError(Exception):
    """Raised when an asset pipeline cannot be built or run."""


@dataclass(frozen=True)
class ToolVersions:
    """Versions of external tools requested by the user; None means any."""

    sass: str | None = None
    wasm_bindgen: str | None = None
    wasm_opt: str | None = None


@dataclass(frozen=True)
class Features:
    """Cargo feature selection: either all features or a custom set."""

    all_features: bool = False
    features: str | None = None
    no_default_features: bool = False

    def __post_init__(self) -> None:
        if self.all_features and (self.no_default_features or self.features is not None):
            raise PipelineError(
                "Cannot combine --all-features with --no-default-features and/or --features"
            )


@dataclass
class BuildConfig:
    """Runtime settings shared by every pipeline of a build."""

    staging_dist: Path
    target: Path = Path("index.html")
    public_url: str = "/"
    filehash: bool = True
    release: bool = False
    inject_autoloader: bool = False
    tools: ToolVersions = field(default_factory=ToolVersions)
    cargo_features: Features = field(default_factory=Features)
    pattern_script: str | None = None
    pattern_preload: str | None = None
    pattern_params: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.staging_dist = Path(self.staging_dist)
        self.target = Path(self.target)


class PipelineStage(Enum):
    """A stage of the build, used to decide when a hook runs."""

    PRE_BUILD = "pre_build"
    BUILD = "build"
    POST_BUILD = "post_build"


def _diffuse(value: int) -> int:
    value = (value * _DIFFUSE_FACTOR) & _MASK
    value ^= (value >> 32) >> (value >> 60)
    return (value * _DIFFUSE_FACTOR) & _MASK


def seahash(data: bytes) -> int:
    """Return the 64-bit SeaHash of ``data``."""
    lanes = list(_SEEDS)
    for index, offset in enumerate(range(0, len(data), 8)):
        word = int.from_bytes(data[offset:offset + 8], "little")
        lane = index % 4
        lanes[lane] = _diffuse(lanes[lane] ^ word)
    a, b, c, d = lanes
    a ^= b
    c ^= d
    a ^= c
    a ^= len(data) & _MASK
    return _diffuse(a)


def href_to_path(href: str) -> Path:
    """Turn a slash-separated ``href`` into a path, one segment per part."""
    return Path(*href.split("/"))


def trunk_id_selector(id: int) -> str:
    """CSS selector matching the link element given the pipeline ID ``id``."""
    return f'link[{TRUNK_ID}="{id}"]'


def _fragment(html: str) -> list:
    return list(BeautifulSoup(html, "html.parser").contents)


def replace_with_html(dom: BeautifulSoup, selector: str, html: str) -> None:
    """Replace every element matching ``selector`` with the parsed ``html``."""
    for element in dom.select(selector):
        for node in _fragment(html):
            element.insert_before(node)
        element.decompose()


def remove_elements(dom: BeautifulSoup, selector: str) -> None:
    """Remove every element matching ``selector``."""
    for element in dom.select(selector):
        element.decompose()


def append_html(dom: BeautifulSoup, selector: str, html: str) -> None:
    """Append the parsed ``html`` to every element matching ``selector``."""
    for element in dom.select(selector):
        for node in _fragment(html):
            element.append(node)


@dataclass(frozen=True)
class AssetFile:
    """A file on disk to be processed by a pipeline."""

    path: Path
    file_name: str
    file_stem: str
    ext: str | None

    @classmethod
    def resolve(cls, rel_dir: str | os.PathLike, path: str | os.PathLike) -> AssetFile:
        """Canonicalise ``path`` against ``rel_dir`` and check that it exists."""
        path = Path(path)
        if not path.is_absolute():
            path = Path(rel_dir) / path
        try:
            canonical = path.resolve(strict=True)
        except (OSError, RuntimeError) as err:
            raise PipelineError(f"error getting canonical path for {str(path)!r}") from err
        if not canonical.exists():
            raise PipelineError(
                f"target file does not appear to exist on disk {str(canonical)!r}"
            )
        if not canonical.name:
            raise PipelineError(f"asset has no file name {str(canonical)!r}")
        suffix = canonical.suffix
        return cls(
            path=canonical,
            file_name=canonical.name,
            file_stem=canonical.stem,
            ext=suffix[1:] if suffix else None,
        )

    def _copy_sync(self, to_dir: Path, with_hash: bool) -> str:
        try:
            data = self.path.read_bytes()
        except OSError as err:
            raise PipelineError(f"error reading file for copying {str(self.path)!r}") from err
        if with_hash:
            file_name = f"{self.file_stem}-{seahash(data):x}.{self.ext or ''}"
        else:
            file_name = self.file_name
        file_path = to_dir / file_name
        try:
            file_path.write_bytes(data)
        except OSError as err:
            raise PipelineError(
                f"error copying file {str(self.path)!r} to {str(file_path)!r}"
            ) from err
        return file_name

    async def copy(self, to_dir: str | os.PathLike, with_hash: bool) -> str:
        """Copy into ``to_dir``, hashing the name if asked; return the new base name."""
        return await asyncio.to_thread(self._copy_sync, Path(to_dir), with_hash)

    def _read_sync(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as err:
            raise PipelineError(f"error reading file {str(self.path)!r} to string") from err

    async def read_to_string(self) -> str:
        """Read the file's content as text."""
        return await asyncio.to_thread(self._read_sync)