"""Build the asset pipeline named by a ``<link data-trunk .../>`` element."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Union

from wasmforge.assets import ATTR_REL, BuildConfig, PipelineError
from wasmforge.copy_dir import CopyDir
from wasmforge.copy_file import CopyFile
from wasmforge.css import Css
from wasmforge.icon import Icon
from wasmforge.inline import Inline
from wasmforge.rust_app import RustApp
from wasmforge.sass import Sass

TrunkLink = Union[Css, Sass, Icon, Inline, CopyFile, CopyDir, RustApp]


async def link_from_html(
    cfg: BuildConfig,
    html_dir: str | os.PathLike,
    ignore: Callable[[Path], None] | None,
    attrs: dict[str, str],
    id: int,
) -> TrunkLink:
    """Create the pipeline for a link element from its attributes."""
    rel = attrs.get(ATTR_REL)
    if rel is None:
        raise PipelineError(
            "all <link data-trunk .../> elements must have a `rel` attribute indicating "
            "the asset type"
        )
    html_dir = Path(html_dir)
    if rel in (Sass.TYPE_SASS, Sass.TYPE_SCSS):
        return Sass(cfg, html_dir, attrs, id)
    if rel == Icon.TYPE:
        return Icon(cfg, html_dir, attrs, id)
    if rel == Inline.TYPE:
        return Inline(html_dir, attrs, id)
    if rel == Css.TYPE:
        return Css(cfg, html_dir, attrs, id)
    if rel == CopyFile.TYPE:
        return CopyFile(cfg, html_dir, attrs, id)
    if rel == CopyDir.TYPE:
        return CopyDir(cfg, html_dir, attrs, id)
    if rel == RustApp.TYPE:
        return await RustApp.from_attrs(cfg, html_dir, ignore, attrs, id)
    raise PipelineError(
        f'unknown <link data-trunk .../> attr value `rel="{rel}"`; please ensure the value '
        "is lowercase and is a supported asset type"
    )