"""Sass/Scss asset pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from wasmforge import tools
from wasmforge.assets import (
    ATTR_HREF,
    ATTR_INLINE,
    AssetFile,
    BuildConfig,
    PipelineError,
    href_to_path,
    replace_with_html,
    seahash,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CssRef:
    """Compiled CSS: either content to inline or the name of a written file."""

    value: str
    inline: bool = False


@dataclass
class SassOutput:
    """The result of a sass/scss pipeline."""

    cfg: BuildConfig
    id: int
    css_ref: CssRef

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with a style block or a stylesheet link."""
        if self.css_ref.inline:
            html = f'<style type="text/css">{self.css_ref.value}</style>'
        else:
            html = f'<link rel="stylesheet" href="{self.cfg.public_url}{self.css_ref.value}"/>'
        replace_with_html(dom, trunk_id_selector(self.id), html)


async def _run_sass(sass: Path, args: list[str]) -> None:
    name = tools.Application.SASS.executable_name()
    try:
        proc = await asyncio.create_subprocess_exec(str(sass), *args)
    except FileNotFoundError as err:
        raise PipelineError(f"{name} not found") from err
    except OSError as err:
        raise PipelineError(f"error running {name}") from err
    code = await proc.wait()
    if code != 0:
        raise PipelineError(f"{name} call returned a bad status: {code}")


class Sass:
    """Compiles a sass/scss file to CSS."""

    TYPE_SASS = "sass"
    TYPE_SCSS = "scss"

    def __init__(
        self, cfg: BuildConfig, html_dir: str | os.PathLike, attrs: dict[str, str], id: int
    ) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="sass|scss" .../> element'
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile.resolve(Path(html_dir), href_to_path(href))
        self.use_inline = ATTR_INLINE in attrs

    async def run(self) -> SassOutput:
        """Compile the file and either keep the CSS for inlining or write it out."""
        sass = await tools.get(tools.Application.SASS, self.cfg.tools.sass)

        style = "compressed" if self.cfg.release else "expanded"
        file_name = f"{self.asset.file_stem}.css"
        file_path = self.cfg.staging_dist / file_name
        args = ["--no-source-map", "-s", style, str(self.asset.path), str(file_path)]

        log.info("compiling sass/scss %s", self.asset.path)
        await _run_sass(sass, args)

        try:
            css = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
            await asyncio.to_thread(file_path.unlink)
        except (OSError, UnicodeDecodeError) as err:
            raise PipelineError(f"error reading compiled css {str(file_path)!r}") from err

        if self.use_inline:
            css_ref = CssRef(css, inline=True)
        else:
            if self.cfg.filehash:
                file_name = f"{self.asset.file_stem}-{seahash(css.encode('utf-8')):x}.css"
            out_path = self.cfg.staging_dist / file_name
            try:
                await asyncio.to_thread(out_path.write_text, css, encoding="utf-8")
            except OSError as err:
                raise PipelineError("error writing SASS pipeline output") from err
            css_ref = CssRef(file_name)

        log.info("finished compiling sass/scss %s", self.asset.path)
        return SassOutput(cfg=self.cfg, id=self.id, css_ref=css_ref)