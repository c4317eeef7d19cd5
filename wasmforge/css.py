"""CSS asset pipeline."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from wasmforge.assets import (
    ATTR_HREF,
    AssetFile,
    BuildConfig,
    PipelineError,
    href_to_path,
    replace_with_html,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


@dataclass
class CssOutput:
    """The result of a CSS pipeline."""

    cfg: BuildConfig
    id: int
    file: str

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with a stylesheet link."""
        replace_with_html(
            dom,
            trunk_id_selector(self.id),
            f'<link rel="stylesheet" href="{self.cfg.public_url}{self.file}"/>',
        )


class Css:
    """Copies and optionally hashes a CSS file."""

    TYPE = "css"

    def __init__(
        self, cfg: BuildConfig, html_dir: str | os.PathLike, attrs: dict[str, str], id: int
    ) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="css" .../> element'
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile.resolve(Path(html_dir), href_to_path(href))

    async def run(self) -> CssOutput:
        """Copy the file into the staging directory."""
        log.info("copying & hashing css %s", self.asset.path)
        file = await self.asset.copy(self.cfg.staging_dist, self.cfg.filehash)
        log.info("finished copying & hashing css %s", self.asset.path)
        return CssOutput(cfg=self.cfg, id=self.id, file=file)