"""Copy-file asset pipeline."""

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
    remove_elements,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


@dataclass
class CopyFileOutput:
    """The result of a copy-file pipeline."""

    id: int

    def finalize(self, dom: BeautifulSoup) -> None:
        """Remove the source link element."""
        remove_elements(dom, trunk_id_selector(self.id))


class CopyFile:
    """Copies a file into the staging directory under its own name."""

    TYPE = "copy-file"

    def __init__(
        self, cfg: BuildConfig, html_dir: str | os.PathLike, attrs: dict[str, str], id: int
    ) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="copyfile" .../> element'
            )
        self.id = id
        self.cfg = cfg
        self.asset = AssetFile.resolve(Path(html_dir), href_to_path(href))

    async def run(self) -> CopyFileOutput:
        """Copy the file into the staging directory."""
        log.info("copying file %s", self.asset.path)
        await self.asset.copy(self.cfg.staging_dist, False)
        log.info("finished copying file %s", self.asset.path)
        return CopyFileOutput(id=self.id)