"""Copy-dir asset pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from bs4 import BeautifulSoup

from wasmforge.assets import (
    ATTR_HREF,
    BuildConfig,
    PipelineError,
    href_to_path,
    remove_elements,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


@dataclass
class CopyDirOutput:
    """The result of a copy-dir pipeline."""

    id: int

    def finalize(self, dom: BeautifulSoup) -> None:
        """Remove the source link element."""
        remove_elements(dom, trunk_id_selector(self.id))


class CopyDir:
    """Recursively copies a directory into the staging directory."""

    TYPE = "copy-dir"

    def __init__(
        self, cfg: BuildConfig, html_dir: str | os.PathLike, attrs: dict[str, str], id: int
    ) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="copydir" .../> element'
            )
        path = href_to_path(href)
        if not path.is_absolute():
            path = Path(html_dir) / path
        self.id = id
        self.cfg = cfg
        self.path = path

    def _copy_sync(self) -> None:
        try:
            canonical = self.path.resolve(strict=True)
        except (OSError, RuntimeError) as err:
            raise PipelineError(
                f"error taking canonical path of directory {str(self.path)!r}"
            ) from err
        if not canonical.name:
            raise PipelineError(f"could not get directory name of dir {str(canonical)!r}")
        dir_out = self.cfg.staging_dist / canonical.name
        try:
            shutil.copytree(canonical, dir_out, dirs_exist_ok=True)
        except (OSError, shutil.Error) as err:
            raise PipelineError(
                f"error copying directory {str(canonical)!r} to {str(dir_out)!r}"
            ) from err

    async def run(self) -> CopyDirOutput:
        """Copy the directory tree into the staging directory."""
        log.info("copying directory %s", self.path)
        await asyncio.to_thread(self._copy_sync)
        log.info("finished copying directory %s", self.path)
        return CopyDirOutput(id=self.id)