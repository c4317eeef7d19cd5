"""Inline asset pipeline: paste a file's content into the HTML."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from bs4 import BeautifulSoup

from wasmforge.assets import (
    ATTR_HREF,
    ATTR_TYPE,
    AssetFile,
    PipelineError,
    href_to_path,
    replace_with_html,
    trunk_id_selector,
)

log = logging.getLogger(__name__)


class ContentType(Enum):
    """How inlined content is inserted into the HTML."""

    HTML = "html"
    CSS = "css"
    JS = "js"

    @classmethod
    def parse(cls, value: str) -> ContentType:
        """Parse a lowercase content type name."""
        try:
            return cls(value)
        except ValueError:
            raise PipelineError(
                f'unknown `type="{value}"` value for <link data-trunk rel="inline" .../> attr; '
                "please ensure the value is lowercase and is a supported content type"
            ) from None

    @classmethod
    def from_attr_or_ext(cls, attr: str | None, ext: str | None) -> ContentType:
        """Use the ``type`` attribute if given, otherwise the file extension."""
        if attr is not None:
            return cls.parse(attr)
        if ext is not None:
            return cls.parse(ext)
        raise PipelineError(
            'unknown type value for <link data-trunk rel="inline" .../> attr; '
            "please ensure the value is lowercase and is a supported content type"
        )


@dataclass
class InlineOutput:
    """The result of an inline pipeline."""

    id: int
    content: str
    content_type: ContentType

    def finalize(self, dom: BeautifulSoup) -> None:
        """Replace the source link with the (wrapped) content."""
        if self.content_type is ContentType.CSS:
            html = f'<style type="text/css">{self.content}</style>'
        elif self.content_type is ContentType.JS:
            html = f"<script>{self.content}</script>"
        else:
            html = self.content
        replace_with_html(dom, trunk_id_selector(self.id), html)


class Inline:
    """Reads a file whose content goes straight into the HTML."""

    TYPE = "inline"

    def __init__(self, html_dir: str | os.PathLike, attrs: dict[str, str], id: int) -> None:
        href = attrs.get(ATTR_HREF)
        if href is None:
            raise PipelineError(
                'required attr `href` missing for <link data-trunk rel="inline" .../> element'
            )
        self.id = id
        self.asset = AssetFile.resolve(Path(html_dir), href_to_path(href))
        self.content_type = ContentType.from_attr_or_ext(attrs.get(ATTR_TYPE), self.asset.ext)

    async def run(self) -> InlineOutput:
        """Read the file's content."""
        log.info("reading file content %s", self.asset.path)
        content = await self.asset.read_to_string()
        log.info("finished reading file content %s", self.asset.path)
        return InlineOutput(id=self.id, content=content, content_type=self.content_type)