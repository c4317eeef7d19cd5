"""Source HTML pipeline: find asset links, run their pipelines and write index.html."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from bs4 import BeautifulSoup

from wasmforge.assets import TRUNK_ID, BuildConfig, PipelineError, append_html
from wasmforge.links import TrunkLink, link_from_html
from wasmforge.rust_app import RustApp

log = logging.getLogger(__name__)

PUBLIC_URL_MARKER_ATTR = "data-trunk-public-url"
LINK_SELECTOR = "link[data-trunk]"
RUST_APP_SELECTOR = (
    'link[data-trunk][rel="rust"][data-type="main"], '
    'link[data-trunk][rel="rust"]:not([data-type])'
)
RELOAD_SCRIPT = """(function () {
    var protocol = window.location.protocol === "https:" ? "wss" : "ws";
    var socket = new WebSocket(protocol + "://" + window.location.host + "/_trunk/ws");
    socket.onmessage = function (event) {
        var msg = JSON.parse(event.data);
        if (msg.reload) {
            window.location.reload();
        }
    };
})();"""


class HtmlPipeline:
    """Processes the source HTML and spawns a pipeline for each asset it links."""

    def __init__(self, cfg: BuildConfig, ignore: Callable[[Path], None] | None = None) -> None:
        try:
            self.target_html_path = Path(cfg.target).resolve(strict=True)
        except (OSError, RuntimeError) as err:
            raise PipelineError("failed to get canonical path of target HTML file") from err
        self.target_html_dir = self.target_html_path.parent
        self.cfg = cfg
        self.ignore = ignore

    async def run(self) -> None:
        """Build every asset and write the finalised ``index.html`` to the staging dir."""
        log.info("spawning asset pipelines")
        try:
            raw_html = await asyncio.to_thread(
                self.target_html_path.read_text, encoding="utf-8"
            )
        except (OSError, UnicodeDecodeError) as err:
            raise PipelineError(
                f"error reading source HTML {str(self.target_html_path)!r}"
            ) from err
        dom = BeautifulSoup(raw_html, "html.parser", multi_valued_attributes=None)

        rust_app_nodes = len(dom.select(RUST_APP_SELECTOR))
        if rust_app_nodes > 1:
            raise PipelineError(
                'only one <link data-trunk rel="rust" data-type="main" .../> may be specified'
            )

        assets: list[TrunkLink] = []
        for id, link in enumerate(dom.select(LINK_SELECTOR)):
            link[TRUNK_ID] = str(id)
            attrs = {
                name: "" if value is None else str(value) for name, value in link.attrs.items()
            }
            assets.append(
                await link_from_html(self.cfg, self.target_html_dir, self.ignore, attrs, id)
            )

        if rust_app_nodes == 0:
            assets.append(
                await RustApp.default(self.cfg, self.target_html_dir, self.ignore)
            )

        await self._finalize_asset_pipelines(dom, assets)
        self.finalize_html(dom)

        output = self.cfg.staging_dist / "index.html"
        try:
            await asyncio.to_thread(output.write_text, str(dom), encoding="utf-8")
        except OSError as err:
            raise PipelineError("error writing finalized HTML output") from err

    async def _finalize_asset_pipelines(
        self, dom: BeautifulSoup, assets: list[TrunkLink]
    ) -> None:
        tasks = [asyncio.create_task(asset.run()) for asset in assets]
        try:
            for finished in asyncio.as_completed(tasks):
                output = await finished
                output.finalize(dom)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def finalize_html(self, dom: BeautifulSoup) -> None:
        """Write the public URL into marked base elements and inject the reload script."""
        for base in dom.select(f"html head base[{PUBLIC_URL_MARKER_ATTR}]"):
            del base[PUBLIC_URL_MARKER_ATTR]
            base["href"] = self.cfg.public_url

        if self.cfg.inject_autoloader:
            append_html(dom, "body", f"<script>{RELOAD_SCRIPT}</script>")