import os
import sys
from pathlib import Path

import pytest
from bs4 import BeautifulSoup

from wasmforge.assets import BuildConfig, PipelineError
from wasmforge.html import PUBLIC_URL_MARKER_ATTR, RELOAD_SCRIPT, HtmlPipeline

CARGO_SCRIPT = '''
import json
import sys
from pathlib import Path

args = sys.argv[1:]
target = Path(__file__).resolve().parent.parent / "target"
if args[0] == "metadata":
    manifest = args[args.index("--manifest-path") + 1]
    print(json.dumps({
        "packages": [{"name": "app", "version": "0.1.0", "id": "app 0.1.0",
                      "manifest_path": manifest}],
        "target_directory": str(target),
    }))
elif "--message-format=json" in args:
    print(json.dumps({"reason": "compiler-artifact", "package_id": "app 0.1.0",
                      "filenames": [str(target / "app.wasm")]}))
    print(json.dumps({"reason": "build-finished", "success": True}))
'''

BINDGEN_SCRIPT = '''
import sys
from pathlib import Path

args = sys.argv[1:]
if "--version" in args:
    print("wasm-bindgen 0.2.80")
    sys.exit(0)
opts = dict(a[2:].split("=", 1) for a in args if a.startswith("--") and "=" in a)
out = Path(opts["out-dir"])
name = opts["out-name"]
(out / (name + ".js")).write_text("export default function init() {}")
(out / (name + "_bg.wasm")).write_bytes(b"wasm")
'''


def _write_tool(bin_dir: Path, name: str, body: str) -> None:
    path = bin_dir / name
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(0o755)


def _make_project(tmp_path: Path, html: str, **cfg_args) -> BuildConfig:
    dist = tmp_path / "dist"
    dist.mkdir()
    target = tmp_path / "index.html"
    target.write_text(html)
    return BuildConfig(staging_dist=dist, target=target, **cfg_args)


def test_missing_target_raises(tmp_path):
    cfg = BuildConfig(staging_dist=tmp_path, target=tmp_path / "missing.html")
    with pytest.raises(PipelineError, match="canonical path"):
        HtmlPipeline(cfg)


def test_target_dir_is_parent_of_target(tmp_path):
    cfg = _make_project(tmp_path, "<html></html>")
    pipeline = HtmlPipeline(cfg)
    assert pipeline.target_html_dir == tmp_path.resolve()
    assert pipeline.target_html_path == (tmp_path / "index.html").resolve()


def test_finalize_html_sets_public_url_on_marked_base(tmp_path):
    cfg = _make_project(tmp_path, "<html></html>", public_url="/static/")
    dom = BeautifulSoup(
        f"<html><head><base {PUBLIC_URL_MARKER_ATTR}/></head><body></body></html>",
        "html.parser",
    )
    HtmlPipeline(cfg).finalize_html(dom)
    base = dom.select_one("base")
    assert base["href"] == cfg.public_url
    assert PUBLIC_URL_MARKER_ATTR not in base.attrs


def test_finalize_html_leaves_unmarked_base(tmp_path):
    cfg = _make_project(tmp_path, "<html></html>", public_url="/static/")
    dom = BeautifulSoup('<html><head><base href="/other/"/></head></html>', "html.parser")
    HtmlPipeline(cfg).finalize_html(dom)
    assert dom.select_one("base")["href"] == "/other/"


def test_finalize_html_injects_autoloader(tmp_path):
    cfg = _make_project(tmp_path, "<html></html>", inject_autoloader=True)
    dom = BeautifulSoup("<html><head></head><body><p>x</p></body></html>", "html.parser")
    HtmlPipeline(cfg).finalize_html(dom)
    scripts = dom.select("body script")
    assert len(scripts) == 1
    assert scripts[0].string == RELOAD_SCRIPT


def test_finalize_html_without_autoloader(tmp_path):
    cfg = _make_project(tmp_path, "<html></html>", inject_autoloader=False)
    dom = BeautifulSoup("<html><head></head><body></body></html>", "html.parser")
    HtmlPipeline(cfg).finalize_html(dom)
    assert dom.select("script") == []


@pytest.mark.asyncio
async def test_two_main_rust_links_rejected(tmp_path):
    cfg = _make_project(
        tmp_path,
        '<html><head><link data-trunk rel="rust"/>'
        '<link data-trunk rel="rust" data-type="main"/></head></html>',
    )
    with pytest.raises(PipelineError, match="only one"):
        await HtmlPipeline(cfg).run()


@pytest.mark.asyncio
async def test_unknown_rel_rejected(tmp_path):
    cfg = _make_project(tmp_path, '<html><head><link data-trunk rel="bogus"/></head></html>')
    with pytest.raises(PipelineError, match="unknown"):
        await HtmlPipeline(cfg).run()


@pytest.mark.asyncio
async def test_missing_rel_rejected(tmp_path):
    cfg = _make_project(tmp_path, '<html><head><link data-trunk href="a.css"/></head></html>')
    with pytest.raises(PipelineError, match="rel"):
        await HtmlPipeline(cfg).run()


@pytest.mark.asyncio
async def test_full_build_writes_index(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _write_tool(bin_dir, "cargo", CARGO_SCRIPT)
    _write_tool(bin_dir, "wasm-bindgen", BINDGEN_SCRIPT)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))

    target_dir = tmp_path / "target"
    target_dir.mkdir()
    (target_dir / "app.wasm").write_bytes(b"compiled")
    (tmp_path / "style.css").write_text("body { color: red; }")

    cfg = _make_project(
        tmp_path,
        "<!DOCTYPE html><html><head>"
        f"<base {PUBLIC_URL_MARKER_ATTR}/>"
        '<link data-trunk rel="css" href="style.css"/>'
        "</head><body></body></html>",
        public_url="/app/",
        filehash=False,
    )
    ignored = []
    await HtmlPipeline(cfg, ignored.append).run()

    assert ignored == [target_dir.resolve()]
    assert (cfg.staging_dist / "style.css").read_text() == "body { color: red; }"
    assert (cfg.staging_dist / "app.js").exists()

    out = BeautifulSoup((cfg.staging_dist / "index.html").read_text(), "html.parser")
    assert out.select("link[data-trunk]") == []
    assert out.select_one('link[rel="stylesheet"]')["href"] == cfg.public_url + "style.css"
    assert out.select_one('link[rel="modulepreload"]')["href"] == cfg.public_url + "app.js"
    assert out.select_one("base")["href"] == cfg.public_url
    script = out.select_one('body script[type="module"]')
    assert cfg.public_url + "app_bg.wasm" in script.string