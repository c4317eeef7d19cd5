import sys

import pytest
from bs4 import BeautifulSoup

from wasmforge.assets import BuildConfig, PipelineError, seahash
from wasmforge.sass import CssRef, Sass, SassOutput

FAKE_SASS = """#!{python}
import sys
args = sys.argv[1:]
if args == ["--version"]:
    print("1.50.0")
    sys.exit(0)
style = args[args.index("-s") + 1]
src, out = args[-2], args[-1]
with open(src) as handle:
    data = handle.read()
if "fail" in data:
    sys.exit(3)
with open(out, "w") as handle:
    handle.write("/* " + style + " */" + data)
"""

DOC = '<html><head><link data-trunk rel="scss" data-trunk-id="2"/></head><body></body></html>'


@pytest.fixture
def fake_sass(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "sass"
    script.write_text(FAKE_SASS.format(python=sys.executable))
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir))
    return script


@pytest.fixture
def project(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.scss").write_text("body{color:red}")
    dist = tmp_path / "dist"
    dist.mkdir()
    return src, dist


def test_missing_href(tmp_path):
    with pytest.raises(PipelineError, match="href"):
        Sass(BuildConfig(staging_dist=tmp_path), tmp_path, {"rel": "scss"}, 0)


def test_missing_file(tmp_path):
    with pytest.raises(PipelineError):
        Sass(BuildConfig(staging_dist=tmp_path), tmp_path, {"href": "nope.scss"}, 0)


def test_inline_attr_detected(project):
    src, dist = project
    cfg = BuildConfig(staging_dist=dist)
    assert Sass(cfg, src, {"href": "main.scss", "data-inline": ""}, 0).use_inline is True
    assert Sass(cfg, src, {"href": "main.scss"}, 0).use_inline is False


def test_finalize_inline(tmp_path):
    dom = BeautifulSoup(DOC, "html.parser")
    SassOutput(cfg=BuildConfig(staging_dist=tmp_path), id=2, css_ref=CssRef("a{}", inline=True)).finalize(dom)
    style = dom.select_one("style")
    assert style["type"] == "text/css"
    assert style.string == "a{}"
    assert dom.select("link") == []


def test_finalize_file(tmp_path):
    dom = BeautifulSoup(DOC, "html.parser")
    cfg = BuildConfig(staging_dist=tmp_path, public_url="/pub/")
    SassOutput(cfg=cfg, id=2, css_ref=CssRef("main.css")).finalize(dom)
    link = dom.select_one("link")
    assert link["rel"] == ["stylesheet"]
    assert link["href"] == "/pub/main.css"


@pytest.mark.asyncio
async def test_run_writes_hashed_file(fake_sass, project):
    src, dist = project
    cfg = BuildConfig(staging_dist=dist, filehash=True)
    out = await Sass(cfg, src, {"href": "main.scss"}, 2).run()
    assert out.id == 2
    assert out.css_ref.inline is False
    written = dist / out.css_ref.value
    css = written.read_text()
    assert css == "/* expanded */body{color:red}"
    assert out.css_ref.value == f"main-{seahash(css.encode()):x}.css"
    assert not (dist / "main.css").exists()


@pytest.mark.asyncio
async def test_run_without_hash(fake_sass, project):
    src, dist = project
    cfg = BuildConfig(staging_dist=dist, filehash=False, release=True)
    out = await Sass(cfg, src, {"href": "main.scss"}, 0).run()
    assert out.css_ref.value == "main.css"
    assert (dist / "main.css").read_text() == "/* compressed */body{color:red}"


@pytest.mark.asyncio
async def test_run_inline_leaves_no_file(fake_sass, project):
    src, dist = project
    cfg = BuildConfig(staging_dist=dist)
    out = await Sass(cfg, src, {"href": "main.scss", "data-inline": ""}, 0).run()
    assert out.css_ref == CssRef("/* expanded */body{color:red}", inline=True)
    assert list(dist.iterdir()) == []


@pytest.mark.asyncio
async def test_run_failure_raises(fake_sass, project):
    src, dist = project
    (src / "bad.scss").write_text("fail")
    cfg = BuildConfig(staging_dist=dist)
    with pytest.raises(PipelineError, match="bad status"):
        await Sass(cfg, src, {"href": "bad.scss"}, 0).run()