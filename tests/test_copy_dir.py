import pytest
from bs4 import BeautifulSoup

from wasmforge.assets import BuildConfig, PipelineError
from wasmforge.copy_dir import CopyDir, CopyDirOutput


def test_missing_href_raises(tmp_path):
    with pytest.raises(PipelineError, match="copydir"):
        CopyDir(BuildConfig(staging_dist=tmp_path), tmp_path, {}, 0)


def test_path_is_joined_to_html_dir(tmp_path):
    pipeline = CopyDir(BuildConfig(staging_dist=tmp_path), tmp_path, {"href": "static/img"}, 0)
    assert pipeline.path == tmp_path / "static" / "img"


@pytest.mark.asyncio
async def test_run_copies_tree(tmp_path):
    dist = tmp_path / "dist"
    dist.mkdir()
    src = tmp_path / "assets"
    (src / "nested").mkdir(parents=True)
    (src / "a.txt").write_text("a")
    (src / "nested" / "b.txt").write_text("b")
    out = await CopyDir(BuildConfig(staging_dist=dist), tmp_path, {"href": "assets"}, 3).run()
    assert out.id == 3
    assert (dist / "assets" / "a.txt").read_text() == "a"
    assert (dist / "assets" / "nested" / "b.txt").read_text() == "b"


@pytest.mark.asyncio
async def test_run_missing_dir_raises(tmp_path):
    pipeline = CopyDir(BuildConfig(staging_dist=tmp_path), tmp_path, {"href": "missing"}, 0)
    with pytest.raises(PipelineError):
        await pipeline.run()


def test_finalize_removes_link():
    dom = BeautifulSoup('<head><link data-trunk-id="3" rel="copy-dir"/></head>', "html.parser")
    CopyDirOutput(id=3).finalize(dom)
    assert dom.select("link") == []