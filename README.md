# wasmforge

Build WebAssembly web applications from a single HTML entry point.

The source HTML declares its assets with `<link data-trunk ...>` elements. Each
link becomes an asset pipeline; the results are written into a staging
directory, and the links are replaced in the final HTML by the tags that load
them.

## Build settings

`wasmforge.assets.BuildConfig` holds what every pipeline shares: the staging
directory (`staging_dist`), the source HTML (`target`), `public_url`, whether
output names are hashed (`filehash`), `release` mode, `inject_autoloader`,
requested tool versions (`ToolVersions`), Cargo feature selection (`Features`)
and the optional script and preload patterns.

Hashed file names use the 64-bit SeaHash of the content, in hex
(`wasmforge.assets.seahash`).

## Asset pipelines

| `rel` value      | Class                          | What it does                                                        |
|------------------|--------------------------------|---------------------------------------------------------------------|
| `css`            | `wasmforge.css.Css`            | copies (and optionally hashes) a stylesheet, emits `<link rel="stylesheet">` |
| `icon`           | `wasmforge.icon.Icon`          | copies (and optionally hashes) an icon, emits `<link rel="icon">`   |
| `sass` / `scss`  | `wasmforge.sass.Sass`          | compiles with `sass`, writes a CSS file or, with `data-inline`, a `<style>` tag |
| `inline`         | `wasmforge.inline.Inline`      | pastes HTML as is, wraps CSS in `<style>` and JS in `<script>`      |
| `copy-file`      | `wasmforge.copy_file.CopyFile` | copies a file into the staging directory and removes the link       |
| `copy-dir`       | `wasmforge.copy_dir.CopyDir`   | copies a directory tree into the staging directory and removes the link |
| `rust`           | `wasmforge.rust_app.RustApp`   | builds a Cargo crate for `wasm32-unknown-unknown`, runs `wasm-bindgen` and, in release mode, `wasm-opt` |

Each pipeline has an async `run()` returning an output object whose
`finalize(dom)` edits a BeautifulSoup document.

`wasmforge.links.link_from_html` picks the pipeline for a link's attributes.
`wasmforge.html.HtmlPipeline` runs a whole build: it reads the source HTML,
gives each link a `data-trunk-id`, runs every pipeline concurrently, finalizes
the document, sets `href` on `<base data-trunk-public-url>` elements to the
public URL, injects the reload script when `inject_autoloader` is set, and
writes `index.html` to the staging directory.

```python
import asyncio
from wasmforge.assets import BuildConfig
from wasmforge.html import HtmlPipeline

cfg = BuildConfig(staging_dist="dist/.stage", target="index.html", release=True)
asyncio.run(HtmlPipeline(cfg).run())
```

When no `rel="rust"` link is present, a default application is built from the
`Cargo.toml` next to the HTML file. Only one main application link may be given.

## External tools

`wasmforge.tools` locates `sass`, `wasm-bindgen` and `wasm-opt`. A
system-installed binary is used when its reported version matches the one
requested; otherwise the release archive is downloaded into the user cache
directory and unpacked, at most once per process for each tool and version.

```python
from wasmforge.tools import Application

Application.WASM_OPT.format_version_output("wasm-opt version 101")   # "version_101"
Application.WASM_BINDGEN.format_version_output("wasm-bindgen 0.2.75") # "0.2.75"
```

The `wasm-bindgen` version is taken from the build settings, then `Cargo.lock`,
then `cargo metadata` (`wasmforge.rust_output.find_wasm_bindgen_version`).

## Script and preload patterns

The loader script and preload tags for the main application can be replaced by
templates. `{base}`, `{js}` and `{wasm}` are always available; a parameter whose
value starts with `@` is read from the named file.

```python
from wasmforge.rust_output import pattern_evaluate

pattern_evaluate("{base}{js}", {"base": "/", "js": "app.js"})  # "/app.js"
```

## Proxy handlers

`wasmforge.proxy.HttpProxy` and `wasmforge.proxy.WebSocketProxy` add routes to
an `aiohttp.web.Application` that forward requests, or relay WebSocket messages,
to a backend. The listening path is the rewrite path if given, otherwise the
backend URL's path; `build_outbound_url` shows how the backend URL is formed.

## What this package does not do

There is no command-line program, no development server of its own, and no
file watcher that rebuilds on changes: a build runs when `HtmlPipeline.run()`
is called, and the proxy handlers must be mounted in an application you run
yourself. Build hooks are not run.

## Tests

The test suite uses pytest and pytest-asyncio, available through the `test` extra.