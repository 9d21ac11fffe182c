from __future__ import annotations

from pathlib import Path

import pytest

DOCS = Path(__file__).resolve().parents[1] / "docs"


def test_docs_have_a_root_page_and_api_reference() -> None:
    index = (DOCS / "index.md").read_text(encoding="utf-8")
    assert "api" in index and "examples" in index
    api = (DOCS / "api.md").read_text(encoding="utf-8")
    for mod in ("patchflow.api.dense_flow", "patchflow.config", "patchflow.core.densify", "patchflow.core.align"):
        assert f".. automodule:: {mod}" in api
    assert "examples/dense_flow_demo.py" in (DOCS / "examples.md").read_text(encoding="utf-8")


@pytest.mark.integration
def test_sphinx_builds_html(tmp_path: Path) -> None:
    for mod in ("sphinx", "myst_parser", "sphinx_rtd_theme", "sphinx_copybutton", "linkify_it"):
        pytest.importorskip(mod)
    from sphinx.cmd.build import build_main

    out = tmp_path / "html"
    status = build_main(["-b", "html", "-q", "-d", str(tmp_path / "doctrees"), str(DOCS), str(out)])

    assert status == 0
    assert (out / "index.html").is_file()
    assert (out / "api.html").is_file()
