from __future__ import annotations

import re
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]


def test_readme_is_package_long_description() -> None:
    text = (ROOT / "pyproject.toml").read_text(encoding="utf-8")
    m = re.search(r'^readme\s*=\s*"([^"]+)"', text, flags=re.MULTILINE)
    assert m is not None
    assert m.group(1) == "README.md"
    readme = (ROOT / m.group(1)).read_text(encoding="utf-8")
    assert readme.startswith("# patchflow")
    assert "estimate_dense_flow" in readme
