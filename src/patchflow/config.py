from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

SCHEMA_VERSION = "patchflow.config.v0"
WARP_KINDS = ("translation", "euclidean", "similarity", "affine", "homography")


class ConfigValidationError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


@dataclass(frozen=True)
class DensifyConfig:
    """
    Scalar parameters of one densification launch.

    `min_error` is the per-channel floor applied to photometric costs before
    they are summed and inverted into a confidence weight.
    """

    width: int
    height: int
    patch_size: int
    min_error: float = 1e-3

    def __post_init__(self) -> None:
        _require(self.width > 0 and self.height > 0, "width and height must be > 0")
        _require(self.patch_size >= 1, "patch_size must be >= 1")
        _require(self.min_error > 0.0, "min_error must be > 0")


@dataclass(frozen=True)
class AlignConfig:
    max_iterations: int = 30
    min_delta: float = 1e-3
    max_condition: float = 1e12


@dataclass(frozen=True)
class FlowConfig:
    schema_version: str
    patch_size: int
    spacing: int
    min_error: float
    warp: str
    align: AlignConfig
    max_workers: int | None = None

    def densify_config(self, width: int, height: int) -> DensifyConfig:
        return DensifyConfig(width=int(width), height=int(height), patch_size=self.patch_size, min_error=self.min_error)


def default_flow_config() -> FlowConfig:
    return parse_flow_config({"schema_version": SCHEMA_VERSION})


def load_flow_config(path: Path) -> FlowConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_flow_config(data)


def parse_flow_config(data: dict[str, Any]) -> FlowConfig:
    schema_version = data.get("schema_version")
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    patch_size = int(data.get("patch_size", 15))
    _require(patch_size >= 3, "patch_size must be >= 3 (the aligner skips a 1-pixel border)")

    spacing = int(data.get("spacing", max(1, patch_size // 2)))
    _require(spacing >= 1, "spacing must be >= 1")

    min_error = float(data.get("min_error", 1e-3))
    _require(min_error > 0.0, "min_error must be > 0")

    warp = str(data.get("warp", "translation"))
    _require(warp in WARP_KINDS, f"warp must be one of {', '.join(WARP_KINDS)}")

    align = data.get("align", {})
    _require(isinstance(align, dict), "align must be an object")
    max_iterations = int(align.get("max_iterations", 30))
    _require(max_iterations >= 1, "align.max_iterations must be >= 1")
    min_delta = float(align.get("min_delta", 1e-3))
    _require(min_delta >= 0.0, "align.min_delta must be >= 0")
    max_condition = float(align.get("max_condition", 1e12))
    _require(max_condition > 1.0, "align.max_condition must be > 1")

    workers_raw = data.get("max_workers")
    max_workers = None if workers_raw is None else int(workers_raw)
    _require(max_workers is None or max_workers >= 1, "max_workers must be >= 1 or null")

    return FlowConfig(
        schema_version=schema_version,
        patch_size=patch_size,
        spacing=spacing,
        min_error=min_error,
        warp=warp,
        align=AlignConfig(max_iterations=max_iterations, min_delta=min_delta, max_condition=max_condition),
        max_workers=max_workers,
    )
