from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import numpy as np

from patchflow.config import FlowConfig, default_flow_config
from patchflow.core.align import AlignStepResult, ForwardAdditiveAligner, photometric_cost
from patchflow.core.densify import DensificationEngine, PatchSnapshot
from patchflow.core.patch import Patch, patch_grid
from patchflow.core.sampling import Sampler
from patchflow.core.warp import make_warp
from patchflow.io.image_io import to_intensity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DenseFlowResult:
    flow: np.ndarray  # (H,W,2)
    weight: np.ndarray  # (H,W)
    patches: list[Patch]
    diagnostics: dict[str, float]


def iterate_patch(
    aligner: ForwardAdditiveAligner,
    patch: Patch,
    *,
    max_iterations: int,
    min_delta: float,
) -> AlignStepResult | None:
    """
    Run Gauss-Newton steps on `patch.warp` until the update is smaller than
    `min_delta`, the system turns degenerate, or `max_iterations` is reached.
    """
    warp = patch.warp
    assert warp is not None
    res = None
    for _ in range(int(max_iterations)):
        res = aligner.step(warp)
        patch.iterations += 1
        patch.history.append(res.sum_squared_errors)
        if res.degenerate:
            patch.degenerate = True
            break
        if float(np.linalg.norm(res.delta)) < min_delta:
            break
    return res


def _align_one(
    patch: Patch,
    tpl_gray: np.ndarray,
    tgt_gray: np.ndarray,
    tpl_color: np.ndarray,
    tgt_color: np.ndarray,
    config: FlowConfig,
    sampler: Sampler | None,
) -> Patch:
    aligner = ForwardAdditiveAligner(
        patch.extract(tpl_gray),
        tgt_gray,
        sampler=sampler,
        max_condition=config.align.max_condition,
    )
    iterate_patch(aligner, patch, max_iterations=config.align.max_iterations, min_delta=config.align.min_delta)
    assert patch.warp is not None
    patch.cost = photometric_cost(patch.extract(tpl_color), tgt_color, patch.warp, sampler=sampler)
    return patch


def _check_pair(template: np.ndarray, target: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    tpl = np.asarray(template, dtype=np.float64)
    tgt = np.asarray(target, dtype=np.float64)
    if tpl.shape != tgt.shape:
        raise ValueError(f"template {tpl.shape} and target {tgt.shape} must have the same shape")
    if tpl.ndim == 3 and tpl.shape[2] == 1:
        tpl = tpl[:, :, 0]
        tgt = tgt[:, :, 0]
    if tpl.ndim not in (2, 3) or (tpl.ndim == 3 and tpl.shape[2] != 3):
        raise ValueError(f"expected (H,W) or (H,W,3) images, got shape {tpl.shape}")
    return tpl, tgt


def make_patches(
    width: int,
    height: int,
    config: FlowConfig,
    initial_flow: np.ndarray | None = None,
) -> list[Patch]:
    """Patches on the configured grid, each warp seeded with `initial_flow` at its midpoint."""
    patches: list[Patch] = []
    for mx, my in patch_grid(width, height, config.patch_size, config.spacing).tolist():
        half = config.patch_size // 2
        fx, fy = 0.0, 0.0
        if initial_flow is not None:
            fx, fy = float(initial_flow[my, mx, 0]), float(initial_flow[my, mx, 1])
        warp = make_warp(config.warp, mx - half + fx, my - half + fy)
        patches.append(Patch(midpoint=(mx, my), patch_size=config.patch_size, warp=warp))
    return patches


def estimate_dense_flow(
    template: np.ndarray,
    target: np.ndarray,
    *,
    config: FlowConfig | None = None,
    initial_flow: np.ndarray | None = None,
    out: np.ndarray | None = None,
    fill_value: float = np.nan,
    incremental: bool = False,
    sampler: Sampler | None = None,
) -> DenseFlowResult:
    """
    Dense flow from `template` to `target` at a single scale.

    Patches on a regular grid are aligned independently (thread pool), each gets
    a per-pixel photometric cost, and all of them are blended into a dense field.

    - `incremental=True` feeds every patch to the densification engine as soon as
      it finishes aligning; otherwise a single batched launch is made at the end.
    - `out`, if given, is updated in place; otherwise it is allocated and filled
      with `fill_value`, which is what uncovered pixels keep.
    """
    if config is None:
        config = default_flow_config()
    tpl, tgt = _check_pair(template, target)
    tpl_gray = to_intensity(tpl)
    tgt_gray = to_intensity(tgt)
    height, width = tpl_gray.shape

    if initial_flow is not None:
        initial_flow = np.asarray(initial_flow, dtype=np.float64)
        if initial_flow.shape != (height, width, 2):
            raise ValueError(f"initial_flow must be {(height, width, 2)}, got {initial_flow.shape}")
    if out is None:
        out = np.full((height, width, 2), fill_value, dtype=np.float64)

    engine = DensificationEngine(config.densify_config(width, height), max_workers=config.max_workers)
    acc = engine.new_accumulator()
    patches = make_patches(width, height, config, initial_flow)
    logger.info("aligning %d patches (%s warp, %dpx, spacing %d)", len(patches), config.warp, config.patch_size, config.spacing)

    with ThreadPoolExecutor(max_workers=config.max_workers) as ex:
        futs = [ex.submit(_align_one, p, tpl_gray, tgt_gray, tpl, tgt, config, sampler) for p in patches]
        for fut in as_completed(futs):
            patch = fut.result()
            if incremental:
                engine.accumulate_patch(acc, patch.midpoint, patch.flow, patch.cost)

    if not incremental:
        engine.accumulate(acc, PatchSnapshot.from_patches(patches, config.patch_size))
    acc.normalize(out)

    n = len(patches)
    diagnostics = {
        "num_patches": float(n),
        "num_degenerate": float(sum(p.degenerate for p in patches)),
        "mean_iterations": float(np.mean([p.iterations for p in patches])) if n else 0.0,
        "coverage": float(np.count_nonzero(acc.weight > 0)) / float(width * height),
    }
    logger.info(
        "dense flow done: %d patches, %d degenerate, coverage %.1f%%",
        n,
        int(diagnostics["num_degenerate"]),
        100.0 * diagnostics["coverage"],
    )
    return DenseFlowResult(flow=out, weight=acc.weight, patches=patches, diagnostics=diagnostics)
