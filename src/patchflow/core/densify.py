from __future__ import annotations

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from patchflow.config import DensifyConfig
from patchflow.core.normalize import normalize_flow
from patchflow.core.patch import Patch

logger = logging.getLogger(__name__)


def _shaped_costs(costs: np.ndarray) -> np.ndarray:
    """(N, 3*S*S) flat cost buffers -> (N,S,S,3); other shapes pass through unchanged."""
    if costs.ndim != 2 or costs.shape[1] % 3:
        return costs
    s = math.isqrt(costs.shape[1] // 3)
    if 3 * s * s != costs.shape[1]:
        return costs
    return costs.reshape(costs.shape[0], s, s, 3)


@dataclass(frozen=True)
class PatchSnapshot:
    """
    Transient copy of the patch state needed by one densification pass.

    - `midpoints`: (N,2) int32 anchor pixels (x, y)
    - `flows`: (N,2) float64 current flow of each patch
    - `costs`: (N,S,S,3) float64 per-pixel photometric cost from the last alignment step

    Costs may also be given flat, as (N, 3*S*S) buffers; they are read in C
    order as (S,S,3), i.e. the three channels of a pixel are adjacent.
    """

    midpoints: np.ndarray
    flows: np.ndarray
    costs: np.ndarray

    def __post_init__(self) -> None:
        mids = np.asarray(self.midpoints, dtype=np.int32).reshape(-1, 2)
        flows = np.asarray(self.flows, dtype=np.float64).reshape(-1, 2)
        costs = _shaped_costs(np.asarray(self.costs, dtype=np.float64))
        n = mids.shape[0]
        if flows.shape[0] != n:
            raise ValueError(f"got {n} midpoints but {flows.shape[0]} flows")
        if costs.ndim != 4 or costs.shape[0] != n or costs.shape[1] != costs.shape[2] or costs.shape[3] != 3:
            raise ValueError(f"costs must be (N,S,S,3) with N={n}, got {costs.shape}")
        object.__setattr__(self, "midpoints", mids)
        object.__setattr__(self, "flows", flows)
        object.__setattr__(self, "costs", costs)

    def __len__(self) -> int:
        return int(self.midpoints.shape[0])

    @property
    def patch_size(self) -> int:
        return int(self.costs.shape[1])

    @classmethod
    def single(cls, midpoint: tuple[int, int], flow: np.ndarray, cost: np.ndarray) -> PatchSnapshot:
        cost = np.asarray(cost, dtype=np.float64)
        return cls(
            midpoints=np.asarray(midpoint, dtype=np.int32).reshape(1, 2),
            flows=np.asarray(flow, dtype=np.float64).reshape(1, 2),
            costs=cost.reshape((1,) + cost.shape),
        )

    @classmethod
    def from_patches(cls, patches: Sequence[Patch], patch_size: int | None = None) -> PatchSnapshot:
        """Snapshot every patch that already carries a cost buffer."""
        ready = [p for p in patches if p.cost is not None]
        if not ready:
            s = int(patch_size) if patch_size is not None else 1
            return cls(np.zeros((0, 2)), np.zeros((0, 2)), np.zeros((0, s, s, 3)))
        return cls(
            midpoints=np.asarray([p.midpoint for p in ready], dtype=np.int32),
            flows=np.stack([p.flow for p in ready], axis=0),
            costs=np.stack([np.asarray(p.cost, dtype=np.float64) for p in ready], axis=0),
        )


class DenseAccumulator:
    """
    Shared (flow, weight) buffers of one densification pass.

    `flow` is (H,W,2) and `weight` is (H,W); in their flattened views flow slot
    k pairs with weight slot k // 2.
    """

    def __init__(self, width: int, height: int, dtype: type = np.float64):
        self.width = int(width)
        self.height = int(height)
        self.flow = np.zeros((self.height, self.width, 2), dtype=dtype)
        self.weight = np.zeros((self.height, self.width), dtype=dtype)

    def reset(self) -> None:
        self.flow.fill(0)
        self.weight.fill(0)

    def normalize(self, out: np.ndarray) -> np.ndarray:
        return normalize_flow(self.flow, self.weight, out)


def confidence_weights(costs: np.ndarray, min_error: float) -> np.ndarray:
    """
    w = 1 / (max(eps, c_r) + max(eps, c_g) + max(eps, c_b)) over the last axis.

    NaN costs count as +inf, i.e. zero confidence.
    """
    c = np.asarray(costs, dtype=np.float64)
    c = np.where(np.isnan(c), np.inf, c)
    return 1.0 / np.sum(np.maximum(c, float(min_error)), axis=-1)


def _scatter_partial(
    snapshot: PatchSnapshot, lo: int, hi: int, width: int, height: int, min_error: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Accumulate patches [lo, hi) into private (weight, wfx, wfy) buffers of size W*H."""
    mids = snapshot.midpoints[lo:hi]
    flows = snapshot.flows[lo:hi]
    w = confidence_weights(snapshot.costs[lo:hi], min_error)  # (n,S,S)

    s = snapshot.patch_size
    off = np.arange(s, dtype=np.int64) - s // 2
    xs = mids[:, 0, None, None].astype(np.int64) + off[None, None, :]
    ys = mids[:, 1, None, None].astype(np.int64) + off[None, :, None]
    xs, ys = np.broadcast_arrays(xs, ys)

    inside = (xs >= 0) & (xs < width) & (ys >= 0) & (ys < height)
    idx = ys[inside] * width + xs[inside]
    w_in = w[inside]
    fx = np.broadcast_to(flows[:, 0, None, None], w.shape)[inside]
    fy = np.broadcast_to(flows[:, 1, None, None], w.shape)[inside]

    # bincount sums repeated indices, so overlapping pixels are never lost.
    n = width * height
    weight = np.bincount(idx, weights=w_in, minlength=n)
    wfx = np.bincount(idx, weights=fx * w_in, minlength=n)
    wfy = np.bincount(idx, weights=fy * w_in, minlength=n)
    return weight, wfx, wfy


class DensificationEngine:
    """
    Confidence-weighted scatter of per-patch flow into dense accumulators.

    Patches are split into chunks; each worker thread fills private partial
    buffers and the calling thread reduces them into the shared accumulator,
    so no two workers ever write the same memory.
    """

    def __init__(self, config: DensifyConfig, *, max_workers: int | None = None, min_patches_per_worker: int = 32):
        self.config = config
        self.max_workers = int(max_workers) if max_workers is not None else min(8, os.cpu_count() or 1)
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.min_patches_per_worker = max(1, int(min_patches_per_worker))

    def new_accumulator(self, dtype: type = np.float64) -> DenseAccumulator:
        return DenseAccumulator(self.config.width, self.config.height, dtype=dtype)

    def _check(self, acc: DenseAccumulator, snapshot: PatchSnapshot) -> None:
        cfg = self.config
        if (acc.width, acc.height) != (cfg.width, cfg.height):
            raise ValueError(f"accumulator is {acc.width}x{acc.height}, expected {cfg.width}x{cfg.height}")
        if len(snapshot) and snapshot.patch_size != cfg.patch_size:
            raise ValueError(f"cost buffers are {snapshot.patch_size}px, expected {cfg.patch_size}px")

    def _chunks(self, n: int) -> list[tuple[int, int]]:
        per = max(self.min_patches_per_worker, math.ceil(n / self.max_workers))
        return [(lo, min(n, lo + per)) for lo in range(0, n, per)]

    def accumulate(self, acc: DenseAccumulator, snapshot: PatchSnapshot) -> None:
        """Batched launch: scatter every patch of `snapshot` into `acc` (adds to its content)."""
        self._check(acc, snapshot)
        n = len(snapshot)
        if n == 0:
            return

        finite = np.all(np.isfinite(snapshot.flows), axis=1)
        if not np.all(finite):
            logger.debug("skipping %d patches with non-finite flow", int(np.count_nonzero(~finite)))
            snapshot = PatchSnapshot(snapshot.midpoints[finite], snapshot.flows[finite], snapshot.costs[finite])
            n = len(snapshot)
            if n == 0:
                return

        cfg = self.config
        chunks = self._chunks(n)
        weight_flat = acc.weight.reshape(-1)
        flow_flat = acc.flow.reshape(-1, 2)

        def reduce(parts: tuple[np.ndarray, np.ndarray, np.ndarray]) -> None:
            weight, wfx, wfy = parts
            np.add(weight_flat, weight, out=weight_flat)
            flow_flat[:, 0] += wfx
            flow_flat[:, 1] += wfy

        if len(chunks) == 1:
            reduce(_scatter_partial(snapshot, 0, n, cfg.width, cfg.height, cfg.min_error))
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks))) as ex:
            futs = [
                ex.submit(_scatter_partial, snapshot, lo, hi, cfg.width, cfg.height, cfg.min_error)
                for lo, hi in chunks
            ]
            for fut in as_completed(futs):
                reduce(fut.result())

    def accumulate_patch(
        self, acc: DenseAccumulator, midpoint: tuple[int, int], flow: np.ndarray, cost: np.ndarray
    ) -> None:
        """Single-patch launch, for patches that become ready one at a time."""
        self.accumulate(acc, PatchSnapshot.single(midpoint, flow, cost))

    def densify(self, snapshot: PatchSnapshot, out: np.ndarray, acc: DenseAccumulator | None = None) -> np.ndarray:
        """
        Full pass: zero the accumulators, scatter `snapshot`, normalize into `out`.

        Pixels no patch covers keep whatever `out` held before the call.
        """
        if acc is None:
            acc = self.new_accumulator()
        acc.reset()
        self.accumulate(acc, snapshot)
        covered = int(np.count_nonzero(acc.weight > 0))
        logger.info(
            "densified %d patches, %d/%d pixels covered",
            len(snapshot),
            covered,
            self.config.width * self.config.height,
        )
        return acc.normalize(out)
