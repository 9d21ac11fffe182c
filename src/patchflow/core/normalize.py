from __future__ import annotations

import numpy as np


def normalize_flow(flow_acc: np.ndarray, weight_acc: np.ndarray, out: np.ndarray) -> np.ndarray:
    """
    Dense flow from accumulated (weighted flow, weight) buffers, written into `out`.

    out[y, x] = flow_acc[y, x] / weight_acc[y, x] wherever the weight is > 0.
    Uncovered pixels are left exactly as the caller filled them, so running
    this twice on the same inputs yields the same `out`.
    """
    flow_acc = np.asarray(flow_acc)
    weight_acc = np.asarray(weight_acc)
    if flow_acc.ndim != 3 or flow_acc.shape[2] != 2:
        raise ValueError(f"flow_acc must be (H,W,2), got {flow_acc.shape}")
    if weight_acc.shape != flow_acc.shape[:2]:
        raise ValueError(f"weight_acc must be {flow_acc.shape[:2]}, got {weight_acc.shape}")
    if out.shape != flow_acc.shape:
        raise ValueError(f"out must be {flow_acc.shape}, got {out.shape}")

    covered = (weight_acc > 0)[..., None]
    np.divide(flow_acc, weight_acc[..., None], out=out, where=covered, casting="same_kind")
    return out


def coverage_mask(weight_acc: np.ndarray) -> np.ndarray:
    """Pixels that received at least one positive contribution."""
    return np.asarray(weight_acc) > 0
