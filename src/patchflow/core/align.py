from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from patchflow.core.sampling import BilinearSampler, Sampler, is_in_image, sample_channels
from patchflow.core.warp import Warp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlignStepResult:
    """
    Outcome of one forward-additive Gauss-Newton step.

    `delta` is None when the normal equations could not be solved; the warp is
    then left untouched and the caller should stop iterating this patch.
    """

    delta: np.ndarray | None  # (P,)
    sum_squared_errors: float
    num_constraints: int

    @property
    def degenerate(self) -> bool:
        return self.delta is None

    @property
    def mean_squared_error(self) -> float:
        if self.num_constraints == 0:
            return float("nan")
        return self.sum_squared_errors / self.num_constraints


def _interior_grid(h: int, w: int) -> tuple[np.ndarray, np.ndarray]:
    yy, xx = np.mgrid[1 : h - 1, 1 : w - 1]
    return xx.reshape(-1), yy.reshape(-1)


def _as_intensity(image: np.ndarray, name: str) -> np.ndarray:
    img = np.asarray(image, dtype=np.float64)
    if img.ndim != 2:
        raise ValueError(f"{name} must be a 2D intensity image, got shape {img.shape}")
    return img


def _solve_normal_equations(hessian: np.ndarray, b: np.ndarray, max_condition: float) -> np.ndarray | None:
    if not (np.all(np.isfinite(hessian)) and np.all(np.isfinite(b))):
        return None
    s = np.linalg.svd(hessian, compute_uv=False)
    if s[0] <= 0.0 or s[-1] * max_condition < s[0]:
        return None

    from scipy.linalg import LinAlgError, solve  # type: ignore

    try:
        delta = solve(hessian, b, assume_a="pos")
    except LinAlgError:
        return None
    if not np.all(np.isfinite(delta)):
        return None
    return delta


def forward_additive_step(
    template: np.ndarray,
    target: np.ndarray,
    warp: Warp,
    *,
    sampler: Sampler | None = None,
    max_condition: float = 1e12,
    apply: bool = True,
) -> AlignStepResult:
    """
    One Lucas-Kanade (forward-additive) step of template -> target alignment.

    Every interior template pixel x is warped into the target, the target is
    sampled at W(x; p), and the SSD between template and warped target is
    linearised around p:

      sd(x) = grad I(W(x; p)) . dW/dp(x)
      H = sum sd^T sd,   b = sum sd^T (T(x) - I(W(x; p)))
      delta = H^{-1} b,  p <- p + delta

    Pixels whose warped position (plus a 1-pixel gradient margin) leaves the
    target are dropped from the sums. If H is singular or worse conditioned
    than `max_condition`, the step is degenerate and `warp` is not modified.
    """
    tpl = _as_intensity(template, "template")
    tgt = _as_intensity(target, "target")
    if sampler is None:
        sampler = BilinearSampler()

    h, w = tpl.shape
    n_params = warp.num_parameters()
    if h < 3 or w < 3:
        logger.debug("template %dx%d has no interior pixels", w, h)
        return AlignStepResult(delta=None, sum_squared_errors=0.0, num_constraints=0)

    xs, ys = _interior_grid(h, w)
    p_tpl = np.stack([xs, ys], axis=-1).astype(np.float64)
    p_tgt = warp.apply(p_tpl)

    inside = is_in_image(p_tgt, tgt.shape[1], tgt.shape[0], border=1)
    p_tpl = p_tpl[inside]
    p_tgt = p_tgt[inside]
    n = int(p_tpl.shape[0])

    err = tpl[ys[inside], xs[inside]] - sampler.sample(tgt, p_tgt)
    sum_errors = float(np.sum(err * err))

    if n == 0:
        logger.debug("no template pixel maps inside the target; step is degenerate")
        return AlignStepResult(delta=None, sum_squared_errors=sum_errors, num_constraints=0)

    grad = sampler.gradient(tgt, p_tgt)  # (N,2)
    J = warp.jacobian(p_tpl)  # (N,2,P)
    sd = np.einsum("ni,nip->np", grad, J)  # (N,P)

    hessian = sd.T @ sd
    b = sd.T @ err

    delta = _solve_normal_equations(hessian, b, float(max_condition))
    if delta is None:
        logger.debug("singular Gauss-Newton system (%d params, %d constraints)", n_params, n)
        return AlignStepResult(delta=None, sum_squared_errors=sum_errors, num_constraints=n)

    if apply:
        warp.update_forward_additive(delta)
    return AlignStepResult(delta=delta, sum_squared_errors=sum_errors, num_constraints=n)


class ForwardAdditiveAligner:
    """
    Binds a template patch and a target image for repeated Gauss-Newton steps.

    Nothing is precomputed: target gradients and warp Jacobians are evaluated
    at every step, since they depend on the current parameters.
    """

    def __init__(
        self,
        template: np.ndarray,
        target: np.ndarray,
        *,
        sampler: Sampler | None = None,
        max_condition: float = 1e12,
    ):
        self.template = _as_intensity(template, "template")
        self.target = _as_intensity(target, "target")
        self.sampler = sampler if sampler is not None else BilinearSampler()
        self.max_condition = float(max_condition)
        self.last_result: AlignStepResult | None = None

    def step(self, warp: Warp) -> AlignStepResult:
        res = forward_additive_step(
            self.template,
            self.target,
            warp,
            sampler=self.sampler,
            max_condition=self.max_condition,
        )
        self.last_result = res
        return res


def photometric_cost(
    template: np.ndarray,
    target: np.ndarray,
    warp: Warp,
    *,
    sampler: Sampler | None = None,
) -> np.ndarray:
    """
    Per-pixel, per-channel squared difference between a template patch and the warped target.

    Accepts (S,S) or (S,S,3) templates with a target of matching channel count.
    Grayscale input is replicated to three channels. Pixels warped outside the
    target get +inf, which yields zero confidence during densification.
    Returns an (S,S,3) float64 array.
    """
    tpl = np.asarray(template, dtype=np.float64)
    tgt = np.asarray(target, dtype=np.float64)
    if tpl.ndim != tgt.ndim or tpl.ndim not in (2, 3):
        raise ValueError(f"template {tpl.shape} and target {tgt.shape} must both be (H,W) or (H,W,C)")
    if tpl.ndim == 3 and tpl.shape[2] != tgt.shape[2]:
        raise ValueError("template and target channel counts differ")
    if tpl.ndim == 3 and tpl.shape[2] not in (1, 3):
        raise ValueError(f"photometric cost needs 1 or 3 channels, got {tpl.shape[2]}")
    if sampler is None:
        sampler = BilinearSampler()

    h, w = tpl.shape[:2]
    yy, xx = np.mgrid[0:h, 0:w]
    p_tpl = np.stack([xx.reshape(-1), yy.reshape(-1)], axis=-1).astype(np.float64)
    p_tgt = warp.apply(p_tpl)
    inside = is_in_image(p_tgt, tgt.shape[1], tgt.shape[0], border=0)

    tpl_px = tpl.reshape(h * w, -1)
    n_ch = tpl_px.shape[1]
    cost = np.full((h * w, n_ch), np.inf, dtype=np.float64)
    if np.any(inside):
        diff = tpl_px[inside] - sample_channels(sampler, tgt, p_tgt[inside])
        cost[inside] = diff * diff

    if n_ch == 1:
        cost = np.repeat(cost, 3, axis=1)
    return cost.reshape(h, w, 3)
