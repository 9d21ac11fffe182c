from __future__ import annotations

import numpy as np

from patchflow.core.align import ForwardAdditiveAligner, forward_additive_step, photometric_cost
from patchflow.core.warp import WarpAffine, WarpTranslation


def _smooth(xx: np.ndarray, yy: np.ndarray) -> np.ndarray:
    return np.sin(xx / 5.0) + np.cos(yy / 6.0) + 0.5 * np.sin((xx + 2.0 * yy) / 9.0)


def _translated_pair(dx: float, dy: float, size: int = 64) -> tuple[np.ndarray, np.ndarray]:
    yy, xx = np.mgrid[0:size, 0:size].astype(np.float64)
    template = _smooth(xx, yy)
    target = _smooth(xx - dx, yy - dy)  # target(x + d) == template(x)
    return template, target


def _run(aligner: ForwardAdditiveAligner, warp, max_iterations: int = 30) -> list[float]:
    errors = []
    for _ in range(max_iterations):
        res = aligner.step(warp)
        errors.append(res.sum_squared_errors)
        assert not res.degenerate
        if np.linalg.norm(res.delta) < 1e-5:
            break
    return errors


def test_pure_translation_converges():
    dx, dy = 1.3, -0.7
    template, target = _translated_pair(dx, dy)
    ox, oy, s = 22, 22, 21
    patch = template[oy : oy + s, ox : ox + s]

    warp = WarpTranslation.translated(ox, oy)
    errors = _run(ForwardAdditiveAligner(patch, target), warp)

    assert len(errors) < 30
    assert errors[-1] < errors[0]
    assert np.max(np.abs(warp.params - [ox + dx, oy + dy])) < 1e-2


def test_affine_warp_recovers_translation_at_patch_center():
    dx, dy = -0.8, 0.6
    template, target = _translated_pair(dx, dy)
    ox, oy, s = 20, 24, 21
    patch = template[oy : oy + s, ox : ox + s]

    warp = WarpAffine.translated(ox, oy)
    _run(ForwardAdditiveAligner(patch, target), warp)

    center = np.array([[10.0, 10.0]])
    moved = warp.apply(center)[0]
    assert np.max(np.abs(moved - [ox + 10.0 + dx, oy + 10.0 + dy])) < 3e-2


def test_constant_images_report_degenerate_step():
    template = np.full((15, 15), 0.5)
    target = np.full((40, 40), 0.5)
    warp = WarpTranslation.translated(10.0, 10.0)

    res = forward_additive_step(template, target, warp)

    assert res.degenerate
    assert res.delta is None
    assert res.num_constraints == 13 * 13
    assert res.sum_squared_errors == 0.0
    assert np.all(np.isfinite(warp.params))
    assert np.allclose(warp.params, [10.0, 10.0])


def test_out_of_bounds_pixels_are_excluded_from_counts():
    rng = np.random.default_rng(3)
    template = rng.uniform(size=(10, 10))
    target = rng.uniform(size=(20, 20))
    # Interior template columns 1..8 land on 16..23; only 16..18 keep a 1px margin.
    warp = WarpTranslation.translated(15.0, 0.0)

    res = forward_additive_step(template, target, warp, apply=False)

    assert res.num_constraints == 3 * 8
    assert np.allclose(warp.params, [15.0, 0.0])


def test_fully_outside_is_degenerate_without_constraints():
    rng = np.random.default_rng(4)
    warp = WarpTranslation.translated(1000.0, 1000.0)
    res = forward_additive_step(rng.uniform(size=(9, 9)), rng.uniform(size=(30, 30)), warp)
    assert res.degenerate
    assert res.num_constraints == 0
    assert np.isnan(res.mean_squared_error)
    assert np.allclose(warp.params, [1000.0, 1000.0])


def test_apply_false_returns_delta_only():
    template, target = _translated_pair(0.5, 0.5)
    patch = template[20:41, 20:41]
    warp = WarpTranslation.translated(20.0, 20.0)
    res = forward_additive_step(patch, target, warp, apply=False)
    assert res.delta is not None
    assert res.delta.shape == (2,)
    assert np.allclose(warp.params, [20.0, 20.0])


def test_photometric_cost_zero_on_exact_match_and_inf_outside():
    rng = np.random.default_rng(5)
    image = rng.uniform(size=(30, 30))
    patch = image[5:12, 5:12]

    cost = photometric_cost(patch, image, WarpTranslation.translated(5.0, 5.0))
    assert cost.shape == (7, 7, 3)
    assert np.allclose(cost, 0.0)

    cost = photometric_cost(patch, image, WarpTranslation.translated(26.0, 5.0))
    # Local columns 0..3 map to 26..29, the rest falls outside the 30px image.
    assert np.all(np.isfinite(cost[:, :4]))
    assert np.all(np.isinf(cost[:, 4:]))


def test_photometric_cost_per_channel():
    rng = np.random.default_rng(6)
    image = rng.uniform(size=(20, 20, 3))
    patch = image[2:7, 3:8].copy()
    patch[..., 1] += 0.5

    cost = photometric_cost(patch, image, WarpTranslation.translated(3.0, 2.0))
    assert np.allclose(cost[..., 0], 0.0)
    assert np.allclose(cost[..., 1], 0.25)
    assert np.allclose(cost[..., 2], 0.0)
