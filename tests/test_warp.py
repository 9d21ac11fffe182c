import numpy as np
import pytest

from patchflow.core.warp import WARP_TYPES, ParametricWarp, Warp, WarpHomography, WarpTranslation, make_warp


def _random_params(cls, rng):
    p = rng.normal(scale=0.02, size=cls.n_params)
    if cls is WarpHomography:
        p[6:] *= 0.05
    else:
        p[-2:] = rng.uniform(-3.0, 3.0, size=2)
    return p


@pytest.mark.parametrize("kind", sorted(WARP_TYPES))
def test_identity_warp_keeps_points(kind):
    warp = WARP_TYPES[kind]()
    pts = np.array([[0.0, 0.0], [3.5, -2.0], [10.0, 7.25]])
    assert isinstance(warp, Warp)
    assert warp.num_parameters() == WARP_TYPES[kind].n_params
    assert np.allclose(warp.apply(pts), pts)


@pytest.mark.parametrize("kind", sorted(WARP_TYPES))
def test_translated_moves_origin(kind):
    warp = make_warp(kind, 3.0, -2.0)
    assert np.allclose(warp.apply(np.zeros((1, 2))), [[3.0, -2.0]])
    assert np.allclose(warp.matrix()[:2, 2], [3.0, -2.0])


@pytest.mark.parametrize("kind", sorted(WARP_TYPES))
def test_jacobian_matches_finite_differences(kind):
    rng = np.random.default_rng(1)
    cls = WARP_TYPES[kind]
    warp = cls(_random_params(cls, rng))
    pts = rng.uniform(0.0, 20.0, size=(50, 2))

    J = warp.jacobian(pts)
    assert J.shape == (50, 2, cls.n_params)

    h = 1e-6
    for k in range(cls.n_params):
        step = np.zeros(cls.n_params)
        step[k] = h
        plus = cls(warp.params + step)
        minus = cls(warp.params - step)
        num = (plus.apply(pts) - minus.apply(pts)) / (2.0 * h)
        assert np.max(np.abs(num - J[:, :, k])) < 1e-5


def test_update_forward_additive_is_plain_sum():
    warp = WarpTranslation.translated(1.0, 2.0)
    params_ref = warp.params
    warp.update_forward_additive(np.array([0.5, -0.25]))
    assert np.allclose(warp.params, [1.5, 1.75])
    # In-place update of the owned parameter vector.
    assert warp.params is params_ref


def test_update_rejects_wrong_size():
    warp = WarpTranslation()
    with pytest.raises(ValueError):
        warp.update_forward_additive(np.zeros(3))
    with pytest.raises(ValueError):
        WarpTranslation(np.zeros(4))


def test_make_warp_rejects_unknown_kind():
    with pytest.raises(ValueError):
        make_warp("spline")


def test_copy_is_independent():
    warp = make_warp("affine", 1.0, 1.0)
    other = warp.copy()
    other.update_forward_additive(np.ones(6))
    assert np.allclose(warp.params, [0, 0, 0, 0, 1, 1])


def test_parametric_warp_base_is_abstract():
    with pytest.raises(TypeError):
        ParametricWarp()

    class MatrixOnly(ParametricWarp):
        n_params = 2

        def matrix(self) -> np.ndarray:
            return np.eye(3)

    with pytest.raises(TypeError):
        MatrixOnly()
