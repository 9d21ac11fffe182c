import numpy as np

from patchflow.core.sampling import BilinearSampler, is_in_image, sample_channels


def _ramp(w: int = 12, h: int = 10) -> np.ndarray:
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float64)
    return 2.0 * xx + 3.0 * yy + 1.0


def test_bilinear_is_exact_on_affine_ramp():
    img = _ramp()
    rng = np.random.default_rng(0)
    pts = np.stack([rng.uniform(0, 11, 200), rng.uniform(0, 9, 200)], axis=-1)
    vals = BilinearSampler().sample(img, pts)
    assert np.max(np.abs(vals - (2.0 * pts[:, 0] + 3.0 * pts[:, 1] + 1.0))) < 1e-9


def test_gradient_of_ramp():
    img = _ramp()
    pts = np.array([[1.0, 1.0], [4.3, 2.7], [9.9, 7.5]])
    g = BilinearSampler().gradient(img, pts)
    assert g.shape == (3, 2)
    assert np.allclose(g, [[2.0, 3.0]] * 3)


def test_empty_queries():
    s = BilinearSampler()
    assert s.sample(_ramp(), np.zeros((0, 2))).shape == (0,)
    assert s.gradient(_ramp(), np.zeros((0, 2))).shape == (0, 2)


def test_is_in_image_with_and_without_border():
    pts = np.array([[0.0, 0.0], [11.0, 9.0], [11.5, 0.0], [-0.1, 3.0]])
    assert is_in_image(pts, 12, 10).tolist() == [True, True, False, False]

    pts = np.array([[1.0, 1.0], [0.5, 1.0], [10.0, 8.0], [10.2, 8.0]])
    assert is_in_image(pts, 12, 10, border=1).tolist() == [True, False, True, False]


def test_sample_channels_color_and_gray():
    img = np.stack([_ramp(), 2.0 * _ramp(), np.zeros((10, 12))], axis=-1)
    pts = np.array([[2.5, 3.5]])
    v = sample_channels(BilinearSampler(), img, pts)
    ref = 2.0 * 2.5 + 3.0 * 3.5 + 1.0
    assert v.shape == (1, 3)
    assert np.allclose(v, [[ref, 2.0 * ref, 0.0]])
    assert sample_channels(BilinearSampler(), _ramp(), pts).shape == (1, 1)
