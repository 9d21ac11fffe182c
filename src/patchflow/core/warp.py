from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class Warp(Protocol):
    """
    Parametric motion model used by the aligner.

    A warp maps template-local coordinates (x right, y down, pixel centers at
    integers) into target-image coordinates. Parameters live in `params` and
    are only ever changed through `update_forward_additive`.
    """

    params: np.ndarray

    def apply(self, points: np.ndarray) -> np.ndarray: ...

    def jacobian(self, points: np.ndarray) -> np.ndarray: ...

    def num_parameters(self) -> int: ...

    def update_forward_additive(self, delta: np.ndarray) -> None: ...


def _as_points(points: np.ndarray) -> np.ndarray:
    return np.asarray(points, dtype=np.float64).reshape(-1, 2)


def _checked_params(params: np.ndarray | None, n: int) -> np.ndarray:
    if params is None:
        return np.zeros((n,), dtype=np.float64)
    p = np.array(params, dtype=np.float64).reshape(-1)
    if p.size != n:
        raise ValueError(f"expected {n} warp parameters, got {p.size}")
    return p


def _apply_affine_matrix(M: np.ndarray, points: np.ndarray) -> np.ndarray:
    pts = _as_points(points)
    return pts @ M[:2, :2].T + M[:2, 2][None, :]


class ParametricWarp(ABC):
    """Shared state of the matrix-based warp families; subclasses set `n_params`."""

    n_params = 0

    params: np.ndarray

    def __post_init__(self) -> None:
        self.params = _checked_params(self.params, self.n_params)

    def num_parameters(self) -> int:
        return self.n_params

    def update_forward_additive(self, delta: np.ndarray) -> None:
        d = np.asarray(delta, dtype=np.float64).reshape(-1)
        if d.size != self.n_params:
            raise ValueError(f"delta must have {self.n_params} entries, got {d.size}")
        self.params += d

    @abstractmethod
    def matrix(self) -> np.ndarray: ...

    @abstractmethod
    def jacobian(self, points: np.ndarray) -> np.ndarray: ...

    def apply(self, points: np.ndarray) -> np.ndarray:
        return _apply_affine_matrix(self.matrix(), points)

    def copy(self):
        return type(self)(self.params.copy())


@dataclass(eq=False)
class WarpTranslation(ParametricWarp):
    """Pure 2D translation, p = (tx, ty)."""

    params: np.ndarray = None  # type: ignore[assignment]
    n_params = 2

    @classmethod
    def translated(cls, tx: float, ty: float) -> WarpTranslation:
        return cls(np.array([tx, ty], dtype=np.float64))

    def matrix(self) -> np.ndarray:
        tx, ty = self.params
        return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]], dtype=np.float64)

    def apply(self, points: np.ndarray) -> np.ndarray:
        return _as_points(points) + self.params[None, :]

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        n = _as_points(points).shape[0]
        return np.broadcast_to(np.eye(2, dtype=np.float64), (n, 2, 2)).copy()


@dataclass(eq=False)
class WarpEuclidean(ParametricWarp):
    """Rotation about the template origin followed by translation, p = (theta, tx, ty)."""

    params: np.ndarray = None  # type: ignore[assignment]
    n_params = 3

    @classmethod
    def translated(cls, tx: float, ty: float) -> WarpEuclidean:
        return cls(np.array([0.0, tx, ty], dtype=np.float64))

    def matrix(self) -> np.ndarray:
        theta, tx, ty = self.params
        c, s = np.cos(theta), np.sin(theta)
        return np.array([[c, -s, tx], [s, c, ty], [0.0, 0.0, 1.0]], dtype=np.float64)

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        x, y = pts[:, 0], pts[:, 1]
        c, s = np.cos(self.params[0]), np.sin(self.params[0])
        J = np.zeros((pts.shape[0], 2, 3), dtype=np.float64)
        J[:, 0, 0] = -s * x - c * y
        J[:, 1, 0] = c * x - s * y
        J[:, 0, 1] = 1.0
        J[:, 1, 2] = 1.0
        return J


@dataclass(eq=False)
class WarpSimilarity(ParametricWarp):
    """
    Scaled rotation + translation, p = (a, b, tx, ty):

      x' = (1 + a) x - b y + tx
      y' = b x + (1 + a) y + ty
    """

    params: np.ndarray = None  # type: ignore[assignment]
    n_params = 4

    @classmethod
    def translated(cls, tx: float, ty: float) -> WarpSimilarity:
        return cls(np.array([0.0, 0.0, tx, ty], dtype=np.float64))

    def matrix(self) -> np.ndarray:
        a, b, tx, ty = self.params
        return np.array([[1.0 + a, -b, tx], [b, 1.0 + a, ty], [0.0, 0.0, 1.0]], dtype=np.float64)

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        x, y = pts[:, 0], pts[:, 1]
        J = np.zeros((pts.shape[0], 2, 4), dtype=np.float64)
        J[:, 0, 0] = x
        J[:, 0, 1] = -y
        J[:, 0, 2] = 1.0
        J[:, 1, 0] = y
        J[:, 1, 1] = x
        J[:, 1, 3] = 1.0
        return J


@dataclass(eq=False)
class WarpAffine(ParametricWarp):
    """
    Full affine motion, p = (p1, ..., p6):

      x' = (1 + p1) x + p3 y + p5
      y' = p2 x + (1 + p4) y + p6
    """

    params: np.ndarray = None  # type: ignore[assignment]
    n_params = 6

    @classmethod
    def translated(cls, tx: float, ty: float) -> WarpAffine:
        return cls(np.array([0.0, 0.0, 0.0, 0.0, tx, ty], dtype=np.float64))

    def matrix(self) -> np.ndarray:
        p1, p2, p3, p4, p5, p6 = self.params
        return np.array([[1.0 + p1, p3, p5], [p2, 1.0 + p4, p6], [0.0, 0.0, 1.0]], dtype=np.float64)

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        x, y = pts[:, 0], pts[:, 1]
        J = np.zeros((pts.shape[0], 2, 6), dtype=np.float64)
        J[:, 0, 0] = x
        J[:, 0, 2] = y
        J[:, 0, 4] = 1.0
        J[:, 1, 1] = x
        J[:, 1, 3] = y
        J[:, 1, 5] = 1.0
        return J


@dataclass(eq=False)
class WarpHomography(ParametricWarp):
    """
    Projective warp with 8 parameters:

      H = [[1 + p1, p2, p3], [p4, 1 + p5, p6], [p7, p8, 1]]
    """

    params: np.ndarray = None  # type: ignore[assignment]
    n_params = 8

    @classmethod
    def translated(cls, tx: float, ty: float) -> WarpHomography:
        p = np.zeros((8,), dtype=np.float64)
        p[2] = tx
        p[5] = ty
        return cls(p)

    def matrix(self) -> np.ndarray:
        p = self.params
        return np.array(
            [[1.0 + p[0], p[1], p[2]], [p[3], 1.0 + p[4], p[5]], [p[6], p[7], 1.0]],
            dtype=np.float64,
        )

    def _project(self, pts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        H = self.matrix()
        ph = np.concatenate([pts, np.ones((pts.shape[0], 1), dtype=np.float64)], axis=1)
        uvw = ph @ H.T
        return uvw[:, :2] / uvw[:, 2:3], uvw[:, 2]

    def apply(self, points: np.ndarray) -> np.ndarray:
        uv, _w = self._project(_as_points(points))
        return uv

    def jacobian(self, points: np.ndarray) -> np.ndarray:
        pts = _as_points(points)
        x, y = pts[:, 0], pts[:, 1]
        uv, w = self._project(pts)
        u, v = uv[:, 0], uv[:, 1]
        inv_w = 1.0 / w
        J = np.zeros((pts.shape[0], 2, 8), dtype=np.float64)
        J[:, 0, 0] = x * inv_w
        J[:, 0, 1] = y * inv_w
        J[:, 0, 2] = inv_w
        J[:, 0, 6] = -x * u * inv_w
        J[:, 0, 7] = -y * u * inv_w
        J[:, 1, 3] = x * inv_w
        J[:, 1, 4] = y * inv_w
        J[:, 1, 5] = inv_w
        J[:, 1, 6] = -x * v * inv_w
        J[:, 1, 7] = -y * v * inv_w
        return J


WARP_TYPES: dict[str, type[ParametricWarp]] = {
    "translation": WarpTranslation,
    "euclidean": WarpEuclidean,
    "similarity": WarpSimilarity,
    "affine": WarpAffine,
    "homography": WarpHomography,
}


def make_warp(kind: str, tx: float = 0.0, ty: float = 0.0) -> ParametricWarp:
    """Build a warp of the given family, initialised as a pure translation."""
    try:
        cls = WARP_TYPES[kind]
    except KeyError:
        raise ValueError(f"unknown warp type: {kind}") from None
    return cls.translated(tx, ty)
