from __future__ import annotations

from typing import Protocol

import numpy as np


class Sampler(Protocol):
    """Intensity and gradient lookup at real-valued (x, y) image coordinates."""

    def sample(self, image: np.ndarray, points: np.ndarray) -> np.ndarray: ...

    def gradient(self, image: np.ndarray, points: np.ndarray) -> np.ndarray: ...


def is_in_image(points: np.ndarray, width: int, height: int, border: int = 0) -> np.ndarray:
    """
    Mask of points whose bilinear footprint, grown by `border` pixels, stays inside a WxH image.

    A point (x, y) is accepted when border <= x <= width - 1 - border (same for y),
    so that every bilinear tap, shifted by up to `border` pixels, is a valid pixel.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    x = pts[:, 0]
    y = pts[:, 1]
    b = float(border)
    return (x >= b) & (x <= width - 1 - b) & (y >= b) & (y <= height - 1 - b)


class BilinearSampler:
    """
    Bilinear interpolation on a single-channel float image.

    The gradient is the central difference of bilinear samples one pixel apart,
    hence callers must keep a 1-pixel margin (see `is_in_image`).
    """

    def sample(self, image: np.ndarray, points: np.ndarray) -> np.ndarray:
        from scipy.ndimage import map_coordinates  # type: ignore

        img = np.asarray(image, dtype=np.float64)
        if img.ndim != 2:
            raise ValueError(f"expected a 2D intensity image, got shape {img.shape}")
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if pts.shape[0] == 0:
            return np.zeros((0,), dtype=np.float64)
        # map_coordinates indexes (row, col) = (y, x).
        coords = np.stack([pts[:, 1], pts[:, 0]], axis=0)
        return map_coordinates(img, coords, order=1, mode="nearest", prefilter=False)

    def gradient(self, image: np.ndarray, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        n = pts.shape[0]
        if n == 0:
            return np.zeros((0, 2), dtype=np.float64)
        dx = np.array([1.0, 0.0], dtype=np.float64)
        dy = np.array([0.0, 1.0], dtype=np.float64)
        probes = np.concatenate([pts + dx, pts - dx, pts + dy, pts - dy], axis=0)
        s = self.sample(image, probes)
        gx = 0.5 * (s[:n] - s[n : 2 * n])
        gy = 0.5 * (s[2 * n : 3 * n] - s[3 * n :])
        return np.stack([gx, gy], axis=-1)


def sample_channels(sampler: Sampler, image: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Sample every channel of an (H,W) or (H,W,C) image; returns (N,C)."""
    img = np.asarray(image)
    if img.ndim == 2:
        return sampler.sample(img, points)[:, None]
    if img.ndim != 3:
        raise ValueError(f"expected (H,W) or (H,W,C) image, got shape {img.shape}")
    return np.stack([sampler.sample(img[:, :, c], points) for c in range(img.shape[2])], axis=-1)
