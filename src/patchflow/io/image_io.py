from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def _load(path: str | Path, mode: str) -> np.ndarray:
    with Image.open(Path(path)) as im:
        im = im.convert(mode)
        arr = np.asarray(im, dtype=np.float32)
    return arr / 255.0


def load_intensity_f32(path: str | Path) -> np.ndarray:
    """Load an image as a (H,W) float32 intensity array in [0, 1]."""
    return _load(path, "L")


def load_rgb_f32(path: str | Path) -> np.ndarray:
    """Load an image as a (H,W,3) float32 array in [0, 1]."""
    return _load(path, "RGB")


def to_intensity(image: np.ndarray) -> np.ndarray:
    """
    Single-channel float64 view of an image used for alignment.

    (H,W,3) input is reduced with Rec. 601 luma weights, matching Pillow's "L" conversion.
    """
    img = np.asarray(image, dtype=np.float64)
    if img.ndim == 2:
        return img
    if img.ndim == 3 and img.shape[2] == 3:
        return img @ np.array([0.299, 0.587, 0.114], dtype=np.float64)
    if img.ndim == 3 and img.shape[2] == 1:
        return img[:, :, 0]
    raise ValueError(f"expected (H,W), (H,W,1) or (H,W,3) image, got shape {img.shape}")
