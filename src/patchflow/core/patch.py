from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from patchflow.core.warp import ParametricWarp, WarpTranslation


def patch_grid(width: int, height: int, patch_size: int, spacing: int) -> np.ndarray:
    """
    Midpoints (N,2) int32 of a regular grid of patches fully contained in a WxH image.

    Rows are ordered top to bottom, then left to right.
    """
    if patch_size < 1 or spacing < 1:
        raise ValueError("patch_size and spacing must be >= 1")
    half = patch_size // 2
    lo = half
    hi_x = width - (patch_size - half)
    hi_y = height - (patch_size - half)
    if hi_x < lo or hi_y < lo:
        return np.zeros((0, 2), dtype=np.int32)
    xs = np.arange(lo, hi_x + 1, spacing, dtype=np.int32)
    ys = np.arange(lo, hi_y + 1, spacing, dtype=np.int32)
    gx, gy = np.meshgrid(xs, ys)
    return np.stack([gx.reshape(-1), gy.reshape(-1)], axis=-1)


@dataclass(eq=False)
class Patch:
    """
    A square tracking unit of size `patch_size` anchored at integer `midpoint` (x, y).

    The warp maps patch-local coordinates (0..S-1) into the target image, so a
    fresh patch starts as a translation by its top-left corner `origin`.
    """

    midpoint: tuple[int, int]
    patch_size: int
    warp: ParametricWarp | None = None
    cost: np.ndarray | None = None  # (S,S,3)
    iterations: int = 0
    degenerate: bool = False
    history: list[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.midpoint = (int(self.midpoint[0]), int(self.midpoint[1]))
        if self.warp is None:
            ox, oy = self.origin
            self.warp = WarpTranslation.translated(float(ox), float(oy))

    @property
    def origin(self) -> tuple[int, int]:
        half = self.patch_size // 2
        return self.midpoint[0] - half, self.midpoint[1] - half

    @property
    def center_local(self) -> np.ndarray:
        half = float(self.patch_size // 2)
        return np.array([[half, half]], dtype=np.float64)

    @property
    def flow(self) -> np.ndarray:
        """Displacement (fx, fy) of the patch midpoint under the current warp."""
        assert self.warp is not None
        moved = self.warp.apply(self.center_local)[0]
        return moved - np.asarray(self.midpoint, dtype=np.float64)

    def extract(self, image: np.ndarray) -> np.ndarray:
        """Copy the (S,S[,C]) template region of `image`; the patch must lie fully inside."""
        img = np.asarray(image)
        ox, oy = self.origin
        s = self.patch_size
        if ox < 0 or oy < 0 or ox + s > img.shape[1] or oy + s > img.shape[0]:
            raise ValueError(f"patch at {self.midpoint} (size {s}) is not inside image {img.shape[:2]}")
        return img[oy : oy + s, ox : ox + s].copy()
