from patchflow.core.align import AlignStepResult, ForwardAdditiveAligner, forward_additive_step, photometric_cost
from patchflow.core.densify import DenseAccumulator, DensificationEngine, PatchSnapshot, confidence_weights
from patchflow.core.normalize import coverage_mask, normalize_flow
from patchflow.core.patch import Patch, patch_grid
from patchflow.core.sampling import BilinearSampler, Sampler, is_in_image
from patchflow.core.warp import (
    Warp,
    WarpAffine,
    WarpEuclidean,
    WarpHomography,
    WarpSimilarity,
    WarpTranslation,
    make_warp,
)

__all__ = [
    "AlignStepResult",
    "ForwardAdditiveAligner",
    "forward_additive_step",
    "photometric_cost",
    "DenseAccumulator",
    "DensificationEngine",
    "PatchSnapshot",
    "confidence_weights",
    "coverage_mask",
    "normalize_flow",
    "Patch",
    "patch_grid",
    "BilinearSampler",
    "Sampler",
    "is_in_image",
    "Warp",
    "WarpAffine",
    "WarpEuclidean",
    "WarpHomography",
    "WarpSimilarity",
    "WarpTranslation",
    "make_warp",
]
