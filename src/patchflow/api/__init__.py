from patchflow.api.dense_flow import DenseFlowResult, estimate_dense_flow, iterate_patch, make_patches

__all__ = [
    "DenseFlowResult",
    "estimate_dense_flow",
    "iterate_patch",
    "make_patches",
]
