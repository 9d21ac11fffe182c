from patchflow import config
from patchflow.api import DenseFlowResult, estimate_dense_flow
from patchflow.config import DensifyConfig, FlowConfig, load_flow_config, parse_flow_config
from patchflow.core import DensificationEngine, ForwardAdditiveAligner, PatchSnapshot, forward_additive_step, normalize_flow

__all__ = [
    "config",
    "DenseFlowResult",
    "estimate_dense_flow",
    "DensifyConfig",
    "FlowConfig",
    "load_flow_config",
    "parse_flow_config",
    "DensificationEngine",
    "ForwardAdditiveAligner",
    "PatchSnapshot",
    "forward_additive_step",
    "normalize_flow",
]
