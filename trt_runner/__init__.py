"""Single-pass TensorRT inference over a caller-owned execution context."""

from trt_runner.application.inference_runner import InferenceRunner, default_runner, run_inference
from trt_runner.config import RunnerConfig, load_runner_config
from trt_runner.core.inference_shape import InferenceShape
from trt_runner.core.inference_stats import InferenceStats
from trt_runner.errors import (
    BindingCountError,
    CudaError,
    CudaUnavailableError,
    EnqueueError,
    HostBufferError,
    InferenceError,
    PreconditionError,
    ShapeError,
    TensorRTUnavailableError,
    UnknownTensorError,
)

__all__ = [
    "BindingCountError",
    "CudaError",
    "CudaUnavailableError",
    "EnqueueError",
    "HostBufferError",
    "InferenceError",
    "InferenceRunner",
    "InferenceShape",
    "InferenceStats",
    "PreconditionError",
    "RunnerConfig",
    "ShapeError",
    "TensorRTUnavailableError",
    "UnknownTensorError",
    "default_runner",
    "load_runner_config",
    "run_inference",
]
