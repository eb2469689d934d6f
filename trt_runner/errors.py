"""Exceptions raised by a single inference pass.

Every failure propagates to the caller; nothing is retried and the process is
never aborted.
"""

from __future__ import annotations


class InferenceError(RuntimeError):
    """Base class for all runner failures."""


class PreconditionError(InferenceError):
    """The call was rejected before any device resource was created."""


class BindingCountError(PreconditionError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"engine exposes {actual} bindings, expected exactly {expected}")
        self.expected = expected
        self.actual = actual


class UnknownTensorError(PreconditionError):
    def __init__(self, name: str, reason: str, available: list[str] | None = None) -> None:
        message = f"tensor '{name}': {reason}"
        if available:
            message += f" (engine tensors: {', '.join(available)})"
        super().__init__(message)
        self.name = name
        self.available = list(available or [])


class ShapeError(PreconditionError):
    pass


class HostBufferError(PreconditionError):
    pass


class CudaError(InferenceError):
    """A CUDA runtime call returned something other than cudaSuccess."""

    def __init__(self, call: str, code: int, message: str = "") -> None:
        text = f"{call} failed with status={code}"
        if message:
            text += f" ({message})"
        super().__init__(text)
        self.call = call
        self.code = code


class CudaUnavailableError(CudaError):
    def __init__(self) -> None:
        super().__init__("import cuda.bindings.runtime", -1, "cuda-python is not installed")


class TensorRTUnavailableError(InferenceError):
    pass


class EnqueueError(InferenceError):
    """execute_async_v3 reported failure; the output buffer contents are undefined."""
