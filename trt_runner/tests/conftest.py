from __future__ import annotations

import ctypes
import itertools
import threading
from types import SimpleNamespace
from typing import Any, Callable

import numpy as np
import pytest

from trt_runner.config import RunnerConfig
from trt_runner.infrastructure.cuda_runtime import CudaRuntime


# ---------------------------------------------------------------------------
# Fake CUDA runtime (cuda.bindings.runtime)
# ---------------------------------------------------------------------------
# Device memory is backed by numpy byte arrays so that real pointers can be
# handed to ctypes.memmove.  Async copies complete immediately, which keeps
# stream order trivially intact.  Every call is appended to ``calls`` so the
# tests can assert on ordering.

CUDA_SUCCESS = 0
CUDA_ERROR_MEMORY_ALLOCATION = 2


class FakeStream:
    _ids = itertools.count(1)

    def __init__(self) -> None:
        self.handle = next(self._ids) * 0x1000
        self.destroyed = False

    def __int__(self) -> int:
        return self.handle


class FakeCudart:
    cudaError_t = SimpleNamespace(cudaSuccess=CUDA_SUCCESS, cudaErrorMemoryAllocation=CUDA_ERROR_MEMORY_ALLOCATION)
    cudaMemcpyKind = SimpleNamespace(cudaMemcpyHostToDevice="H2D", cudaMemcpyDeviceToHost="D2H")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.memory: dict[int, np.ndarray] = {}
        self.calls: list[tuple[str, Any]] = []
        # call name -> status code returned instead of success
        self.failures: dict[str, int] = {}

    def _record(self, name: str, detail: Any = None) -> int:
        with self._lock:
            self.calls.append((name, detail))
            return self.failures.get(name, CUDA_SUCCESS)

    def call_names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.calls]

    def cudaMalloc(self, size: int):
        status = self._record("cudaMalloc", size)
        if status != CUDA_SUCCESS:
            return (status, 0)
        backing = np.zeros(size, dtype=np.uint8)
        ptr = int(backing.ctypes.data)
        with self._lock:
            self.memory[ptr] = backing
        return (CUDA_SUCCESS, ptr)

    def cudaFree(self, ptr: int):
        status = self._record("cudaFree", ptr)
        if status == CUDA_SUCCESS:
            with self._lock:
                self.memory.pop(ptr, None)
        return (status,)

    def cudaStreamCreate(self):
        status = self._record("cudaStreamCreate")
        return (status, FakeStream())

    def cudaStreamSynchronize(self, stream: FakeStream):
        return (self._record("cudaStreamSynchronize", int(stream)),)

    def cudaStreamDestroy(self, stream: FakeStream):
        status = self._record("cudaStreamDestroy", int(stream))
        if status == CUDA_SUCCESS:
            stream.destroyed = True
        return (status,)

    def cudaMemcpyAsync(self, dst: int, src: int, count: int, kind: str, stream: FakeStream):
        status = self._record(f"cudaMemcpyAsync:{kind}", count)
        if status == CUDA_SUCCESS:
            ctypes.memmove(dst, src, count)
        return (status,)

    def cudaGetErrorString(self, code: int):
        return (CUDA_SUCCESS, f"fake cuda error {code}".encode())


# ---------------------------------------------------------------------------
# Fake TensorRT engine / execution context
# ---------------------------------------------------------------------------

FAKE_TRT = SimpleNamespace(
    TensorIOMode=SimpleNamespace(INPUT="INPUT", OUTPUT="OUTPUT"),
    DataType=SimpleNamespace(FLOAT="FLOAT", HALF="HALF"),
)


class FakeEngine:
    def __init__(self, tensors: list[tuple[str, str, tuple[int, ...], str]]) -> None:
        self._tensors = tensors
        self._by_name = {name: (mode, shape, dtype) for name, mode, shape, dtype in tensors}

    @property
    def num_io_tensors(self) -> int:
        return len(self._tensors)

    def get_tensor_name(self, index: int) -> str:
        return self._tensors[index][0]

    def get_tensor_mode(self, name: str) -> str:
        return self._by_name[name][0]

    def get_tensor_shape(self, name: str) -> tuple[int, ...]:
        return self._by_name[name][1]

    def get_tensor_dtype(self, name: str) -> str:
        return self._by_name[name][2]


def _float_view(ptr: int, count: int) -> np.ndarray:
    return np.ctypeslib.as_array((ctypes.c_float * count).from_address(ptr))


class FakeExecutionContext:
    """Computes ``out[b, k] = mean(input[b]) + k`` from the bound device buffers."""

    def __init__(self, engine: FakeEngine, enqueue_result: bool = True) -> None:
        self.engine = engine
        self.enqueue_result = enqueue_result
        self.input_shapes: dict[str, tuple[int, ...]] = {}
        self.addresses: dict[str, int] = {}
        # output name -> shape reported instead of the one derived from the input batch
        self.resolved_shapes: dict[str, tuple[int, ...]] = {}
        self.executions = 0

    def set_input_shape(self, name: str, shape: tuple[int, ...]) -> bool:
        self.input_shapes[name] = tuple(shape)
        return True

    def set_tensor_address(self, name: str, ptr: int) -> bool:
        self.addresses[name] = int(ptr)
        return True

    def _resolved(self, name: str, batch: int) -> tuple[int, ...]:
        shape = self.input_shapes.get(name, self.engine.get_tensor_shape(name))
        return tuple(batch if dim < 0 else dim for dim in shape)

    def get_tensor_shape(self, name: str) -> tuple[int, ...]:
        if name in self.resolved_shapes:
            return self.resolved_shapes[name]
        names = [self.engine.get_tensor_name(i) for i in range(self.engine.num_io_tensors)]
        input_name = next(n for n in names if self.engine.get_tensor_mode(n) == "INPUT")
        batch = self._resolved(input_name, batch=-1)[0]
        return self._resolved(name, batch=batch)

    def execute_async_v3(self, stream_handle: int) -> bool:
        self.executions += 1
        if not self.enqueue_result:
            return False
        names = [self.engine.get_tensor_name(i) for i in range(self.engine.num_io_tensors)]
        input_name = next(n for n in names if self.engine.get_tensor_mode(n) == "INPUT")
        output_name = next(n for n in names if self.engine.get_tensor_mode(n) == "OUTPUT")
        input_shape = self._resolved(input_name, batch=-1)
        batch = input_shape[0]
        output_shape = self._resolved(output_name, batch=batch)
        inputs = _float_view(self.addresses[input_name], int(np.prod(input_shape))).reshape(batch, -1)
        outputs = _float_view(self.addresses[output_name], int(np.prod(output_shape))).reshape(batch, -1)
        classes = outputs.shape[1]
        outputs[:] = inputs.mean(axis=1, keepdims=True) + np.arange(classes, dtype=np.float32)
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_cudart(monkeypatch: pytest.MonkeyPatch) -> FakeCudart:
    fake = FakeCudart()
    monkeypatch.setattr("trt_runner.infrastructure.cuda_runtime.cudart", fake)
    return fake


@pytest.fixture
def fake_trt(monkeypatch: pytest.MonkeyPatch) -> SimpleNamespace:
    monkeypatch.setattr("trt_runner.infrastructure.tensorrt_bindings.trt", FAKE_TRT)
    return FAKE_TRT


@pytest.fixture
def make_engine() -> Callable[..., FakeEngine]:
    def _make(
        input_shape: tuple[int, ...] = (-1, 3, 224, 224),
        output_shape: tuple[int, ...] = (-1, 1000),
        input_name: str = "data",
        output_name: str = "prob",
        input_dtype: str = "FLOAT",
        extra: list[tuple[str, str, tuple[int, ...], str]] | None = None,
        output_first: bool = False,
    ) -> FakeEngine:
        tensors = [
            (input_name, "INPUT", input_shape, input_dtype),
            (output_name, "OUTPUT", output_shape, "FLOAT"),
        ]
        if output_first:
            tensors.reverse()
        tensors.extend(extra or [])
        return FakeEngine(tensors)

    return _make


@pytest.fixture
def make_context(make_engine: Callable[..., FakeEngine]) -> Callable[..., FakeExecutionContext]:
    def _make(engine: FakeEngine | None = None, enqueue_result: bool = True, **engine_kwargs: Any) -> FakeExecutionContext:
        return FakeExecutionContext(engine or make_engine(**engine_kwargs), enqueue_result=enqueue_result)

    return _make


@pytest.fixture
def cuda_runtime(fake_cudart: FakeCudart) -> CudaRuntime:
    return CudaRuntime(track_allocations=True)


@pytest.fixture
def strict_config() -> RunnerConfig:
    return RunnerConfig(strict_enqueue=True, strict_shape_check=True, track_allocations=True)
