from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import numpy as np

from logger.filtered_logger import LogChannel, debug
from trt_runner.enums import MemcpyDirection
from trt_runner.errors import CudaError, CudaUnavailableError, HostBufferError

try:
    from cuda.bindings import runtime as cudart
except Exception:  # pragma: no cover
    cudart = None  # type: ignore[assignment]

# cudaErrorInvalidValue, reported for frees of pointers this runtime never handed out.
_CUDA_ERROR_INVALID_VALUE = 1


@dataclass(frozen=True)
class DeviceAllocation:
    ptr: int
    nbytes: int


def _format_cuda_error(runtime: Any, code: Any) -> str:
    try:
        raw = runtime.cudaGetErrorString(code)
    except Exception:
        return ""
    desc = raw[1] if isinstance(raw, tuple) and len(raw) > 1 else raw
    if isinstance(desc, bytes):
        desc = desc.decode("utf-8", "ignore")
    return str(desc) if desc else ""


class CudaRuntime:
    """Checked wrappers over the CUDA runtime calls used by one inference pass.

    Each call's status is compared against ``cudaSuccess`` and turned into a
    :class:`CudaError` on failure.  Live device allocations are kept in a
    ledger so callers can assert that malloc/free stay balanced.
    """

    def __init__(self, track_allocations: bool = True) -> None:
        self._track_allocations = track_allocations
        self._lock = threading.Lock()
        self._live: dict[int, int] = {}
        self.malloc_calls = 0
        self.free_calls = 0

    @staticmethod
    def _runtime() -> Any:
        if cudart is None:
            raise CudaUnavailableError()
        return cudart

    def _check(self, call: str, status: Any) -> Any:
        """Raise on a non-success status and unwrap the remaining return values."""
        runtime = self._runtime()
        if isinstance(status, tuple):
            code, values = status[0], status[1:]
        else:
            code, values = status, ()
        if code != runtime.cudaError_t.cudaSuccess:
            raise CudaError(call, int(code), _format_cuda_error(runtime, code))
        if not values:
            return None
        return values[0] if len(values) == 1 else values

    # ------------------------------------------------------------------
    # Device memory
    # ------------------------------------------------------------------

    def malloc(self, nbytes: int) -> DeviceAllocation:
        runtime = self._runtime()
        ptr = int(self._check("cudaMalloc", runtime.cudaMalloc(int(nbytes))))
        allocation = DeviceAllocation(ptr=ptr, nbytes=int(nbytes))
        with self._lock:
            self.malloc_calls += 1
            if self._track_allocations:
                self._live[ptr] = allocation.nbytes
        debug(LogChannel.CUDA, f"cudaMalloc {allocation.nbytes} bytes -> 0x{ptr:x}")
        return allocation

    def free(self, allocation: DeviceAllocation) -> None:
        runtime = self._runtime()
        if self._track_allocations:
            with self._lock:
                known = allocation.ptr in self._live
            if not known:
                raise CudaError(
                    "cudaFree",
                    _CUDA_ERROR_INVALID_VALUE,
                    f"0x{allocation.ptr:x} is not a live allocation",
                )
        self._check("cudaFree", runtime.cudaFree(allocation.ptr))
        with self._lock:
            self.free_calls += 1
            self._live.pop(allocation.ptr, None)
        debug(LogChannel.CUDA, f"cudaFree 0x{allocation.ptr:x} ({allocation.nbytes} bytes)")

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._live)

    @property
    def outstanding_bytes(self) -> int:
        with self._lock:
            return sum(self._live.values())

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def stream_create(self) -> Any:
        runtime = self._runtime()
        stream = self._check("cudaStreamCreate", runtime.cudaStreamCreate())
        debug(LogChannel.CUDA, f"cudaStreamCreate -> {int(stream)}")
        return stream

    def stream_synchronize(self, stream: Any) -> None:
        runtime = self._runtime()
        self._check("cudaStreamSynchronize", runtime.cudaStreamSynchronize(stream))

    def stream_destroy(self, stream: Any) -> None:
        runtime = self._runtime()
        self._check("cudaStreamDestroy", runtime.cudaStreamDestroy(stream))
        debug(LogChannel.CUDA, f"cudaStreamDestroy {int(stream)}")

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def memcpy_htod_async(self, dst: DeviceAllocation, host: np.ndarray, nbytes: int, stream: Any) -> None:
        self._memcpy_async(MemcpyDirection.HOST_TO_DEVICE, dst, host, nbytes, stream)

    def memcpy_dtoh_async(self, host: np.ndarray, src: DeviceAllocation, nbytes: int, stream: Any) -> None:
        if not host.flags.writeable:
            raise HostBufferError("destination host buffer is read-only")
        self._memcpy_async(MemcpyDirection.DEVICE_TO_HOST, src, host, nbytes, stream)

    def _memcpy_async(
        self,
        direction: MemcpyDirection,
        device: DeviceAllocation,
        host: np.ndarray,
        nbytes: int,
        stream: Any,
    ) -> None:
        runtime = self._runtime()
        nbytes = int(nbytes)
        if not host.flags.c_contiguous:
            raise HostBufferError("host buffer must be C-contiguous")
        if nbytes > host.nbytes:
            raise HostBufferError(f"copy of {nbytes} bytes exceeds host buffer of {host.nbytes} bytes")
        if nbytes > device.nbytes:
            raise CudaError(
                "cudaMemcpyAsync",
                _CUDA_ERROR_INVALID_VALUE,
                f"copy of {nbytes} bytes exceeds device allocation of {device.nbytes} bytes",
            )
        host_ptr = int(host.ctypes.data)
        if direction is MemcpyDirection.HOST_TO_DEVICE:
            status = runtime.cudaMemcpyAsync(
                device.ptr,
                host_ptr,
                nbytes,
                runtime.cudaMemcpyKind.cudaMemcpyHostToDevice,
                stream,
            )
        else:
            status = runtime.cudaMemcpyAsync(
                host_ptr,
                device.ptr,
                nbytes,
                runtime.cudaMemcpyKind.cudaMemcpyDeviceToHost,
                stream,
            )
        self._check("cudaMemcpyAsync", status)
