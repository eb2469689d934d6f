from __future__ import annotations

import threading
import time
from typing import Any, Callable

import numpy as np

from logger.filtered_logger import LogChannel, debug, warning
from trt_runner.config import RunnerConfig, load_runner_config
from trt_runner.core.binding_table import BindingTable
from trt_runner.core.inference_shape import InferenceShape
from trt_runner.core.inference_stats import InferenceStats
from trt_runner.enums import TensorRole
from trt_runner.errors import EnqueueError, HostBufferError, InferenceError
from trt_runner.infrastructure.cuda_runtime import CudaRuntime, DeviceAllocation
from trt_runner.infrastructure.tensorrt_bindings import EngineBindings


class InferenceRunner:
    """Runs one blocking inference pass through a borrowed TensorRT execution context.

    Each call allocates its own device buffers and CUDA stream and releases
    them before returning, on success and on failure alike.  Nothing is
    cached between calls, so calls on distinct execution contexts may run
    concurrently; sharing one context across threads is left to the caller.
    """

    def __init__(self, cuda: CudaRuntime | None = None, config: RunnerConfig | None = None) -> None:
        self.config = config if config is not None else load_runner_config()
        self.cuda = cuda if cuda is not None else CudaRuntime(track_allocations=self.config.track_allocations)

    def run(
        self,
        context: Any,
        input: np.ndarray,
        output: np.ndarray,
        input_name: str,
        output_name: str,
        batch_size: int,
        channel: int,
        height: int,
        width: int,
        num_classes: int,
    ) -> InferenceStats:
        """Copy input to the device, execute the engine and copy the result into output.

        Steps, all on one stream:
        1. check the binding count and resolve both slots by name
        2. allocate the input and output device buffers, create the stream
        3. enqueue H2D copy, ``execute_async_v3`` and D2H copy, then synchronize
        4. destroy the stream and free both buffers

        Precondition failures are raised before any device allocation.
        """
        start_ns = self._perf_counter_ns()
        shape = InferenceShape(batch_size, channel, height, width, num_classes)
        _validate_host_buffers(input, output, shape)

        bindings = EngineBindings(context)
        table = BindingTable.resolve(
            bindings,
            input_name,
            output_name,
            input_nbytes=shape.input_nbytes,
            output_nbytes=shape.output_nbytes,
        )
        if self.config.strict_shape_check:
            bindings.validate_shapes(table, shape)

        allocations: dict[TensorRole, DeviceAllocation] = {}
        stream: Any = None
        try:
            alloc_start_ns = self._perf_counter_ns()
            for role in (TensorRole.INPUT, TensorRole.OUTPUT):
                allocation = self.cuda.malloc(table[role].nbytes)
                allocations[role] = allocation
                table.attach(role, allocation.ptr)
            stream = self.cuda.stream_create()
            allocate_ms = (self._perf_counter_ns() - alloc_start_ns) / 1_000_000.0

            enqueue_start_ns = self._perf_counter_ns()
            self.cuda.memcpy_htod_async(allocations[TensorRole.INPUT], input, shape.input_nbytes, stream)
            bindings.bind_addresses(table, shape, self.config.strict_shape_check)
            enqueue_ok = bindings.enqueue(stream)
            if not enqueue_ok:
                self._on_enqueue_failure(table)
            self.cuda.memcpy_dtoh_async(output, allocations[TensorRole.OUTPUT], shape.output_nbytes, stream)
            enqueue_ms = (self._perf_counter_ns() - enqueue_start_ns) / 1_000_000.0

            sync_start_ns = self._perf_counter_ns()
            self.cuda.stream_synchronize(stream)
            stream_sync_ms = (self._perf_counter_ns() - sync_start_ns) / 1_000_000.0
        except BaseException:
            self._release(stream, allocations, table, unwinding=True)
            raise

        release_start_ns = self._perf_counter_ns()
        self._release(stream, allocations, table, unwinding=False)
        release_ms = (self._perf_counter_ns() - release_start_ns) / 1_000_000.0

        stats = InferenceStats(
            allocate_ms=allocate_ms,
            enqueue_ms=enqueue_ms,
            stream_sync_ms=stream_sync_ms,
            release_ms=release_ms,
            total_ms=(self._perf_counter_ns() - start_ns) / 1_000_000.0,
            input_bytes=shape.input_nbytes,
            output_bytes=shape.output_nbytes,
            enqueue_ok=enqueue_ok,
        )
        debug(
            LogChannel.GLOBAL,
            f"inference batch={shape.batch_size} alloc={stats.allocate_ms:.3f}ms "
            f"enqueue={stats.enqueue_ms:.3f}ms sync={stats.stream_sync_ms:.3f}ms "
            f"release={stats.release_ms:.3f}ms total={stats.total_ms:.3f}ms",
        )
        return stats

    def _on_enqueue_failure(self, table: BindingTable) -> None:
        names = ", ".join(slot.name for slot in table)
        if self.config.strict_enqueue:
            raise EnqueueError(f"execute_async_v3 returned False (bindings: {names})")
        warning(
            LogChannel.TRT,
            f"execute_async_v3 returned False (bindings: {names}); "
            "continuing because strict_enqueue is disabled, output contents are undefined",
        )

    def _release(
        self,
        stream: Any,
        allocations: dict[TensorRole, DeviceAllocation],
        table: BindingTable,
        *,
        unwinding: bool,
    ) -> None:
        """Destroy the stream, then free the buffers; every step is attempted.

        While unwinding from an earlier error, release failures are logged and
        the earlier error wins.  Otherwise the first release failure is raised
        once all steps have run.
        """
        steps: list[tuple[str, Callable[[], None]]] = []
        if stream is not None:
            if unwinding:
                steps.append(("cudaStreamSynchronize", lambda: self.cuda.stream_synchronize(stream)))
            steps.append(("cudaStreamDestroy", lambda: self.cuda.stream_destroy(stream)))
        for role in (TensorRole.INPUT, TensorRole.OUTPUT):
            allocation = allocations.get(role)
            if allocation is None:
                continue
            steps.append((f"cudaFree[{role.value}]", lambda allocation=allocation: self.cuda.free(allocation)))

        first_error: InferenceError | None = None
        for label, step in steps:
            try:
                step()
            except InferenceError as exc:
                if unwinding:
                    warning(LogChannel.CUDA, f"{label} failed while unwinding: {exc}")
                elif first_error is None:
                    first_error = exc
        for role in allocations:
            table.detach(role)
        if first_error is not None:
            raise first_error

    @staticmethod
    def _perf_counter_ns() -> int:
        return time.perf_counter_ns()


def _validate_host_buffer(label: str, array: Any, elements: int, *, writable: bool) -> None:
    if not isinstance(array, np.ndarray):
        raise HostBufferError(f"{label} buffer must be a numpy.ndarray, got {type(array).__name__}")
    if array.dtype != np.float32:
        raise HostBufferError(f"{label} buffer must be float32, got {array.dtype}")
    if not array.flags.c_contiguous:
        raise HostBufferError(f"{label} buffer must be C-contiguous")
    if array.size < elements:
        raise HostBufferError(f"{label} buffer holds {array.size} float32 values, needs at least {elements}")
    if writable and not array.flags.writeable:
        raise HostBufferError(f"{label} buffer is read-only")


def _validate_host_buffers(input: Any, output: Any, shape: InferenceShape) -> None:
    _validate_host_buffer("input", input, shape.input_elements, writable=False)
    _validate_host_buffer("output", output, shape.output_elements, writable=True)
    if np.may_share_memory(input, output):
        raise HostBufferError("input and output buffers overlap")


_default_runner: InferenceRunner | None = None
_default_runner_lock = threading.Lock()


def default_runner() -> InferenceRunner:
    """Process-wide runner built from runner.yaml on first use."""
    global _default_runner
    with _default_runner_lock:
        if _default_runner is None:
            _default_runner = InferenceRunner()
        return _default_runner


def run_inference(
    context: Any,
    input: np.ndarray,
    output: np.ndarray,
    input_name: str,
    output_name: str,
    batch_size: int,
    channel: int,
    height: int,
    width: int,
    num_classes: int,
) -> InferenceStats:
    """Procedural entry point; see :meth:`InferenceRunner.run`."""
    return default_runner().run(
        context,
        input,
        output,
        input_name,
        output_name,
        batch_size,
        channel,
        height,
        width,
        num_classes,
    )
