from __future__ import annotations

from typing import Any

import numpy as np

from logger.filtered_logger import LogChannel, debug
from trt_runner.core.binding_table import BindingTable
from trt_runner.core.inference_shape import InferenceShape
from trt_runner.enums import TensorRole
from trt_runner.errors import EnqueueError, ShapeError, TensorRTUnavailableError

try:
    import tensorrt as trt
except Exception:  # pragma: no cover
    trt = None  # type: ignore[assignment]


class EngineBindings:
    """TensorRT side of one pass over a borrowed execution context.

    The context and its engine belong to the caller; this class only reads
    tensor metadata, binds device addresses and enqueues execution.
    """

    def __init__(self, context: Any) -> None:
        if trt is None:
            raise TensorRTUnavailableError("tensorrt python package unavailable")
        if context is None:
            raise TensorRTUnavailableError("no execution context")
        engine = getattr(context, "engine", None)
        if engine is None:
            raise TensorRTUnavailableError("execution context is not bound to an engine")
        self.context = context
        self.engine = engine
        self._names = [engine.get_tensor_name(index) for index in range(int(engine.num_io_tensors))]

    def binding_count(self) -> int:
        return len(self._names)

    def binding_index(self, name: str) -> int:
        """Slot index of name, or -1 when the engine has no such tensor."""
        try:
            return self._names.index(name)
        except ValueError:
            return -1

    def tensor_names(self) -> list[str]:
        return list(self._names)

    def is_input(self, name: str) -> bool:
        return self.engine.get_tensor_mode(name) == trt.TensorIOMode.INPUT

    def tensor_shape(self, name: str) -> tuple[int, ...]:
        return tuple(int(x) for x in self.engine.get_tensor_shape(name))

    def validate_shapes(self, table: BindingTable, shape: InferenceShape) -> None:
        """Reject float-incompatible tensors and static shapes whose volume differs."""
        for role, dims in ((TensorRole.INPUT, shape.input_dims), (TensorRole.OUTPUT, shape.output_dims)):
            name = table[role].name
            dtype = self.engine.get_tensor_dtype(name)
            if dtype != trt.DataType.FLOAT:
                raise ShapeError(f"{role.value} tensor '{name}' has dtype {dtype}, expected float32")
            engine_dims = self.tensor_shape(name)
            if not engine_dims or any(dim < 0 for dim in engine_dims):
                continue
            engine_volume = int(np.prod(engine_dims, dtype=np.int64))
            requested = int(np.prod(dims, dtype=np.int64))
            if engine_volume != requested:
                raise ShapeError(
                    f"{role.value} tensor '{name}' has shape {engine_dims} "
                    f"({engine_volume} elements), requested {dims} ({requested} elements)"
                )

    def bind_addresses(self, table: BindingTable, shape: InferenceShape, strict_shape_check: bool = True) -> None:
        """Set the dynamic input shape (if any) and attach every slot's device address.

        The output shape is read back from the context once the input shape is
        known; an output that would not fit the output buffer is rejected
        before anything is enqueued.
        """
        input_slot = table[TensorRole.INPUT]
        if any(dim < 0 for dim in self.tensor_shape(input_slot.name)):
            if not self.context.set_input_shape(input_slot.name, shape.input_dims):
                raise ShapeError(f"set_input_shape rejected {shape.input_dims} for '{input_slot.name}'")
            debug(LogChannel.TRT, f"set_input_shape {input_slot.name} -> {shape.input_dims}")
        self._check_resolved_output(table, shape, strict_shape_check)
        for slot in table:
            if not slot.attached:
                raise EnqueueError(f"no device buffer attached to '{slot.name}'")
            if not self.context.set_tensor_address(slot.name, slot.device_ptr):
                raise EnqueueError(f"set_tensor_address failed for '{slot.name}'")

    def _check_resolved_output(self, table: BindingTable, shape: InferenceShape, strict_shape_check: bool) -> None:
        output_name = table[TensorRole.OUTPUT].name
        output_shape = tuple(int(x) for x in self.context.get_tensor_shape(output_name))
        if not output_shape or any(dim <= 0 for dim in output_shape):
            raise ShapeError(f"unresolved output shape for '{output_name}': {output_shape}")
        resolved = int(np.prod(output_shape, dtype=np.int64))
        # Larger always overflows the device buffer; smaller only leaves it partly unwritten.
        if resolved > shape.output_elements or (strict_shape_check and resolved != shape.output_elements):
            raise ShapeError(
                f"output tensor '{output_name}' resolves to {output_shape} ({resolved} elements), "
                f"buffer holds {shape.output_dims} ({shape.output_elements} elements)"
            )

    def enqueue(self, stream: Any) -> bool:
        """Launch execute_async_v3 on stream and report whether TensorRT accepted it."""
        return bool(self.context.execute_async_v3(int(stream)))
