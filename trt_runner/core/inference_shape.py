from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from trt_runner.errors import ShapeError


FLOAT32_BYTES = int(np.dtype(np.float32).itemsize)


@dataclass(frozen=True)
class InferenceShape:
    """Dimensions of one classification pass: NCHW input, (N, classes) output."""

    batch_size: int
    channel: int
    height: int
    width: int
    num_classes: int

    def __post_init__(self) -> None:
        for field_name in ("batch_size", "channel", "height", "width", "num_classes"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ShapeError(f"{field_name} must be an integer, got {type(value).__name__}")
            if int(value) <= 0:
                raise ShapeError(f"{field_name} must be positive, got {value}")

    @property
    def input_dims(self) -> tuple[int, int, int, int]:
        return (int(self.batch_size), int(self.channel), int(self.height), int(self.width))

    @property
    def output_dims(self) -> tuple[int, int]:
        return (int(self.batch_size), int(self.num_classes))

    @property
    def input_elements(self) -> int:
        return int(np.prod(self.input_dims, dtype=np.int64))

    @property
    def output_elements(self) -> int:
        return int(np.prod(self.output_dims, dtype=np.int64))

    @property
    def input_nbytes(self) -> int:
        return self.input_elements * FLOAT32_BYTES

    @property
    def output_nbytes(self) -> int:
        return self.output_elements * FLOAT32_BYTES
