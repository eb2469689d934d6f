from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class InferenceStats:
    """Timings (milliseconds) and transfer sizes of one completed pass."""

    allocate_ms: float
    enqueue_ms: float
    stream_sync_ms: float
    release_ms: float
    total_ms: float
    input_bytes: int
    output_bytes: int
    enqueue_ok: bool = True

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
