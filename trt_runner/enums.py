from enum import Enum


class TensorRole(Enum):
    """Logical role of an engine I/O tensor within one inference pass."""

    INPUT = "input"
    OUTPUT = "output"


class MemcpyDirection(Enum):
    HOST_TO_DEVICE = "htod"
    DEVICE_TO_HOST = "dtoh"
