from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from logger.filtered_logger import configure_logger


_LOG_CONFIG_FILE = Path(__file__).parent / "log.yaml"

# log.yaml channel key -> FilteredLogger.configure keyword
_CHANNEL_FLAGS = {
    "global": "extreme_debug",
    "cuda": "cuda_debug",
    "trt": "trt_debug",
}


def load_log_config(path: Path | None = None) -> dict[str, Any]:
    config_file = Path(path) if path is not None else _LOG_CONFIG_FILE
    if not config_file.exists():
        raise FileNotFoundError(f"Missing log config: {config_file}")
    with config_file.open("r", encoding="utf-8") as stream:
        return yaml.safe_load(stream) or {}


def apply_log_config(path: Path | None = None) -> None:
    """Switch the shared logger's debug channels on or off from log.yaml.

    Channels missing from the file keep their environment-derived setting.
    """
    channels = load_log_config(path).get("channels") or {}
    unknown = sorted(set(channels) - set(_CHANNEL_FLAGS))
    if unknown:
        raise ValueError(f"unknown log channels {unknown}, expected {sorted(_CHANNEL_FLAGS)}")
    configure_logger(**{_CHANNEL_FLAGS[key]: bool(value) for key, value in channels.items()})
