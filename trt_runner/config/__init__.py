from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from env_utils import parse_bool_override


_CONFIG_FILE = Path(__file__).parent / "runner.yaml"


@dataclass(frozen=True)
class RunnerConfig:
    """Behaviour switches for a single inference pass."""

    strict_enqueue: bool = True
    strict_shape_check: bool = True
    track_allocations: bool = True


def load_runner_config(path: Path | None = None) -> RunnerConfig:
    """Load the runner section of runner.yaml, then apply TRT_RUNNER_* env overrides."""
    config_file = Path(path) if path is not None else _CONFIG_FILE
    raw: dict[str, Any] = {}
    if config_file.exists():
        with config_file.open("r", encoding="utf-8") as stream:
            raw = yaml.safe_load(stream) or {}
    section: dict[str, Any] = raw.get("runner", {}) or {}

    defaults = RunnerConfig()
    strict_enqueue = bool(section.get("strict_enqueue", defaults.strict_enqueue))
    strict_shape_check = bool(section.get("strict_shape_check", defaults.strict_shape_check))
    track_allocations = bool(section.get("track_allocations", defaults.track_allocations))

    env_enqueue = parse_bool_override("TRT_RUNNER_STRICT_ENQUEUE")
    if env_enqueue is not None:
        strict_enqueue = env_enqueue
    env_shape = parse_bool_override("TRT_RUNNER_STRICT_SHAPE_CHECK")
    if env_shape is not None:
        strict_shape_check = env_shape

    return RunnerConfig(
        strict_enqueue=strict_enqueue,
        strict_shape_check=strict_shape_check,
        track_allocations=track_allocations,
    )
