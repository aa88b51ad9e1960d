from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class EngineConfig:
    seed: int = 42
    cell_size: float = 25.0
    ticks_per_frame: int = 1
    # seconds between scheduled frames when playing under an event loop
    frame_interval: float = 1.0 / 60.0
    max_population: int = 10_000
    reproduce_offset: float = 5.0
    history_length: int = 500
    default_background: str = "#1a1a2e"

    @staticmethod
    def from_yaml(path: Path) -> "EngineConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data)


@dataclass
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    broadcast_interval: int = 1

    @staticmethod
    def from_yaml(path: Path) -> "AppConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_app_config(data)


_ENGINE_KEYS = frozenset(item.name for item in fields(EngineConfig))


def load_config(raw: dict) -> EngineConfig:
    """Build an EngineConfig from a mapping; unknown keys raise ``TypeError``.

    Accepts either the flat engine keys or a nested ``engine`` section.
    """
    values = dict(raw.get("engine", raw))
    unknown = sorted(set(values) - _ENGINE_KEYS)
    if unknown:
        raise TypeError(f"unknown engine config keys: {', '.join(unknown)}")
    config = EngineConfig(**values)
    config.ticks_per_frame = max(1, int(config.ticks_per_frame))
    return config


def load_app_config(raw: dict) -> AppConfig:
    engine = load_config(raw.get("engine", {}))
    return AppConfig(engine=engine, broadcast_interval=int(raw.get("broadcast_interval", 1)))
