from __future__ import annotations

import json
from pathlib import Path

import yaml

from .types import Model


def load_model(path: Path) -> Model:
    path = Path(path)
    text = path.read_text()
    if path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a model object, got {type(raw).__name__}")
    return Model.from_dict(raw)
