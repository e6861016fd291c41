"""Engine configuration threaded into training sessions."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

MINIMUM_BATCH_SIZE_FLOOR = 10
ENV_MAX_BATCH_SIZE = "STACKNET_MAX_BATCH_SIZE"


@dataclass(frozen=True)
class EngineSettings:
    """Immutable engine-wide tunables.

    Attributes
    ----------
    maximum_batch_size:
        Upper bound on the rows evaluated at once when scoring validation,
        test or training-progress sets. Larger sets are split into
        sub-batches. Training batches are never resized.
    """

    maximum_batch_size: int = sys.maxsize

    def __post_init__(self) -> None:
        if self.maximum_batch_size < MINIMUM_BATCH_SIZE_FLOOR:
            raise ValueError(
                "The maximum batch size must be at least equal to "
                f"{MINIMUM_BATCH_SIZE_FLOOR}, got {self.maximum_batch_size}"
            )

    def with_maximum_batch_size(self, value: int) -> "EngineSettings":
        return replace(self, maximum_batch_size=int(value))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineSettings":
        unknown = set(data) - {"maximum_batch_size"}
        if unknown:
            raise KeyError(f"Unknown engine settings: {', '.join(sorted(unknown))}")
        if "maximum_batch_size" in data:
            return cls(maximum_batch_size=int(data["maximum_batch_size"]))
        return cls()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ
        raw = environ.get(ENV_MAX_BATCH_SIZE)
        if raw is None or raw.strip() == "":
            return cls()
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"{ENV_MAX_BATCH_SIZE} must be an integer, got {raw!r}") from exc
        return cls(maximum_batch_size=value)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def read_config_file(path: str | Path) -> Mapping[str, Any]:
    """Decode a YAML or JSON mapping from ``path``."""

    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported config file type: {path.suffix}")
    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    return data


def load_settings(path: str | Path) -> EngineSettings:
    """Load :class:`EngineSettings` from the ``engine`` section of a config file.

    A file without an ``engine`` section is treated as the section itself.
    """

    data = read_config_file(path)
    section = data.get("engine", data)
    if not isinstance(section, Mapping):
        raise TypeError("The 'engine' section must be a mapping")
    return EngineSettings.from_mapping(section)


__all__ = [
    "ENV_MAX_BATCH_SIZE",
    "EngineSettings",
    "MINIMUM_BATCH_SIZE_FLOOR",
    "load_settings",
    "read_config_file",
]
