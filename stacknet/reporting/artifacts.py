"""Run artifact helpers."""

from __future__ import annotations

import json
import platform
import time
from pathlib import Path
from typing import Mapping

import numpy as np

from ..training.trainer import TrainingSessionResult


def result_to_dict(result: TrainingSessionResult) -> dict[str, object]:
    return {
        "stop_reason": result.stop_reason.value,
        "state": result.state.value,
        "completed_epochs": result.completed_epochs,
        "processed_batches": result.processed_batches,
        "training_time": round(result.training_time, 6),
        "validation": [r.as_metrics() for r in result.validation_reports],
        "test": [r.as_metrics() for r in result.test_reports],
        "fault": repr(result.fault) if result.fault is not None else None,
    }


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    network_metadata: str,
    result: TrainingSessionResult,
) -> str:
    """Write a manifest JSON file describing a training run."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": config,
        "network": json.loads(network_metadata),
        "result": result_to_dict(result),
        "environment": {
            "python": platform.python_version(),
            "numpy": np.__version__,
        },
    }
    path.write_text(json.dumps(manifest, indent=2))
    return str(path)


__all__ = ["result_to_dict", "write_manifest"]
