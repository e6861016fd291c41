"""Config-driven training runs built from presets or override files."""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from ..config import EngineSettings
from ..core import layers
from ..core.layers import LayerFactory
from ..core.network import SequentialNetwork
from ..core.types import TensorInfo
from ..data.synthetic import load_dataset
from ..manager import new_sequential, train_network
from ..reporting.artifacts import result_to_dict, write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from .datasets import BatchesCollection, TestDataset, ValidationDataset
from .optimizers import resolve_algorithm
from .trainer import TrainingSessionResult

logger = logging.getLogger(__name__)

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor-sgd": {
        "data": {"name": "xor", "options": {"n_points": 200, "noise": 0.1}},
        "model": {
            "input": [1, 2],
            "layers": [
                {"type": "fully_connected", "neurons": 8, "activation": "tanh"},
                {"type": "output", "neurons": 1, "activation": "sigmoid", "cost": "cross_entropy"},
            ],
        },
        "train": {
            "epochs": 60,
            "batch_size": 10,
            "algorithm": "sgd",
            "algorithm_options": {"eta": 0.5},
            "dropout": 0.0,
            "seed": 7,
            "run_dir": "runs/xor-sgd",
            "enable_plots": False,
        },
    },
    "blobs-softmax": {
        "data": {"name": "blobs", "options": {"n_points": 300, "centers": 3}},
        "model": {
            "input": [1, 2],
            "layers": [
                {"type": "fully_connected", "neurons": 16, "activation": "relu", "weights_init": "he_uniform"},
                {"type": "softmax", "neurons": 3},
            ],
        },
        "train": {
            "epochs": 20,
            "batch_size": 16,
            "algorithm": "adam",
            "algorithm_options": {"eta": 0.01},
            "dropout": 0.1,
            "seed": 1,
            "early_stopping": {"tolerance": 0.001, "epochs_interval": 5},
            "run_dir": "runs/blobs-softmax",
            "enable_plots": False,
        },
    },
    "sine-momentum": {
        "data": {"name": "sine", "options": {"n_points": 256, "freq": 1}},
        "model": {
            "input": [1, 1],
            "layers": [
                {"type": "fully_connected", "neurons": 12, "activation": "tanh"},
                {"type": "output", "neurons": 1, "activation": "sigmoid", "cost": "quadratic"},
            ],
        },
        "train": {
            "epochs": 40,
            "batch_size": 8,
            "algorithm": "momentum",
            "algorithm_options": {"eta": 0.1, "momentum": 0.9},
            "dropout": 0.0,
            "seed": 3,
            "run_dir": "runs/sine-momentum",
            "enable_plots": False,
        },
    },
}


@dataclass(frozen=True)
class PipelineResult:
    """Paths and outcome of a pipeline run."""

    session: TrainingSessionResult
    run_dir: str
    network_path: str
    metadata_path: str
    manifest_path: str
    metrics_path: str
    plot_path: str | None = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "stop_reason": self.session.stop_reason.value,
            "epochs": self.session.completed_epochs,
            "batches": self.session.processed_batches,
            "network": self.network_path,
            "metadata": self.metadata_path,
            "manifest": self.manifest_path,
            "metrics": self.metrics_path,
        }
        if self.plot_path:
            payload["plot"] = self.plot_path
        return payload


def presets() -> Mapping[str, Mapping[str, object]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> Mapping[str, object]:
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        available = ", ".join(sorted(_PRESETS))
        raise KeyError(f"Unknown preset: {name}. Available presets: {available}") from exc


def build_layer_factory(entry: Mapping[str, object]) -> LayerFactory:
    """Translate one ``model.layers`` entry into a layer factory."""

    options = dict(entry)
    kind = str(options.pop("type", "")).lower()
    if kind == "fully_connected":
        return layers.fully_connected(int(options.pop("neurons")), **options)
    if kind == "activation":
        return layers.activation(str(options["activation"]))
    if kind == "output":
        return layers.output(int(options.pop("neurons")), **options)
    if kind == "softmax":
        return layers.softmax(int(options.pop("neurons")), **options)
    raise ValueError(f"Unknown layer type: {kind!r}")


def build_network(model_cfg: Mapping[str, object], seed: int | None = None) -> SequentialNetwork:
    height, width = (int(v) for v in model_cfg.get("input", (1, 1)))  # type: ignore[union-attr]
    layer_entries: Sequence[Mapping[str, object]] = model_cfg.get("layers", [])  # type: ignore[assignment]
    if not layer_entries:
        raise ValueError("The model config must list at least one layer")
    factories: List[LayerFactory] = []
    for position, entry in enumerate(layer_entries):
        entry = dict(entry)
        if seed is not None and entry.get("type") != "activation":
            entry.setdefault("seed", seed + position)
        factories.append(build_layer_factory(entry))
    return new_sequential(TensorInfo(height, width), *factories)


def run_pipeline(config: Mapping[str, object]) -> PipelineResult:
    data_cfg = dict(config["data"])  # type: ignore[arg-type]
    model_cfg = dict(config["model"])  # type: ignore[arg-type]
    train_cfg = dict(config["train"])  # type: ignore[arg-type]

    seed = int(train_cfg.get("seed", 0))
    batch_size = int(train_cfg.get("batch_size", 10))
    epochs = int(train_cfg.get("epochs", 1))
    dropout = float(train_cfg.get("dropout", 0.0))

    options = dict(data_cfg.get("options", {}))
    options.setdefault("seed", seed)
    dataset = load_dataset(str(data_cfg["name"]), **options)
    train_x, train_y = dataset.split("train")
    batches = BatchesCollection.from_arrays(train_x, train_y, batch_size, shuffle_seed=seed)

    network = build_network(model_cfg, seed=seed)
    algorithm = resolve_algorithm(
        str(train_cfg.get("algorithm", "sgd")),
        **dict(train_cfg.get("algorithm_options", {})),
    )
    if train_cfg.get("max_batch_size") is not None:
        settings = EngineSettings(maximum_batch_size=int(train_cfg["max_batch_size"]))
    else:
        settings = EngineSettings.from_env()

    run_dir = _resolve_run_dir(train_cfg, dataset.name)
    run_dir.mkdir(parents=True, exist_ok=True)

    _print_startup_summary(
        dataset_name=dataset.name,
        splits=dataset.splits.sizes,
        network=network,
        algorithm=algorithm,
        epochs=epochs,
        batch_size=batch_size,
    )

    plots = PlotAdapter(run_dir, enable_plots=bool(train_cfg.get("enable_plots", False)))
    train_jsonl = JsonlSink(run_dir / "metrics_train.jsonl", split="train", seed=seed)
    train_sinks = [train_jsonl, CsvSink(run_dir / "metrics_train.csv", split="train"), plots.for_split("train")]

    test_dataset = None
    test_x, test_y = dataset.split("test")
    if test_x.shape[0]:
        test_sinks = [
            JsonlSink(run_dir / "metrics_test.jsonl", split="test", seed=seed),
            CsvSink(run_dir / "metrics_test.csv", split="test"),
            plots.for_split("test"),
        ]
        test_dataset = TestDataset(test_x, test_y, observers=test_sinks)

    validation_dataset = None
    val_x, val_y = dataset.split("val")
    if val_x.shape[0]:
        stopping = dict(train_cfg.get("early_stopping") or {})
        validation_dataset = ValidationDataset(
            val_x,
            val_y,
            tolerance=float(stopping.get("tolerance", 0.0)),
            epochs_interval=int(stopping.get("epochs_interval", epochs)),
        )

    session = train_network(
        network,
        batches,
        algorithm,
        epochs,
        dropout,
        training_progress=train_sinks,
        validation_dataset=validation_dataset,
        test_dataset=test_dataset,
        settings=settings,
        seed=seed,
    )

    if session.validation_reports:
        val_sinks = [
            JsonlSink(run_dir / "metrics_val.jsonl", split="val", seed=seed),
            CsvSink(run_dir / "metrics_val.csv", split="val"),
            plots.for_split("val"),
        ]
        for epoch, report in enumerate(session.validation_reports, start=1):
            for sink in val_sinks:
                sink.on_epoch(epoch, report.as_metrics())

    network_path = run_dir / "network.bin.gz"
    network.save(network_path)
    metadata = network.serialize_metadata_as_json()
    metadata_path = run_dir / "metadata.json"
    metadata_path.write_text(metadata)

    safe_config = _safe_config(config)
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))
    (run_dir / "result.json").write_text(json.dumps(result_to_dict(session), indent=2))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        network_metadata=metadata,
        result=session,
    )
    plot_path = plots.close()
    logger.info("Run artifacts written to %s", run_dir)

    return PipelineResult(
        session=session,
        run_dir=str(run_dir),
        network_path=str(network_path),
        metadata_path=str(metadata_path),
        manifest_path=manifest,
        metrics_path=str(train_jsonl.path),
        plot_path=str(plot_path) if plot_path is not None else None,
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str) -> Path:
    if train_cfg.get("run_dir"):
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset


def _safe_config(config: Mapping[str, object]) -> Mapping[str, object]:
    return json.loads(json.dumps(config))


def _print_startup_summary(
    *,
    dataset_name: str,
    splits: Mapping[str, int],
    network: SequentialNetwork,
    algorithm: object,
    epochs: int,
    batch_size: int,
) -> None:
    shapes = [layer.output_info.size for layer in network.layers]
    print("=== stacknet run ===")
    print(f"Dataset       : {dataset_name} {dict(splits)}")
    print(f"Layers        : {[network.input_info.size, *shapes]}")
    print(f"Cost          : {network.output_layer.cost_function.name}")
    print(f"Algorithm     : {algorithm}")
    print(f"Epochs        : {epochs} x batch {batch_size}")
    print(f"Parameters    : {network.parameters}")
    print("====================")


__all__ = [
    "PipelineResult",
    "build_layer_factory",
    "build_network",
    "load_preset",
    "presets",
    "run_pipeline",
]
