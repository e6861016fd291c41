import json
from pathlib import Path

import numpy as np
import pytest

from stacknet.core.network import SequentialNetwork
from stacknet.core.types import TensorInfo
from stacknet.training import pipelines


def _config(run_dir, **train):
    config = pipelines.load_preset("sine-momentum")
    config["train"].update({"epochs": 2, "run_dir": str(run_dir)})
    config["train"].update(train)
    return config


def test_pipeline_produces_artifacts(tmp_path):
    result = pipelines.run_pipeline(_config(tmp_path / "run", seed=11))
    assert Path(result.metrics_path).exists()

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["train"]["seed"] == 11
    assert manifest["result"]["stop_reason"] == "epochs_completed"
    assert manifest["network"]["layers"][-1]["layer_type"] == "OUTPUT"

    metrics = [json.loads(line) for line in Path(result.metrics_path).read_text().splitlines() if line]
    assert [entry["epoch"] for entry in metrics] == [1, 2]
    assert all(entry["split"] == "train" and entry["seed"] == 11 for entry in metrics)
    assert all("loss" in entry for entry in metrics)

    run_dir = Path(result.run_dir)
    for name in ("metrics_train.csv", "metrics_val.jsonl", "metrics_test.jsonl", "config.json"):
        assert (run_dir / name).exists()


def test_pipeline_is_deterministic(tmp_path):
    first = pipelines.run_pipeline(_config(tmp_path / "a", seed=5))
    second = pipelines.run_pipeline(_config(tmp_path / "b", seed=5))
    net_a = SequentialNetwork.load(first.network_path, TensorInfo(1, 1))
    net_b = SequentialNetwork.load(second.network_path, TensorInfo(1, 1))
    assert net_a == net_b
    x = np.linspace(-1, 1, 9, dtype=np.float32).reshape(-1, 1)
    np.testing.assert_array_equal(net_a.forward(x), net_b.forward(x))


def test_pipeline_writes_plot_when_enabled(tmp_path):
    result = pipelines.run_pipeline(_config(tmp_path / "run", enable_plots=True))
    assert result.plot_path is not None
    assert Path(result.plot_path).exists()


def test_build_network_from_layer_specs():
    network = pipelines.build_network(
        {
            "input": [2, 3],
            "layers": [
                {"type": "fully_connected", "neurons": 4, "activation": "relu"},
                {"type": "activation", "activation": "tanh"},
                {"type": "softmax", "neurons": 2},
            ],
        },
        seed=0,
    )
    assert network.input_info == TensorInfo(2, 3)
    assert len(network) == 3
    with pytest.raises(ValueError):
        pipelines.build_layer_factory({"type": "convolution"})


def test_unknown_preset():
    with pytest.raises(KeyError):
        pipelines.load_preset("missing")
    assert pipelines.load_preset("xor-sgd") is not pipelines.load_preset("xor-sgd")
