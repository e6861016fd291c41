import gzip
import io
import json

import numpy as np
import pytest

from stacknet.core import layers
from stacknet.core.errors import ShapeMismatchError
from stacknet.core.network import SequentialNetwork
from stacknet.core.types import SamplesBatch, TensorInfo
from stacknet.manager import new_sequential


def _network(seed=0):
    return new_sequential(
        TensorInfo(2, 2),
        layers.fully_connected(6, "tanh", seed=seed),
        layers.activation("leaky_relu"),
        layers.fully_connected(5, "relu", weights_init="he_normal", biases_init="gaussian", seed=seed + 1),
        layers.output(3, "sigmoid", "cross_entropy", seed=seed + 2),
    )


def test_layer_infos_chain():
    network = _network()
    assert network.input_info == TensorInfo(2, 2)
    assert network.output_info == TensorInfo.linear(3)
    for previous, current in zip(network.layers, network.layers[1:]):
        assert previous.output_info == current.input_info


def test_parameter_count():
    network = _network()
    assert network.parameters == (4 * 6 + 6) + (6 * 5 + 5) + (5 * 3 + 3)


def test_factory_with_wrong_input_is_rejected():
    def _bad(info):
        return layers.fully_connected(2)(TensorInfo.linear(info.size + 1))

    with pytest.raises(ShapeMismatchError):
        new_sequential(TensorInfo.linear(3), _bad, layers.output(1))


def test_network_requires_output_layer_last():
    with pytest.raises(ValueError):
        new_sequential(TensorInfo.linear(3), layers.fully_connected(2))
    with pytest.raises(ValueError):
        SequentialNetwork([])


def test_output_layers_are_only_allowed_last():
    with pytest.raises(ValueError):
        new_sequential(TensorInfo.linear(2), layers.softmax(3), layers.output(1))
    with pytest.raises(ValueError):
        new_sequential(
            TensorInfo.linear(2), layers.output(3, "sigmoid", "quadratic"), layers.softmax(2)
        )


def test_forward_is_deterministic_and_shaped():
    network = _network()
    x = np.random.default_rng(0).standard_normal((7, 4)).astype(np.float32)
    first = network.forward(x)
    second = network.forward(x)
    assert first.shape == (7, 3)
    np.testing.assert_array_equal(first, second)
    single = network.forward(x[0])
    assert single.shape == (3,)
    np.testing.assert_allclose(single, first[0], rtol=1e-6)


def test_forward_rejects_wrong_feature_count():
    with pytest.raises(ShapeMismatchError):
        _network().forward(np.zeros((2, 5), dtype=np.float32))


def test_calculate_cost_checks_targets():
    network = _network()
    x = np.zeros((4, 4), dtype=np.float32)
    assert network.calculate_cost(x, np.full((4, 3), 0.5)) >= 0
    with pytest.raises(ShapeMismatchError):
        network.calculate_cost(x, np.zeros((4, 2)))


def test_save_load_round_trip(tmp_path):
    network = _network()
    path = tmp_path / "net.bin.gz"
    network.save(path)
    restored = SequentialNetwork.load(path, network.input_info)
    assert restored == network
    x = np.random.default_rng(1).standard_normal((3, 4)).astype(np.float32)
    np.testing.assert_allclose(restored.forward(x), network.forward(x), rtol=1e-6)


def test_stream_round_trip_and_gzip_framing():
    network = new_sequential(TensorInfo.linear(3), layers.softmax(4, seed=2))
    stream = io.BytesIO()
    network.save(stream)
    raw = stream.getvalue()
    assert raw[:2] == b"\x1f\x8b"
    restored = SequentialNetwork.load(io.BytesIO(raw), TensorInfo.linear(3))
    assert restored == network


def test_load_empty_stream_fails():
    stream = io.BytesIO()
    with gzip.GzipFile(fileobj=stream, mode="wb"):
        pass
    stream.seek(0)
    with pytest.raises(EOFError):
        SequentialNetwork.load(stream, TensorInfo.linear(3))


def test_clone_is_equal_but_independent():
    network = _network()
    copy = network.clone()
    assert copy == network
    batch = SamplesBatch.from_arrays(np.ones((2, 4)), np.zeros((2, 3)))

    def _shift(index, dJdw, dJdb, samples, layer):
        layer.weights += 1.0

    copy.backpropagate(batch, 0.0, _shift)
    assert copy != network


def test_backpropagate_calls_updater_for_weighted_layers_in_reverse():
    network = _network()
    batch = SamplesBatch.from_arrays(np.ones((5, 4)), np.full((5, 3), 0.5))
    calls = []

    def _record(index, dJdw, dJdb, samples, layer):
        assert dJdw.shape == layer.weights.shape
        calls.append((index, samples))

    network.backpropagate(batch, 0.0, _record)
    assert calls == [(3, 5), (2, 5), (0, 5)]


def test_backpropagate_matches_numeric_gradient():
    network = new_sequential(
        TensorInfo.linear(2),
        layers.fully_connected(3, "tanh", seed=0),
        layers.output(1, "sigmoid", "quadratic", seed=1),
    )
    batch = SamplesBatch.from_arrays([[0.3, -0.7], [1.1, 0.2]], [[1.0], [0.0]])
    grads = {}

    def _capture(index, dJdw, dJdb, samples, layer):
        grads[index] = dJdw / samples

    network.clone().backpropagate(batch, 0.0, _capture)
    layer = network.layers[0]
    eps = 1e-3
    original = layer.weights[1, 2]
    layer.weights[1, 2] = original + eps
    plus = network.calculate_cost(batch.inputs, batch.targets)
    layer.weights[1, 2] = original - eps
    minus = network.calculate_cost(batch.inputs, batch.targets)
    layer.weights[1, 2] = original
    numeric = (plus - minus) / (2 * eps)
    assert grads[0][1, 2] == pytest.approx(numeric, rel=1e-2, abs=1e-4)


def test_extract_deep_features_returns_each_layer_output():
    network = _network()
    x = np.random.default_rng(2).standard_normal((3, 4)).astype(np.float32)
    features = network.extract_deep_features(x)
    assert len(features) == len(network)
    assert [a.shape for _, a in features] == [(3, 6), (3, 6), (3, 5), (3, 3)]
    np.testing.assert_allclose(features[-1][1], network.forward(x), rtol=1e-6)


def test_metadata_json_describes_layers():
    metadata = json.loads(_network().serialize_metadata_as_json())
    assert metadata["network_type"] == "SEQUENTIAL"
    assert [layer["layer_type"] for layer in metadata["layers"]] == [
        "FULLY_CONNECTED",
        "ACTIVATION",
        "FULLY_CONNECTED",
        "OUTPUT",
    ]
    assert metadata["parameters"] == _network().parameters


def test_dropout_mask_is_applied_to_the_backward_error():
    network = new_sequential(
        TensorInfo.linear(2),
        layers.fully_connected(4, "tanh", seed=0),
        layers.output(1, "sigmoid", "quadratic", seed=1),
    )
    batch = SamplesBatch.from_arrays([[0.3, -0.7], [1.1, 0.2], [-0.4, 0.9]], [[1.0], [0.0], [1.0]])
    dropout = 0.5
    grads = {}

    def _capture(index, dJdw, dJdb, samples, layer):
        grads[index] = dJdw / samples

    network.clone().backpropagate(batch, dropout, _capture, np.random.default_rng(4))

    # same draw the layer makes for its (3, 4) activation
    keep = np.random.default_rng(4).random((3, 4)) >= dropout
    mask = (keep / (1.0 - dropout)).astype(np.float32)
    hidden, out = network.layers

    def _masked_cost(weights):
        a = np.tanh(batch.inputs @ weights + hidden.biases) * mask
        yhat = 1.0 / (1.0 + np.exp(-(a @ out.weights + out.biases)))
        return out.cost(yhat, batch.targets)

    eps = 1e-3
    base = hidden.weights.astype(np.float64)
    numeric = np.zeros_like(base)
    for i, j in np.ndindex(*base.shape):
        shifted = base.copy()
        shifted[i, j] += eps
        plus = _masked_cost(shifted)
        shifted[i, j] -= 2 * eps
        minus = _masked_cost(shifted)
        numeric[i, j] = (plus - minus) / (2 * eps)
    np.testing.assert_allclose(grads[0], numeric, rtol=1e-2, atol=1e-4)
    # dropped units contribute no gradient
    assert np.all(grads[0][:, ~keep.any(axis=0)] == 0.0)
