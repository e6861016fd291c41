import numpy as np
import pytest

from stacknet.core import layers
from stacknet.core.types import TensorInfo
from stacknet.manager import new_sequential
from stacknet.training.optimizers import (
    AdaGrad,
    Adam,
    Momentum,
    RMSProp,
    StochasticGradientDescent,
    TrainingAlgorithm,
    algorithm_names,
    resolve_algorithm,
    _StatefulUpdater,
)


def _layer():
    return layers.output(2, "sigmoid", "quadratic", seed=0)(TensorInfo.linear(3))


def _grads():
    rng = np.random.default_rng(1)
    return (
        rng.standard_normal((3, 2)).astype(np.float32),
        rng.standard_normal(2).astype(np.float32),
    )


def _network():
    return new_sequential(TensorInfo.linear(3), layers.output(2, seed=0))


def test_sgd_divides_summed_gradient_by_samples():
    layer = _layer()
    dJdw, dJdb = _grads()
    w0, b0 = layer.weights.copy(), layer.biases.copy()
    updater = StochasticGradientDescent(eta=0.5).build_updater(_network())
    updater(0, dJdw, dJdb, 4, layer)
    np.testing.assert_allclose(layer.weights, w0 - 0.5 * dJdw / 4, rtol=1e-5)
    np.testing.assert_allclose(layer.biases, b0 - 0.5 * dJdb / 4, rtol=1e-5)


def test_sgd_weight_decay_shrinks_weights_only():
    layer = _layer()
    w0, b0 = layer.weights.copy(), layer.biases.copy()
    zeros_w, zeros_b = np.zeros_like(w0), np.zeros_like(b0)
    StochasticGradientDescent(eta=0.1, lambda_=1.0).build_updater(_network())(
        0, zeros_w, zeros_b, 10, layer
    )
    np.testing.assert_allclose(layer.weights, w0 * (1 - 0.1 * 1.0 / 10), rtol=1e-6)
    np.testing.assert_array_equal(layer.biases, b0)


def test_momentum_accumulates_velocity_per_layer():
    layer = _layer()
    dJdw, dJdb = _grads()
    w0 = layer.weights.copy()
    updater = Momentum(eta=0.1, momentum=0.5).build_updater(_network())
    updater(0, dJdw, dJdb, 1, layer)
    updater(0, dJdw, dJdb, 1, layer)
    # second step moves by eta*g*(1 + momentum)
    expected = w0 - 0.1 * dJdw - 0.1 * dJdw * 1.5
    np.testing.assert_allclose(layer.weights, expected, rtol=1e-5)


def test_adam_first_step_moves_by_eta():
    layer = _layer()
    dJdw, dJdb = _grads()
    w0 = layer.weights.copy()
    Adam(eta=0.01).build_updater(_network())(0, dJdw, dJdb, 2, layer)
    np.testing.assert_allclose(np.abs(layer.weights - w0), 0.01, rtol=1e-3)


@pytest.mark.parametrize("algorithm", [AdaGrad(), RMSProp(), Adam(), Momentum()])
def test_updaters_are_fresh_per_session(algorithm):
    network = _network()
    first = algorithm.build_updater(network)
    second = algorithm.build_updater(network)
    assert first is not second
    layer = _layer()
    dJdw, dJdb = _grads()
    first(0, dJdw, dJdb, 1, layer)
    assert first.state(0, layer).step == 1
    assert second.state(0, layer).step == 0


def test_algorithms_satisfy_protocol():
    for name in algorithm_names():
        assert isinstance(resolve_algorithm(name), TrainingAlgorithm)


def test_resolve_algorithm_options_and_errors():
    sgd = resolve_algorithm("SGD", eta=0.2, **{"lambda": 0.5})
    assert sgd == StochasticGradientDescent(eta=0.2, lambda_=0.5)
    with pytest.raises(ValueError, match="Available"):
        resolve_algorithm("lbfgs")


@pytest.mark.parametrize(
    "factory",
    [
        lambda: StochasticGradientDescent(eta=0.0),
        lambda: StochasticGradientDescent(lambda_=-1.0),
        lambda: Momentum(momentum=1.0),
        lambda: RMSProp(rho=-0.1),
        lambda: Adam(beta2=1.5),
        lambda: AdaGrad(epsilon=0.0),
    ],
)
def test_invalid_hyperparameters(factory):
    with pytest.raises(ValueError):
        factory()


def test_stateful_updater_base_requires_an_update_rule():
    with pytest.raises(TypeError):
        _StatefulUpdater()

    class _Incomplete(_StatefulUpdater):
        pass

    with pytest.raises(TypeError):
        _Incomplete()
