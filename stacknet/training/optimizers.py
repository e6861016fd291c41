"""Training algorithms and the weights updaters they build.

A training algorithm is a plain configuration object; calling
``build_updater`` returns a fresh :data:`~stacknet.core.types.WeightsUpdater`
that owns every piece of state the rule needs (velocities, moment
estimates, squared-gradient accumulators). Layers only ever hand the
updater a summed gradient and the batch size.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Protocol, Tuple, runtime_checkable

import numpy as np

from ..core.layers import FullyConnectedLayer
from ..core.network import SequentialNetwork
from ..core.types import Array, WeightsUpdater


@runtime_checkable
class TrainingAlgorithm(Protocol):
    """Protocol implemented by every update rule."""

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        """Return an updater bound to a single training session on ``network``."""


@dataclass
class _LayerState:
    """Per-layer buffers persisted by an updater between batches."""

    weights: List[Array] = field(default_factory=list)
    biases: List[Array] = field(default_factory=list)
    step: int = 0


class _StatefulUpdater(ABC):
    """Base updater keeping one :class:`_LayerState` per weighted layer."""

    buffers = 1

    def __init__(self) -> None:
        self._states: Dict[int, _LayerState] = {}

    def state(self, index: int, layer: FullyConnectedLayer) -> _LayerState:
        state = self._states.get(index)
        if state is None:
            state = _LayerState(
                weights=[np.zeros_like(layer.weights) for _ in range(self.buffers)],
                biases=[np.zeros_like(layer.biases) for _ in range(self.buffers)],
            )
            self._states[index] = state
        return state

    def __call__(
        self, index: int, dJdw: Array, dJdb: Array, samples: int, layer: FullyConnectedLayer
    ) -> None:
        state = self.state(index, layer)
        state.step += 1
        gw = dJdw / samples
        gb = dJdb / samples
        self.apply(state, layer, gw, gb, samples)

    @abstractmethod
    def apply(
        self,
        state: _LayerState,
        layer: FullyConnectedLayer,
        gw: Array,
        gb: Array,
        samples: int,
    ) -> None:
        """Update ``layer`` in place from the per-sample gradients."""


def _check_positive(**values: float) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")


def _check_unit(**values: float) -> None:
    for name, value in values.items():
        if not 0 <= value < 1:
            raise ValueError(f"{name} must be in [0, 1), got {value}")


@dataclass
class StochasticGradientDescent:
    """Plain mini-batch gradient descent with optional L2 weight decay."""

    eta: float = 0.1
    lambda_: float = 0.0

    def __post_init__(self) -> None:
        _check_positive(eta=self.eta)
        if self.lambda_ < 0:
            raise ValueError("lambda_ must be non-negative")

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        eta, lambda_ = self.eta, self.lambda_

        def _update(
            index: int, dJdw: Array, dJdb: Array, samples: int, layer: FullyConnectedLayer
        ) -> None:
            scale = eta / samples
            if lambda_:
                layer.weights *= 1.0 - eta * lambda_ / samples
            layer.weights -= scale * dJdw
            layer.biases -= scale * dJdb

        return _update


class _MomentumUpdater(_StatefulUpdater):
    def __init__(self, config: "Momentum") -> None:
        super().__init__()
        self.config = config

    def apply(self, state, layer, gw, gb, samples):
        cfg = self.config
        (vw,), (vb,) = state.weights, state.biases
        if cfg.lambda_:
            layer.weights *= 1.0 - cfg.eta * cfg.lambda_ / samples
        vw *= cfg.momentum
        vw -= cfg.eta * gw
        vb *= cfg.momentum
        vb -= cfg.eta * gb
        layer.weights += vw
        layer.biases += vb


@dataclass
class Momentum:
    """Gradient descent with a velocity term."""

    eta: float = 0.1
    momentum: float = 0.9
    lambda_: float = 0.0

    def __post_init__(self) -> None:
        _check_positive(eta=self.eta)
        _check_unit(momentum=self.momentum)
        if self.lambda_ < 0:
            raise ValueError("lambda_ must be non-negative")

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        return _MomentumUpdater(self)


class _AdaGradUpdater(_StatefulUpdater):
    def __init__(self, config: "AdaGrad") -> None:
        super().__init__()
        self.config = config

    def apply(self, state, layer, gw, gb, samples):
        cfg = self.config
        (hw,), (hb,) = state.weights, state.biases
        hw += gw * gw
        hb += gb * gb
        layer.weights -= cfg.eta * gw / (np.sqrt(hw) + cfg.epsilon)
        layer.biases -= cfg.eta * gb / (np.sqrt(hb) + cfg.epsilon)


@dataclass
class AdaGrad:
    """Per-parameter learning rates scaled by accumulated squared gradients."""

    eta: float = 0.01
    epsilon: float = 1e-8

    def __post_init__(self) -> None:
        _check_positive(eta=self.eta, epsilon=self.epsilon)

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        return _AdaGradUpdater(self)


class _RMSPropUpdater(_StatefulUpdater):
    def __init__(self, config: "RMSProp") -> None:
        super().__init__()
        self.config = config

    def apply(self, state, layer, gw, gb, samples):
        cfg = self.config
        (sw,), (sb,) = state.weights, state.biases
        sw *= cfg.rho
        sw += (1.0 - cfg.rho) * gw * gw
        sb *= cfg.rho
        sb += (1.0 - cfg.rho) * gb * gb
        layer.weights -= cfg.eta * gw / (np.sqrt(sw) + cfg.epsilon)
        layer.biases -= cfg.eta * gb / (np.sqrt(sb) + cfg.epsilon)


@dataclass
class RMSProp:
    """Exponentially decayed squared-gradient normalisation."""

    eta: float = 0.001
    rho: float = 0.9
    epsilon: float = 1e-8

    def __post_init__(self) -> None:
        _check_positive(eta=self.eta, epsilon=self.epsilon)
        _check_unit(rho=self.rho)

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        return _RMSPropUpdater(self)


class _AdamUpdater(_StatefulUpdater):
    buffers = 2

    def __init__(self, config: "Adam") -> None:
        super().__init__()
        self.config = config

    def apply(self, state, layer, gw, gb, samples):
        cfg = self.config
        t = state.step
        (mw, vw), (mb, vb) = state.weights, state.biases
        for param, grad, m, v in ((layer.weights, gw, mw, vw), (layer.biases, gb, mb, vb)):
            m *= cfg.beta1
            m += (1.0 - cfg.beta1) * grad
            v *= cfg.beta2
            v += (1.0 - cfg.beta2) * grad * grad
            m_hat = m / (1.0 - cfg.beta1**t)
            v_hat = v / (1.0 - cfg.beta2**t)
            param -= cfg.eta * m_hat / (np.sqrt(v_hat) + cfg.epsilon)


@dataclass
class Adam:
    """Adaptive moment estimation."""

    eta: float = 0.001
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8

    def __post_init__(self) -> None:
        _check_positive(eta=self.eta, epsilon=self.epsilon)
        _check_unit(beta1=self.beta1, beta2=self.beta2)

    def build_updater(self, network: SequentialNetwork) -> WeightsUpdater:
        return _AdamUpdater(self)


_ALGORITHMS: Dict[str, Callable[..., TrainingAlgorithm]] = {
    "sgd": StochasticGradientDescent,
    "momentum": Momentum,
    "adagrad": AdaGrad,
    "rmsprop": RMSProp,
    "adam": Adam,
}


def resolve_algorithm(name: str, **options: float) -> TrainingAlgorithm:
    """Build the training algorithm registered as ``name`` with ``options``."""

    key = name.strip().lower()
    try:
        factory = _ALGORITHMS[key]
    except KeyError as exc:
        available = ", ".join(sorted(_ALGORITHMS))
        raise ValueError(f"Unknown training algorithm {name!r}. Available: {available}") from exc
    if "lambda" in options:
        options["lambda_"] = options.pop("lambda")
    return factory(**options)


def algorithm_names() -> Tuple[str, ...]:
    return tuple(sorted(_ALGORITHMS))


__all__ = [
    "AdaGrad",
    "Adam",
    "Momentum",
    "RMSProp",
    "StochasticGradientDescent",
    "TrainingAlgorithm",
    "algorithm_names",
    "resolve_algorithm",
]
