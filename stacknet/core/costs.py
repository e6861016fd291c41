"""Cost functions evaluated by output layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from .activations import Activation
from .types import Array, CostFunctionType

CostFn = Callable[[Array, Array], float]
DeltaFn = Callable[[Array, Array, Array, Activation], Array]

_EPS = 1e-9


@dataclass(frozen=True)
class CostFunction:
    """Cost wrapper returning the scalar cost and the output error dJ/dz.

    The error is per sample (not divided by the batch size); weights updaters
    are responsible for averaging over the batch.
    """

    kind: CostFunctionType
    cost_fn: CostFn
    delta_fn: DeltaFn

    @property
    def name(self) -> str:
        return self.kind.name.lower()

    def cost(self, yhat: Array, y: Array) -> float:
        return self.cost_fn(yhat, y)

    def delta(self, z: Array, a: Array, y: Array, activation: Activation) -> Array:
        return self.delta_fn(z, a, y, activation)


class CostRegistry:
    """Central registry for cost functions."""

    def __init__(self) -> None:
        self._registry: Dict[CostFunctionType, CostFunction] = {}

    def register(self, kind: CostFunctionType, cost_fn: CostFn, delta_fn: DeltaFn) -> None:
        self._registry[kind] = CostFunction(kind, cost_fn, delta_fn)

    def names(self) -> Iterable[str]:
        return sorted(kind.name.lower() for kind in self._registry)

    def resolve(self, kind: CostFunctionType | str) -> CostFunction:
        if isinstance(kind, str):
            try:
                kind = CostFunctionType[kind.strip().upper()]
            except KeyError as exc:
                available = ", ".join(self.names())
                raise ValueError(
                    f"Unknown cost function {kind!r}. Available cost functions: {available}"
                ) from exc
        return self._registry[CostFunctionType(kind)]


REGISTRY = CostRegistry()


def _quadratic(yhat: Array, y: Array) -> float:
    return float(0.5 * np.sum(np.square(yhat - y)) / yhat.shape[0])


def _quadratic_delta(z: Array, a: Array, y: Array, activation: Activation) -> Array:
    return (a - y) * activation.derivative(z)


def _cross_entropy(yhat: Array, y: Array) -> float:
    p = np.clip(yhat, _EPS, 1.0 - _EPS)
    return float(-np.sum(y * np.log(p) + (1.0 - y) * np.log(1.0 - p)) / yhat.shape[0])


def _log_likelihood(yhat: Array, y: Array) -> float:
    return float(-np.sum(y * np.log(yhat + _EPS)) / yhat.shape[0])


def _closed_form_delta(z: Array, a: Array, y: Array, activation: Activation) -> Array:
    # sigmoid + cross-entropy and softmax + log-likelihood both reduce to a - y
    return a - y


REGISTRY.register(CostFunctionType.QUADRATIC, _quadratic, _quadratic_delta)
REGISTRY.register(CostFunctionType.CROSS_ENTROPY, _cross_entropy, _closed_form_delta)
REGISTRY.register(CostFunctionType.LOG_LIKELIHOOD, _log_likelihood, _closed_form_delta)


def resolve(kind: CostFunctionType | str) -> CostFunction:
    return REGISTRY.resolve(kind)


__all__ = ["CostFunction", "CostRegistry", "REGISTRY", "resolve"]
