"""Activation utilities for StackNet."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

from .types import ActivationType, Array

_LEAKY_SLOPE = 0.01


def sigmoid(x: Array) -> Array:
    """Return the logistic sigmoid, clipped to avoid ``exp`` overflow."""

    return 1.0 / (1.0 + np.exp(-np.clip(x, -88.0, 88.0)))


def sigmoid_prime(x: Array) -> Array:
    s = sigmoid(x)
    return s * (1.0 - s)


def tanh(x: Array) -> Array:
    return np.tanh(x)


def tanh_prime(x: Array) -> Array:
    return 1.0 - np.tanh(x) ** 2


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def relu_prime(x: Array) -> Array:
    return (x > 0).astype(x.dtype)


def leaky_relu(x: Array) -> Array:
    return np.where(x > 0, x, _LEAKY_SLOPE * x)


def leaky_relu_prime(x: Array) -> Array:
    return np.where(x > 0, 1.0, _LEAKY_SLOPE).astype(x.dtype)


def identity(x: Array) -> Array:
    return x.copy()


def identity_prime(x: Array) -> Array:
    return np.ones_like(x)


def softplus(x: Array) -> Array:
    return np.logaddexp(0.0, x)


def elu(x: Array) -> Array:
    return np.where(x > 0, x, np.expm1(np.minimum(x, 0.0)))


def elu_prime(x: Array) -> Array:
    return np.where(x > 0, 1.0, np.exp(np.minimum(x, 0.0))).astype(x.dtype)


def softmax(x: Array) -> Array:
    """Row-wise softmax over a ``batch x classes`` array."""

    shifted = x - np.max(x, axis=1, keepdims=True)
    e = np.exp(shifted)
    return e / np.sum(e, axis=1, keepdims=True)


@dataclass(frozen=True)
class Activation:
    """An activation function paired with its derivative.

    ``prime`` is ``None`` for functions whose derivative is only ever used in
    closed form together with a cost function (softmax).
    """

    kind: ActivationType
    fn: Callable[[Array], Array]
    prime: Optional[Callable[[Array], Array]]

    @property
    def name(self) -> str:
        return self.kind.name.lower()

    def __call__(self, x: Array) -> Array:
        return self.fn(x)

    def derivative(self, x: Array) -> Array:
        if self.prime is None:
            raise ValueError(f"Activation {self.name!r} has no standalone derivative")
        return self.prime(x)


_REGISTRY: Dict[ActivationType, Activation] = {
    ActivationType.SIGMOID: Activation(ActivationType.SIGMOID, sigmoid, sigmoid_prime),
    ActivationType.TANH: Activation(ActivationType.TANH, tanh, tanh_prime),
    ActivationType.RELU: Activation(ActivationType.RELU, relu, relu_prime),
    ActivationType.LEAKY_RELU: Activation(
        ActivationType.LEAKY_RELU, leaky_relu, leaky_relu_prime
    ),
    ActivationType.IDENTITY: Activation(ActivationType.IDENTITY, identity, identity_prime),
    # d/dx softplus(x) is the sigmoid
    ActivationType.SOFTPLUS: Activation(ActivationType.SOFTPLUS, softplus, sigmoid),
    ActivationType.ELU: Activation(ActivationType.ELU, elu, elu_prime),
    ActivationType.SOFTMAX: Activation(ActivationType.SOFTMAX, softmax, None),
}


def resolve(kind: ActivationType | str) -> Activation:
    """Return the :class:`Activation` registered for ``kind``."""

    if isinstance(kind, str):
        try:
            kind = ActivationType[kind.strip().upper()]
        except KeyError as exc:
            available = ", ".join(sorted(k.name.lower() for k in ActivationType))
            raise ValueError(
                f"Unknown activation {kind!r}. Available activations: {available}"
            ) from exc
    return _REGISTRY[ActivationType(kind)]


__all__ = ["Activation", "resolve", "relu", "sigmoid", "softmax", "tanh"]
