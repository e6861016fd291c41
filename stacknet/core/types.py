"""Core typing contracts for StackNet."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

import numpy as np

from .errors import ShapeMismatchError

Array = np.ndarray

#: Element type of every buffer handled by the engine.
DTYPE = np.float32


class NetworkType(IntEnum):
    """Discriminant written at the head of a serialized network."""

    SEQUENTIAL = 0


class LayerType(IntEnum):
    """Discriminant of the closed set of layer variants."""

    FULLY_CONNECTED = 0
    ACTIVATION = 1
    OUTPUT = 2
    SOFTMAX = 3


class ActivationType(IntEnum):
    SIGMOID = 0
    TANH = 1
    RELU = 2
    LEAKY_RELU = 3
    IDENTITY = 4
    SOFTPLUS = 5
    ELU = 6
    SOFTMAX = 7


class CostFunctionType(IntEnum):
    QUADRATIC = 0
    CROSS_ENTROPY = 1
    LOG_LIKELIHOOD = 2


@dataclass(frozen=True)
class TensorInfo:
    """Shape descriptor of a single sample flowing between two layers."""

    height: int
    width: int

    def __post_init__(self) -> None:
        if self.height <= 0 or self.width <= 0:
            raise ValueError(f"Invalid tensor extents ({self.height}, {self.width})")

    @classmethod
    def linear(cls, size: int) -> "TensorInfo":
        return cls(1, int(size))

    @property
    def size(self) -> int:
        return self.height * self.width

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(DTYPE)

    def to_dict(self) -> dict[str, int]:
        return {"height": self.height, "width": self.width, "size": self.size}


@dataclass(frozen=True)
class SamplesBatch:
    """A group of paired (input row, expected-output row) samples."""

    inputs: Array
    targets: Array

    def __post_init__(self) -> None:
        if self.inputs.ndim != 2 or self.targets.ndim != 2:
            raise ShapeMismatchError("Batch inputs and targets must be 2-D arrays")
        if self.inputs.shape[0] != self.targets.shape[0]:
            raise ShapeMismatchError(
                f"Batch has {self.inputs.shape[0]} inputs but {self.targets.shape[0]} targets"
            )

    @classmethod
    def from_arrays(cls, inputs: Array, targets: Array) -> "SamplesBatch":
        return cls(
            inputs=np.ascontiguousarray(np.atleast_2d(inputs), dtype=DTYPE),
            targets=np.ascontiguousarray(np.atleast_2d(targets), dtype=DTYPE),
        )

    @property
    def size(self) -> int:
        return int(self.inputs.shape[0])


#: Signature of the per-layer update rule invoked during backpropagation:
#: ``(layer_index, dJdw, dJdb, samples, layer) -> None``.
WeightsUpdater = Callable[[int, Array, Array, int, object], None]


__all__ = [
    "ActivationType",
    "Array",
    "CostFunctionType",
    "DTYPE",
    "LayerType",
    "NetworkType",
    "SamplesBatch",
    "TensorInfo",
    "WeightsUpdater",
]
