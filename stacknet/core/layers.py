"""Layer contract and the closed set of concrete layer variants.

Every layer exposes the same capability interface (``forward``,
``backward``, ``clone``, ``serialize``, value equality); the
``weighted`` / ``supports_dropout`` / ``is_output`` class flags describe
what else a variant can do instead of a separate hierarchy branch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, ClassVar, Dict, Optional, Tuple, Type

import numpy as np

from . import activations as _activations
from . import binary
from . import costs as _costs
from .activations import Activation
from .costs import CostFunction
from .errors import ShapeMismatchError
from .tensor import Tensor
from .types import (
    DTYPE,
    ActivationType,
    Array,
    CostFunctionType,
    LayerType,
    TensorInfo,
    WeightsUpdater,
)

LayerFactory = Callable[[TensorInfo], "Layer"]

_PARAMETERS_ATOL = 1e-6


class Layer(ABC):
    """Unit of computation shared by every layer variant."""

    layer_type: ClassVar[LayerType]
    weighted: ClassVar[bool] = False
    supports_dropout: ClassVar[bool] = False
    is_output: ClassVar[bool] = False

    def __init__(
        self,
        input_info: TensorInfo,
        output_info: TensorInfo,
        activation: ActivationType | str,
    ) -> None:
        self.input_info = input_info
        self.output_info = output_info
        self.activation: Activation = _activations.resolve(activation)

    # ------------------------------------------------------------------
    # Computation contract

    @abstractmethod
    def forward(self, x: Tensor) -> Tuple[Tensor, Tensor]:
        """Return the owned ``(z, a)`` pair for the batch ``x``."""

    @abstractmethod
    def backward(
        self,
        x: Tensor,
        z: Tensor,
        a: Tensor,
        delta: Tensor,
        updater: Optional[WeightsUpdater] = None,
        index: int = -1,
    ) -> Tensor:
        """Return the owned error with respect to ``x``.

        ``delta`` is the error with respect to this layer's activation ``a``.
        """

    @abstractmethod
    def clone(self) -> "Layer":
        """Return a deep copy of the layer."""

    def apply_dropout(
        self, a: Tensor, dropout: float, rng: np.random.Generator
    ) -> Optional[Tensor]:
        return None

    def _check_input(self, x: Tensor) -> None:
        if x.columns != self.input_info.size:
            raise ShapeMismatchError(
                f"{type(self).__name__} expects {self.input_info.size} input features, "
                f"got {x.columns}"
            )

    # ------------------------------------------------------------------
    # Serialization

    def serialize(self, stream: BinaryIO) -> None:
        binary.write_int(stream, self.layer_type)
        binary.write_int(stream, self.output_info.height)
        binary.write_int(stream, self.output_info.width)
        self._write_payload(stream)

    @abstractmethod
    def _write_payload(self, stream: BinaryIO) -> None:
        ...

    @classmethod
    @abstractmethod
    def _read_payload(
        cls, stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
    ) -> "Layer":
        ...

    @staticmethod
    def deserialize(stream: BinaryIO, input_info: TensorInfo) -> Optional["Layer"]:
        """Read the next layer, or return ``None`` at the end of the stream."""

        tag = binary.try_read_int(stream)
        if tag is None:
            return None
        try:
            layer_cls = _LAYER_CLASSES[LayerType(tag)]
        except ValueError as exc:
            raise ValueError(f"Unknown layer type tag {tag} in stream") from exc
        output_info = TensorInfo(binary.read_int(stream), binary.read_int(stream))
        return layer_cls._read_payload(stream, input_info, output_info)

    # ------------------------------------------------------------------
    # Introspection

    @property
    def parameters(self) -> int:
        return 0

    def describe(self) -> Dict[str, object]:
        return {
            "layer_type": self.layer_type.name,
            "input_info": self.input_info.to_dict(),
            "output_info": self.output_info.to_dict(),
            "activation": self.activation.kind.name,
            "parameters": self.parameters,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Layer):
            return NotImplemented
        return (
            type(other) is type(self)
            and other.input_info == self.input_info
            and other.output_info == self.output_info
            and other.activation.kind == self.activation.kind
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.input_info.size} -> {self.output_info.size}, "
            f"{self.activation.name})"
        )


# ----------------------------------------------------------------------
# Weight initialisation


def _glorot_uniform(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    return rng.uniform(-limit, limit, size=(fan_in, fan_out))


def _glorot_normal(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    return rng.normal(0.0, np.sqrt(2.0 / (fan_in + fan_out)), size=(fan_in, fan_out))


def _he_uniform(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    limit = np.sqrt(6.0 / fan_in)
    return rng.uniform(-limit, limit, size=(fan_in, fan_out))


def _he_normal(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    return rng.normal(0.0, np.sqrt(2.0 / fan_in), size=(fan_in, fan_out))


def _lecun_uniform(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    limit = np.sqrt(3.0 / fan_in)
    return rng.uniform(-limit, limit, size=(fan_in, fan_out))


def _lecun_normal(fan_in: int, fan_out: int, rng: np.random.Generator) -> Array:
    return rng.normal(0.0, np.sqrt(1.0 / fan_in), size=(fan_in, fan_out))


WEIGHTS_INITIALIZERS: Dict[str, Callable[[int, int, np.random.Generator], Array]] = {
    "glorot_uniform": _glorot_uniform,
    "glorot_normal": _glorot_normal,
    "he_uniform": _he_uniform,
    "he_normal": _he_normal,
    "lecun_uniform": _lecun_uniform,
    "lecun_normal": _lecun_normal,
}

BIASES_INITIALIZERS = ("zero", "gaussian")


def initialize_parameters(
    fan_in: int,
    fan_out: int,
    weights_init: str,
    biases_init: str,
    rng: np.random.Generator,
) -> Tuple[Array, Array]:
    """Return freshly initialised ``(weights, biases)`` for a weighted layer."""

    try:
        init = WEIGHTS_INITIALIZERS[weights_init]
    except KeyError as exc:
        available = ", ".join(sorted(WEIGHTS_INITIALIZERS))
        raise ValueError(
            f"Unknown weights initialization {weights_init!r}. Available: {available}"
        ) from exc
    if biases_init == "zero":
        biases = np.zeros(fan_out)
    elif biases_init == "gaussian":
        biases = rng.standard_normal(fan_out)
    else:
        raise ValueError(f"Unknown biases initialization {biases_init!r}")
    return init(fan_in, fan_out, rng).astype(DTYPE), biases.astype(DTYPE)


# ----------------------------------------------------------------------
# Concrete variants


class FullyConnectedLayer(Layer):
    """Dense layer computing ``a = f(x @ W + b)``."""

    layer_type = LayerType.FULLY_CONNECTED
    weighted = True
    supports_dropout = True

    def __init__(
        self,
        input_info: TensorInfo,
        output_info: TensorInfo,
        activation: ActivationType | str,
        weights: Array,
        biases: Array,
    ) -> None:
        super().__init__(input_info, output_info, activation)
        weights = np.ascontiguousarray(weights, dtype=DTYPE)
        biases = np.ascontiguousarray(biases, dtype=DTYPE).reshape(-1)
        if weights.shape != (input_info.size, output_info.size):
            raise ShapeMismatchError(
                f"Weights shape {weights.shape} does not match "
                f"({input_info.size}, {output_info.size})"
            )
        if biases.shape != (output_info.size,):
            raise ShapeMismatchError(
                f"Biases shape {biases.shape} does not match ({output_info.size},)"
            )
        self.weights = weights
        self.biases = biases

    @property
    def parameters(self) -> int:
        return int(self.weights.size + self.biases.size)

    def forward(self, x: Tensor) -> Tuple[Tensor, Tensor]:
        self._check_input(x)
        z = Tensor.allocate(x.rows, self.output_info.size, zeroed=False)
        a = None
        try:
            np.matmul(x.data, self.weights, out=z.data)
            z.data[...] += self.biases
            a = Tensor.like(z, zeroed=False)
            a.data[...] = self.activation(z.data)
        except BaseException:
            z.free()
            if a is not None:
                a.free()
            raise
        return z, a

    def apply_dropout(
        self, a: Tensor, dropout: float, rng: np.random.Generator
    ) -> Optional[Tensor]:
        """Zero each unit with probability ``dropout`` and rescale survivors.

        The returned mask must be applied to the incoming error on the
        backward pass.
        """

        if dropout <= 0.0:
            return None
        mask = Tensor.like(a, zeroed=False)
        keep = rng.random(a.shape) >= dropout
        mask.data[...] = keep / (1.0 - dropout)
        a.data[...] *= mask.data
        return mask

    def backward(
        self,
        x: Tensor,
        z: Tensor,
        a: Tensor,
        delta: Tensor,
        updater: Optional[WeightsUpdater] = None,
        index: int = -1,
    ) -> Tensor:
        dz = delta.data * self.activation.derivative(z.data)
        return self._backward_pre_activation(x, dz.astype(DTYPE, copy=False), updater, index)

    def _backward_pre_activation(
        self,
        x: Tensor,
        dz: Array,
        updater: Optional[WeightsUpdater],
        index: int,
    ) -> Tensor:
        # The propagated error uses the weights before this step's update.
        dx = Tensor.allocate(x.rows, self.input_info.size, zeroed=False)
        try:
            np.matmul(dz, self.weights.T, out=dx.data)
            if updater is not None:
                with Tensor.allocate(*self.weights.shape, zeroed=False) as dw, Tensor.allocate(
                    1, self.output_info.size, zeroed=False
                ) as db:
                    np.matmul(x.data.T, dz, out=dw.data)
                    np.sum(dz, axis=0, keepdims=True, out=db.data)
                    updater(index, dw.data, db.data.reshape(-1), x.rows, self)
        except BaseException:
            dx.free()
            raise
        return dx

    def clone(self) -> "FullyConnectedLayer":
        return FullyConnectedLayer(
            self.input_info,
            self.output_info,
            self.activation.kind,
            self.weights.copy(),
            self.biases.copy(),
        )

    def _write_payload(self, stream: BinaryIO) -> None:
        binary.write_int(stream, self.activation.kind)
        binary.write_floats(stream, self.weights)
        binary.write_floats(stream, self.biases)

    @classmethod
    def _read_payload(
        cls, stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
    ) -> "FullyConnectedLayer":
        activation = ActivationType(binary.read_int(stream))
        weights, biases = _read_parameters(stream, input_info, output_info)
        return cls(input_info, output_info, activation, weights, biases)

    def describe(self) -> Dict[str, object]:
        info = super().describe()
        info["weights"] = list(self.weights.shape)
        info["biases"] = list(self.biases.shape)
        return info

    def __eq__(self, other: object) -> bool:
        equal = super().__eq__(other)
        if equal is not True:
            return equal
        return np.allclose(
            self.weights, other.weights, rtol=0.0, atol=_PARAMETERS_ATOL
        ) and np.allclose(self.biases, other.biases, rtol=0.0, atol=_PARAMETERS_ATOL)


class OutputLayer(FullyConnectedLayer):
    """Fully connected layer that also owns the network's cost function."""

    layer_type = LayerType.OUTPUT
    supports_dropout = False
    is_output = True

    def __init__(
        self,
        input_info: TensorInfo,
        output_info: TensorInfo,
        activation: ActivationType | str,
        weights: Array,
        biases: Array,
        cost: CostFunctionType | str,
    ) -> None:
        super().__init__(input_info, output_info, activation, weights, biases)
        self.cost_function: CostFunction = _costs.resolve(cost)
        self._validate_pairing()

    def _validate_pairing(self) -> None:
        kind, cost = self.activation.kind, self.cost_function.kind
        if kind == ActivationType.SOFTMAX or cost == CostFunctionType.LOG_LIKELIHOOD:
            raise ValueError("Softmax with log-likelihood cost requires a SoftmaxLayer")
        if cost == CostFunctionType.CROSS_ENTROPY and kind != ActivationType.SIGMOID:
            raise ValueError("The cross-entropy cost requires a sigmoid output activation")

    def cost(self, yhat: Array, y: Array) -> float:
        return self.cost_function.cost(yhat, y)

    def backward_output(
        self,
        x: Tensor,
        z: Tensor,
        a: Tensor,
        y: Tensor,
        updater: Optional[WeightsUpdater] = None,
        index: int = -1,
    ) -> Tensor:
        """Backward step driven by the cost gradient instead of a delta."""

        if y.shape != a.shape:
            raise ShapeMismatchError(
                f"Expected outputs of shape {a.shape}, got {y.shape}"
            )
        dz = self.cost_function.delta(z.data, a.data, y.data, self.activation)
        return self._backward_pre_activation(x, dz.astype(DTYPE, copy=False), updater, index)

    def clone(self) -> "OutputLayer":
        return OutputLayer(
            self.input_info,
            self.output_info,
            self.activation.kind,
            self.weights.copy(),
            self.biases.copy(),
            self.cost_function.kind,
        )

    def _write_payload(self, stream: BinaryIO) -> None:
        binary.write_int(stream, self.activation.kind)
        binary.write_int(stream, self.cost_function.kind)
        binary.write_floats(stream, self.weights)
        binary.write_floats(stream, self.biases)

    @classmethod
    def _read_payload(
        cls, stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
    ) -> "OutputLayer":
        activation = ActivationType(binary.read_int(stream))
        cost = CostFunctionType(binary.read_int(stream))
        weights, biases = _read_parameters(stream, input_info, output_info)
        return cls(input_info, output_info, activation, weights, biases, cost)

    def describe(self) -> Dict[str, object]:
        info = super().describe()
        info["cost_function"] = self.cost_function.kind.name
        return info

    def __eq__(self, other: object) -> bool:
        equal = super().__eq__(other)
        if equal is not True:
            return equal
        return other.cost_function.kind == self.cost_function.kind


class SoftmaxLayer(OutputLayer):
    """Softmax output layer trained with the log-likelihood cost."""

    layer_type = LayerType.SOFTMAX

    def __init__(
        self,
        input_info: TensorInfo,
        output_info: TensorInfo,
        weights: Array,
        biases: Array,
    ) -> None:
        FullyConnectedLayer.__init__(
            self, input_info, output_info, ActivationType.SOFTMAX, weights, biases
        )
        self.cost_function = _costs.resolve(CostFunctionType.LOG_LIKELIHOOD)

    def clone(self) -> "SoftmaxLayer":
        return SoftmaxLayer(
            self.input_info, self.output_info, self.weights.copy(), self.biases.copy()
        )

    @classmethod
    def _read_payload(
        cls, stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
    ) -> "SoftmaxLayer":
        activation = ActivationType(binary.read_int(stream))
        cost = CostFunctionType(binary.read_int(stream))
        if activation != ActivationType.SOFTMAX or cost != CostFunctionType.LOG_LIKELIHOOD:
            raise ValueError("Corrupted softmax layer record")
        weights, biases = _read_parameters(stream, input_info, output_info)
        return cls(input_info, output_info, weights, biases)


class ActivationLayer(Layer):
    """Weightless layer applying an activation element-wise."""

    layer_type = LayerType.ACTIVATION

    def __init__(self, info: TensorInfo, activation: ActivationType | str) -> None:
        super().__init__(info, info, activation)
        if self.activation.prime is None:
            raise ValueError(f"{self.activation.name} cannot be used as an activation layer")

    def forward(self, x: Tensor) -> Tuple[Tensor, Tensor]:
        self._check_input(x)
        z = Tensor.like(x, zeroed=False)
        a = None
        try:
            z.data[...] = x.data
            a = Tensor.like(x, zeroed=False)
            a.data[...] = self.activation(x.data)
        except BaseException:
            z.free()
            if a is not None:
                a.free()
            raise
        return z, a

    def backward(
        self,
        x: Tensor,
        z: Tensor,
        a: Tensor,
        delta: Tensor,
        updater: Optional[WeightsUpdater] = None,
        index: int = -1,
    ) -> Tensor:
        dx = Tensor.like(delta, zeroed=False)
        try:
            np.multiply(delta.data, self.activation.derivative(z.data), out=dx.data)
        except BaseException:
            dx.free()
            raise
        return dx

    def clone(self) -> "ActivationLayer":
        return ActivationLayer(self.input_info, self.activation.kind)

    def _write_payload(self, stream: BinaryIO) -> None:
        binary.write_int(stream, self.activation.kind)

    @classmethod
    def _read_payload(
        cls, stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
    ) -> "ActivationLayer":
        if output_info != input_info:
            raise ShapeMismatchError(
                f"Activation layer output {output_info} differs from its input {input_info}"
            )
        return cls(input_info, ActivationType(binary.read_int(stream)))


def _read_parameters(
    stream: BinaryIO, input_info: TensorInfo, output_info: TensorInfo
) -> Tuple[Array, Array]:
    weights = binary.read_floats(stream, input_info.size * output_info.size)
    biases = binary.read_floats(stream, output_info.size)
    return weights.reshape(input_info.size, output_info.size), biases


_LAYER_CLASSES: Dict[LayerType, Type[Layer]] = {
    LayerType.FULLY_CONNECTED: FullyConnectedLayer,
    LayerType.ACTIVATION: ActivationLayer,
    LayerType.OUTPUT: OutputLayer,
    LayerType.SOFTMAX: SoftmaxLayer,
}


# ----------------------------------------------------------------------
# Factories


def fully_connected(
    neurons: int,
    activation: ActivationType | str = ActivationType.SIGMOID,
    *,
    weights_init: str = "glorot_uniform",
    biases_init: str = "zero",
    seed: int | None = None,
) -> LayerFactory:
    """Return a factory for a :class:`FullyConnectedLayer` with ``neurons`` units."""

    def _factory(info: TensorInfo) -> Layer:
        rng = np.random.default_rng(seed)
        weights, biases = initialize_parameters(
            info.size, neurons, weights_init, biases_init, rng
        )
        return FullyConnectedLayer(info, TensorInfo.linear(neurons), activation, weights, biases)

    return _factory


def activation(kind: ActivationType | str) -> LayerFactory:
    def _factory(info: TensorInfo) -> Layer:
        return ActivationLayer(info, kind)

    return _factory


def output(
    neurons: int,
    activation: ActivationType | str = ActivationType.SIGMOID,
    cost: CostFunctionType | str = CostFunctionType.CROSS_ENTROPY,
    *,
    weights_init: str = "glorot_uniform",
    biases_init: str = "zero",
    seed: int | None = None,
) -> LayerFactory:
    def _factory(info: TensorInfo) -> Layer:
        rng = np.random.default_rng(seed)
        weights, biases = initialize_parameters(
            info.size, neurons, weights_init, biases_init, rng
        )
        return OutputLayer(info, TensorInfo.linear(neurons), activation, weights, biases, cost)

    return _factory


def softmax(
    neurons: int,
    *,
    weights_init: str = "glorot_uniform",
    biases_init: str = "zero",
    seed: int | None = None,
) -> LayerFactory:
    def _factory(info: TensorInfo) -> Layer:
        rng = np.random.default_rng(seed)
        weights, biases = initialize_parameters(
            info.size, neurons, weights_init, biases_init, rng
        )
        return SoftmaxLayer(info, TensorInfo.linear(neurons), weights, biases)

    return _factory


__all__ = [
    "ActivationLayer",
    "FullyConnectedLayer",
    "Layer",
    "LayerFactory",
    "OutputLayer",
    "SoftmaxLayer",
    "activation",
    "fully_connected",
    "initialize_parameters",
    "output",
    "softmax",
]
