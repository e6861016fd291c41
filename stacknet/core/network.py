"""Sequential network composed of an ordered, immutable stack of layers."""

from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple, Union

import numpy as np

from . import binary
from .errors import ShapeMismatchError
from .layers import Layer, OutputLayer
from .tensor import Tensor, TensorArena
from .types import DTYPE, Array, NetworkType, SamplesBatch, TensorInfo, WeightsUpdater

logger = logging.getLogger(__name__)

PathOrStream = Union[str, Path, BinaryIO]


class SequentialNetwork:
    """Feed-forward network evaluating its layers strictly in order."""

    network_type = NetworkType.SEQUENTIAL

    def __init__(self, layers: Sequence[Layer]) -> None:
        layers = tuple(layers)
        if not layers:
            raise ValueError("A network needs at least one layer")
        for idx, (previous, current) in enumerate(zip(layers[:-1], layers[1:]), start=1):
            if previous.output_info != current.input_info:
                raise ShapeMismatchError(
                    f"Layer {idx} expects input {current.input_info} but the previous "
                    f"layer produces {previous.output_info}"
                )
        if not layers[-1].is_output:
            raise ValueError("The last layer of a network must be an output layer")
        for idx, layer in enumerate(layers[:-1]):
            if layer.is_output:
                raise ValueError(
                    f"Layer {idx} is an output layer; only the last layer may be one"
                )
        self._layers: Tuple[Layer, ...] = layers

    # ------------------------------------------------------------------
    # Properties

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return self._layers

    @property
    def input_info(self) -> TensorInfo:
        return self._layers[0].input_info

    @property
    def output_info(self) -> TensorInfo:
        return self._layers[-1].output_info

    @property
    def output_layer(self) -> OutputLayer:
        return self._layers[-1]  # type: ignore[return-value]

    @property
    def parameters(self) -> int:
        return sum(layer.parameters for layer in self._layers if layer.weighted)

    def parameters_finite(self) -> bool:
        return all(
            np.isfinite(layer.weights).all() and np.isfinite(layer.biases).all()
            for layer in self._layers
            if layer.weighted
        )

    # ------------------------------------------------------------------
    # Public numpy entry points

    def forward(self, x: Array) -> Array:
        """Return the network output for one sample (1-D) or a batch (2-D)."""

        single = np.ndim(x) == 1
        buffer = self._as_buffer(x)
        x_tensor = self._reshape_input(buffer)
        with self._forward(x_tensor) as yhat:
            return yhat.to_array() if single else yhat.to_array_2d()

    def calculate_cost(self, x: Array, y: Array) -> float:
        x_tensor = self._reshape_input(self._as_buffer(x))
        y_buffer = self._as_buffer(y)
        y_tensor = self._reshape_targets(y_buffer, x_tensor.rows)
        return self._calculate_cost(x_tensor, y_tensor)

    def extract_deep_features(self, x: Array) -> List[Tuple[Array, Array]]:
        """Return a copy of the ``(z, a)`` pair produced by every layer."""

        features: List[Tuple[Array, Array]] = []
        with TensorArena() as arena:
            current = self._reshape_input(self._as_buffer(x))
            for layer in self._layers:
                z, a = layer.forward(current)
                arena.adopt(z)
                arena.adopt(a)
                features.append((z.to_array_2d(), a.to_array_2d()))
                current = a
        return features

    # ------------------------------------------------------------------
    # Tensor-level implementation

    def _forward(self, x: Tensor) -> Tensor:
        """Fold ``x`` through every layer and return the owned final activation."""

        current = x
        for layer in self._layers:
            try:
                z, a = layer.forward(current)
            finally:
                if current is not x:
                    current.free()
            z.free()
            current = a
        return current

    def _calculate_cost(self, x: Tensor, y: Tensor) -> float:
        with self._forward(x) as yhat:
            return self.output_layer.cost(yhat.data, y.data)

    def backpropagate(
        self,
        batch: SamplesBatch,
        dropout: float,
        updater: WeightsUpdater,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """Run one forward/backward pass over ``batch`` updating every weighted layer.

        ``updater`` is called once per weighted layer with the summed
        gradient and the batch size. Every tensor allocated here is released
        before returning, on the error path as well.
        """

        if dropout > 0.0 and rng is None:
            rng = np.random.default_rng()
        x = self._reshape_input(batch.inputs)
        y = self._reshape_targets(batch.targets, x.rows)

        with TensorArena() as arena:
            cache: List[Tuple[Tensor, Tensor, Tensor, Optional[Tensor]]] = []
            current = x
            for layer in self._layers:
                z, a = layer.forward(current)
                arena.adopt(z)
                arena.adopt(a)
                mask = None
                if dropout > 0.0 and layer.supports_dropout:
                    mask = layer.apply_dropout(a, dropout, rng)
                    if mask is not None:
                        arena.adopt(mask)
                cache.append((current, z, a, mask))
                current = a

            last = len(self._layers) - 1
            x_out, z_out, a_out, _ = cache[last]
            delta = arena.adopt(
                self.output_layer.backward_output(x_out, z_out, a_out, y, updater, last)
            )
            for idx in range(last - 1, -1, -1):
                layer = self._layers[idx]
                x_in, z, a, mask = cache[idx]
                if mask is not None:
                    delta.data[...] *= mask.data
                propagated = arena.adopt(layer.backward(x_in, z, a, delta, updater, idx))
                arena.release(delta)
                delta = propagated

    # ------------------------------------------------------------------
    # Shape helpers

    @staticmethod
    def _as_buffer(values: Array) -> Array:
        return np.ascontiguousarray(np.atleast_2d(values), dtype=DTYPE)

    def _reshape_input(self, buffer: Array) -> Tensor:
        if buffer.ndim != 2 or buffer.shape[1] != self.input_info.size:
            raise ShapeMismatchError(
                f"Network expects inputs with {self.input_info.size} features, "
                f"got shape {buffer.shape}"
            )
        return Tensor.reshape(np.ascontiguousarray(buffer, dtype=DTYPE), *buffer.shape)

    def _reshape_targets(self, buffer: Array, rows: int) -> Tensor:
        if buffer.ndim != 2 or buffer.shape != (rows, self.output_info.size):
            raise ShapeMismatchError(
                f"Expected outputs of shape {(rows, self.output_info.size)}, "
                f"got {buffer.shape}"
            )
        return Tensor.reshape(np.ascontiguousarray(buffer, dtype=DTYPE), *buffer.shape)

    # ------------------------------------------------------------------
    # Serialization and misc

    def serialize_metadata_as_json(self) -> str:
        """Describe the network structure; informational only."""

        payload = {
            "network_type": self.network_type.name,
            "input_info": self.input_info.to_dict(),
            "output_info": self.output_info.to_dict(),
            "parameters": self.parameters,
            "layers": [layer.describe() for layer in self._layers],
        }
        return json.dumps(payload, indent=2)

    def save(self, target: PathOrStream) -> None:
        """Write the gzip-compressed binary record of the network."""

        if isinstance(target, (str, Path)):
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("wb") as handle:
                self.save(handle)
            logger.info("Saved network with %d parameters to %s", self.parameters, path)
            return
        with gzip.GzipFile(fileobj=target, mode="wb") as gz:
            binary.write_int(gz, self.network_type)
            for layer in self._layers:
                layer.serialize(gz)

    @classmethod
    def load(cls, source: PathOrStream, input_info: TensorInfo) -> "SequentialNetwork":
        """Rebuild a network written by :meth:`save`.

        The stream does not store the input shape of the first layer, so it
        must be supplied; every other input shape is the previous layer's
        output shape.
        """

        if isinstance(source, (str, Path)):
            with Path(source).open("rb") as handle:
                return cls.load(handle, input_info)
        with gzip.GzipFile(fileobj=source, mode="rb") as gz:
            tag = binary.try_read_int(gz)
            if tag is None:
                raise EOFError("Empty network stream")
            if NetworkType(tag) != cls.network_type:
                raise ValueError(f"Unsupported network type {NetworkType(tag).name}")
            layers: List[Layer] = []
            info = input_info
            while True:
                layer = Layer.deserialize(gz, info)
                if layer is None:
                    break
                layers.append(layer)
                info = layer.output_info
        return cls(layers)

    def clone(self) -> "SequentialNetwork":
        return type(self)([layer.clone() for layer in self._layers])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SequentialNetwork):
            return NotImplemented
        return (
            type(other) is type(self)
            and other.input_info == self.input_info
            and other.output_info == self.output_info
            and len(other.layers) == len(self._layers)
            and all(l1 == l2 for l1, l2 in zip(self._layers, other.layers))
        )

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self._layers)

    def __repr__(self) -> str:
        return (
            f"SequentialNetwork({self.input_info.size} -> {self.output_info.size}, "
            f"layers={len(self._layers)}, parameters={self.parameters})"
        )


__all__ = ["SequentialNetwork"]
