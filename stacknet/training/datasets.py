"""Dataset containers understood by the trainer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence

import numpy as np

from ..core.errors import ShapeMismatchError
from ..core.types import DTYPE, Array, SamplesBatch


def _as_matrix(values: Array, name: str) -> Array:
    array = np.ascontiguousarray(values, dtype=DTYPE)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    if array.ndim != 2:
        raise ShapeMismatchError(f"{name} must be a 2-D array, got {array.ndim} dimensions")
    return array


class BatchesCollection:
    """Training dataset split into fixed batches, iterated in a stable order."""

    def __init__(self, batches: Sequence[SamplesBatch]) -> None:
        batches = list(batches)
        if not batches:
            raise ValueError("A training dataset needs at least one batch")
        d_in = batches[0].inputs.shape[1]
        d_out = batches[0].targets.shape[1]
        for idx, batch in enumerate(batches):
            if batch.inputs.shape[1] != d_in or batch.targets.shape[1] != d_out:
                raise ShapeMismatchError(
                    f"Batch {idx} has shape {batch.inputs.shape}/{batch.targets.shape}, "
                    f"expected (*, {d_in})/(*, {d_out})"
                )
        self._batches: List[SamplesBatch] = batches

    @classmethod
    def from_arrays(
        cls,
        inputs: Array,
        targets: Array,
        batch_size: int,
        *,
        shuffle_seed: int | None = None,
    ) -> "BatchesCollection":
        """Split ``inputs``/``targets`` into batches of ``batch_size`` samples.

        The last batch holds the remainder. When ``shuffle_seed`` is given the
        samples are permuted once, deterministically, before splitting.
        """

        x = _as_matrix(inputs, "inputs")
        y = _as_matrix(targets, "targets")
        if x.shape[0] != y.shape[0]:
            raise ShapeMismatchError(f"{x.shape[0]} inputs but {y.shape[0]} targets")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if shuffle_seed is not None:
            order = np.random.default_rng(shuffle_seed).permutation(x.shape[0])
            x, y = x[order], y[order]
        batches = [
            SamplesBatch(inputs=x[start : start + batch_size], targets=y[start : start + batch_size])
            for start in range(0, x.shape[0], batch_size)
        ]
        return cls(batches)

    def __iter__(self) -> Iterator[SamplesBatch]:
        return iter(self._batches)

    def __len__(self) -> int:
        return len(self._batches)

    def __getitem__(self, index: int) -> SamplesBatch:
        return self._batches[index]

    @property
    def count(self) -> int:
        """Total number of samples across all batches."""

        return sum(batch.size for batch in self._batches)

    @property
    def input_features(self) -> int:
        return int(self._batches[0].inputs.shape[1])

    @property
    def output_features(self) -> int:
        return int(self._batches[0].targets.shape[1])

    def to_arrays(self) -> tuple[Array, Array]:
        return (
            np.concatenate([b.inputs for b in self._batches], axis=0),
            np.concatenate([b.targets for b in self._batches], axis=0),
        )


@dataclass
class _EvaluationSet:
    inputs: Array
    targets: Array

    def __post_init__(self) -> None:
        self.inputs = _as_matrix(self.inputs, "inputs")
        self.targets = _as_matrix(self.targets, "targets")
        if self.inputs.shape[0] != self.targets.shape[0]:
            raise ShapeMismatchError(
                f"{self.inputs.shape[0]} inputs but {self.targets.shape[0]} targets"
            )
        if self.inputs.shape[0] == 0:
            raise ValueError("Evaluation datasets cannot be empty")

    @property
    def count(self) -> int:
        return int(self.inputs.shape[0])


@dataclass
class ValidationDataset(_EvaluationSet):
    """Dataset used to detect convergence and stop training early.

    Training stops when the validation cost has not moved by more than
    ``tolerance`` across the last ``epochs_interval`` epochs.
    """

    tolerance: float = 1e-2
    epochs_interval: int = 5

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if self.epochs_interval < 1:
            raise ValueError("epochs_interval must be at least 1")

    def has_converged(self, costs: Sequence[float]) -> bool:
        if len(costs) <= self.epochs_interval:
            return False
        window = costs[-(self.epochs_interval + 1) :]
        if not all(math.isfinite(c) for c in window):
            return False
        return max(window) - min(window) <= self.tolerance


@dataclass
class TestDataset(_EvaluationSet):
    """Dataset evaluated after each epoch and reported to its own observers."""

    __test__ = False  # not a pytest test class

    observers: List[object] = field(default_factory=list)


__all__ = ["BatchesCollection", "TestDataset", "ValidationDataset"]
