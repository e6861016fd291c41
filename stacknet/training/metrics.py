"""Evaluation helpers for the trainer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

import numpy as np

from ..core.errors import ShapeMismatchError
from ..core.network import SequentialNetwork
from ..core.types import Array


@dataclass(frozen=True)
class EvaluationResult:
    """Cost and classification accuracy of a network on a dataset."""

    cost: float
    accuracy: float
    samples: int

    def as_metrics(self) -> Dict[str, float]:
        return {"loss": self.cost, "accuracy": self.accuracy}


def classification_hits(predictions: Array, targets: Array) -> int:
    """Count the samples whose predicted class matches the expected one.

    Multi-output rows compare the arg-max; single-output rows are thresholded
    at 0.5.
    """

    if predictions.shape[1] == 1:
        return int(np.sum((predictions[:, 0] >= 0.5) == (targets[:, 0] >= 0.5)))
    return int(np.sum(np.argmax(predictions, axis=1) == np.argmax(targets, axis=1)))


def iter_slices(samples: int, max_batch_size: int) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, stop)`` bounds of sub-batches no larger than ``max_batch_size``."""

    if max_batch_size < 1:
        raise ValueError("max_batch_size must be at least 1")
    for start in range(0, samples, max_batch_size):
        yield start, min(start + max_batch_size, samples)


def evaluate(
    network: SequentialNetwork,
    inputs: Array,
    targets: Array,
    *,
    max_batch_size: int,
) -> EvaluationResult:
    """Evaluate ``network`` splitting the set into bounded sub-batches.

    The cost is a mean over samples, so weighting each sub-batch cost by its
    size reproduces the whole-set cost.
    """

    samples = int(inputs.shape[0])
    if samples == 0:
        raise ValueError("Cannot evaluate an empty dataset")
    if targets.shape != (samples, network.output_info.size):
        raise ShapeMismatchError(
            f"Expected targets of shape {(samples, network.output_info.size)}, "
            f"got {targets.shape}"
        )
    weighted_cost = 0.0
    hits = 0
    for start, stop in iter_slices(samples, max_batch_size):
        x, y = inputs[start:stop], targets[start:stop]
        yhat = network.forward(x)
        weighted_cost += network.output_layer.cost(yhat, np.asarray(y, dtype=yhat.dtype)) * (
            stop - start
        )
        hits += classification_hits(yhat, y)
    return EvaluationResult(
        cost=float(weighted_cost / samples),
        accuracy=float(hits / samples),
        samples=samples,
    )


__all__ = ["EvaluationResult", "classification_hits", "evaluate", "iter_slices"]
