"""Public entry points to build and train networks."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Iterator, Optional, Sequence

from .config import EngineSettings
from .core.errors import ShapeMismatchError
from .core.layers import Layer, LayerFactory
from .core.network import SequentialNetwork
from .core.types import TensorInfo
from .training.datasets import BatchesCollection, TestDataset, ValidationDataset
from .training.optimizers import TrainingAlgorithm
from .training.trainer import CancellationToken, Trainer, TrainingSessionResult

logger = logging.getLogger(__name__)


def new_sequential(input_info: TensorInfo, *factories: LayerFactory) -> SequentialNetwork:
    """Create a network calling ``factories`` left to right.

    Each factory receives the output info of the layer built before it (the
    network input for the first one).
    """

    if not factories:
        raise ValueError("At least one layer factory is required")

    def _build() -> Iterator[Layer]:
        info = input_info
        for position, factory in enumerate(factories):
            layer = factory(info)
            if layer.input_info != info:
                raise ShapeMismatchError(
                    f"Factory {position} built a layer for input {layer.input_info}, "
                    f"expected {info}"
                )
            yield layer
            info = layer.output_info

    return SequentialNetwork(list(_build()))


def _as_observers(value: object | Sequence[object] | None) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _check_features(network: SequentialNetwork, name: str, inputs: int, outputs: int) -> None:
    if inputs != network.input_info.size:
        raise ShapeMismatchError(
            f"{name} has {inputs} input features, network expects {network.input_info.size}"
        )
    if outputs != network.output_info.size:
        raise ShapeMismatchError(
            f"{name} has {outputs} output features, network produces {network.output_info.size}"
        )


def train_network(
    network: SequentialNetwork,
    dataset: BatchesCollection,
    algorithm: TrainingAlgorithm,
    epochs: int,
    dropout: float = 0.0,
    batch_progress: object | Sequence[object] | None = None,
    training_progress: object | Sequence[object] | None = None,
    validation_dataset: Optional[ValidationDataset] = None,
    test_dataset: Optional[TestDataset] = None,
    token: Optional[CancellationToken] = None,
    settings: Optional[EngineSettings] = None,
    seed: Optional[int] = None,
) -> TrainingSessionResult:
    """Train ``network`` in place and return the session result.

    Argument problems are reported before any batch is processed.
    """

    if not 0.0 <= dropout < 1.0:
        raise ValueError(f"The dropout probability is invalid: {dropout}")
    if epochs < 1:
        raise ValueError(f"epochs must be at least 1, got {epochs}")
    if not isinstance(network, SequentialNetwork):
        raise TypeError("The input network instance isn't valid")
    if not isinstance(dataset, BatchesCollection):
        raise TypeError("The input dataset instance isn't valid")
    if not isinstance(algorithm, TrainingAlgorithm):
        raise TypeError("The training algorithm instance isn't valid")
    if validation_dataset is not None and not isinstance(validation_dataset, ValidationDataset):
        raise TypeError("The validation dataset instance isn't valid")
    if test_dataset is not None and not isinstance(test_dataset, TestDataset):
        raise TypeError("The test dataset instance isn't valid")
    _check_features(network, "Dataset", dataset.input_features, dataset.output_features)
    for name, extra in (("Validation dataset", validation_dataset), ("Test dataset", test_dataset)):
        if extra is not None:
            _check_features(network, name, extra.inputs.shape[1], extra.targets.shape[1])

    trainer = Trainer(
        network,
        algorithm,
        settings=settings,
        callbacks=_as_observers(training_progress),
    )
    return trainer.run(
        dataset,
        epochs,
        dropout,
        batch_observers=_as_observers(batch_progress),
        validation=validation_dataset,
        test=test_dataset,
        token=token,
        seed=seed,
    )


def _log_abandoned_session(future: "asyncio.Future[TrainingSessionResult]") -> None:
    # Nobody awaits the worker once its task is cancelled; retrieve the outcome here.
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Cancelled training session failed: %r", exc)


async def train_network_async(
    network: SequentialNetwork,
    dataset: BatchesCollection,
    algorithm: TrainingAlgorithm,
    epochs: int,
    dropout: float = 0.0,
    batch_progress: object | Sequence[object] | None = None,
    training_progress: object | Sequence[object] | None = None,
    validation_dataset: Optional[ValidationDataset] = None,
    test_dataset: Optional[TestDataset] = None,
    token: Optional[CancellationToken] = None,
    settings: Optional[EngineSettings] = None,
    seed: Optional[int] = None,
) -> TrainingSessionResult:
    """Run :func:`train_network` on the event loop's default executor.

    Cancelling the awaiting task cancels ``token``; the worker stops at the
    next batch boundary.
    """

    token = token or CancellationToken()
    loop = asyncio.get_running_loop()
    job = functools.partial(
        train_network,
        network,
        dataset,
        algorithm,
        epochs,
        dropout,
        batch_progress,
        training_progress,
        validation_dataset,
        test_dataset,
        token,
        settings,
        seed,
    )
    future = loop.run_in_executor(None, job)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        logger.info("Async training task cancelled, signalling the session")
        token.cancel()
        future.add_done_callback(_log_abandoned_session)
        raise


__all__ = ["new_sequential", "train_network", "train_network_async"]
