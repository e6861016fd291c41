"""Training session orchestration for StackNet networks."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..config import EngineSettings
from ..core.errors import NumericOverflowError
from ..core.network import SequentialNetwork
from ..core.types import Array
from .datasets import BatchesCollection, TestDataset, ValidationDataset
from .metrics import EvaluationResult, evaluate
from .optimizers import TrainingAlgorithm

logger = logging.getLogger(__name__)


class SessionState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAULTED = "faulted"


class StopReason(Enum):
    EPOCHS_COMPLETED = "epochs_completed"
    EARLY_STOPPING = "early_stopping"
    TRAINING_CANCELED = "training_canceled"
    NUMERIC_OVERFLOW = "numeric_overflow"


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a session."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class BatchProgress:
    """Progress record emitted after every training batch."""

    epoch: int
    batch: int
    total_batches: int
    processed_items: int
    total_items: int

    @property
    def percentage(self) -> float:
        return 100.0 * self.processed_items / self.total_items


@dataclass(frozen=True)
class TrainingSessionResult:
    """Terminal record of one training session."""

    stop_reason: StopReason
    state: SessionState
    completed_epochs: int
    processed_batches: int
    training_time: float
    validation_reports: Tuple[EvaluationResult, ...] = ()
    test_reports: Tuple[EvaluationResult, ...] = ()
    fault: Optional[BaseException] = None


class Trainer:
    """Run one training session of ``network`` under ``algorithm``.

    ``callbacks`` receive ``on_epoch(epoch, metrics)`` (or are called as
    ``callback(epoch, metrics)``) with the loss and accuracy measured on the
    whole training set at the end of every epoch.
    """

    def __init__(
        self,
        network: SequentialNetwork,
        algorithm: TrainingAlgorithm,
        settings: EngineSettings | None = None,
        callbacks: Sequence[object] | None = None,
    ) -> None:
        self.network = network
        self.algorithm = algorithm
        self.settings = settings or EngineSettings()
        self.callbacks = list(callbacks or [])
        self.state = SessionState.NOT_STARTED

    def run(
        self,
        dataset: BatchesCollection,
        epochs: int,
        dropout: float = 0.0,
        *,
        batch_observers: Sequence[object] = (),
        validation: ValidationDataset | None = None,
        test: TestDataset | None = None,
        token: CancellationToken | None = None,
        seed: int | None = None,
    ) -> TrainingSessionResult:
        if self.state is not SessionState.NOT_STARTED:
            raise RuntimeError("A Trainer instance runs a single training session")

        rng = np.random.default_rng(seed)
        updater = self.algorithm.build_updater(self.network)
        token = token or CancellationToken()
        total_batches = len(dataset)
        total_items = dataset.count
        train_arrays: Tuple[Array, Array] | None = None

        completed_epochs = 0
        processed_batches = 0
        validation_costs: List[float] = []
        validation_reports: List[EvaluationResult] = []
        test_reports: List[EvaluationResult] = []
        stop_reason = StopReason.EPOCHS_COMPLETED
        fault: BaseException | None = None

        logger.info(
            "Training %r for %d epochs (%d batches, %d samples, dropout=%.3f)",
            self.network,
            epochs,
            total_batches,
            total_items,
            dropout,
        )
        start = time.perf_counter()
        self.state = SessionState.RUNNING
        try:
            if token.cancelled:
                stop_reason = StopReason.TRAINING_CANCELED
            for epoch in range(1, epochs + 1):
                if stop_reason is not StopReason.EPOCHS_COMPLETED:
                    break
                processed_items = 0
                for index, batch in enumerate(dataset, start=1):
                    self.network.backpropagate(batch, dropout, updater, rng)
                    processed_batches += 1
                    processed_items += batch.size
                    self._emit_batch(
                        batch_observers,
                        BatchProgress(epoch, index, total_batches, processed_items, total_items),
                    )
                    if not self.network.parameters_finite():
                        raise NumericOverflowError(
                            f"Non-finite parameters after batch {index} of epoch {epoch}"
                        )
                    if token.cancelled:
                        stop_reason = StopReason.TRAINING_CANCELED
                        if index == total_batches:
                            completed_epochs = epoch
                        break
                if stop_reason is StopReason.TRAINING_CANCELED:
                    break
                completed_epochs = epoch

                if self.callbacks:
                    if train_arrays is None:
                        train_arrays = dataset.to_arrays()
                    report = self._evaluate(*train_arrays)
                    logger.debug("epoch %d train %s", epoch, report.as_metrics())
                    self._emit_epoch(self.callbacks, epoch, report.as_metrics())

                if test is not None:
                    report = self._evaluate(test.inputs, test.targets)
                    test_reports.append(report)
                    logger.debug("epoch %d test %s", epoch, report.as_metrics())
                    self._emit_epoch(test.observers, epoch, report.as_metrics())

                if validation is not None:
                    report = self._evaluate(validation.inputs, validation.targets)
                    validation_reports.append(report)
                    validation_costs.append(report.cost)
                    logger.debug("epoch %d validation %s", epoch, report.as_metrics())
                    if validation.has_converged(validation_costs):
                        logger.warning("Validation cost converged, stopping at epoch %d", epoch)
                        stop_reason = StopReason.EARLY_STOPPING
        except NumericOverflowError as exc:
            logger.warning("Training diverged: %s", exc)
            stop_reason = StopReason.NUMERIC_OVERFLOW
            fault = exc
            self.state = SessionState.FAULTED
        except BaseException:
            self.state = SessionState.FAULTED
            raise

        if stop_reason is StopReason.TRAINING_CANCELED:
            logger.warning(
                "Training cancelled after %d batches (%d full epochs)",
                processed_batches,
                completed_epochs,
            )
            self.state = SessionState.CANCELLED
        elif self.state is SessionState.RUNNING:
            self.state = SessionState.COMPLETED

        elapsed = time.perf_counter() - start
        logger.info(
            "Training finished: %s after %d epochs in %.2fs",
            stop_reason.value,
            completed_epochs,
            elapsed,
        )
        return TrainingSessionResult(
            stop_reason=stop_reason,
            state=self.state,
            completed_epochs=completed_epochs,
            processed_batches=processed_batches,
            training_time=elapsed,
            validation_reports=tuple(validation_reports),
            test_reports=tuple(test_reports),
            fault=fault,
        )

    # ------------------------------------------------------------------
    # Internal helpers

    def _evaluate(self, inputs: Array, targets: Array) -> EvaluationResult:
        return evaluate(
            self.network,
            inputs,
            targets,
            max_batch_size=self.settings.maximum_batch_size,
        )

    @staticmethod
    def _emit_batch(observers: Iterable[object], progress: BatchProgress) -> None:
        for observer in observers:
            if hasattr(observer, "on_batch"):
                observer.on_batch(progress)  # type: ignore[attr-defined]
            elif callable(observer):
                observer(progress)

    @staticmethod
    def _emit_epoch(
        observers: Iterable[object], epoch: int, metrics: Mapping[str, float]
    ) -> None:
        for observer in observers:
            if hasattr(observer, "on_epoch"):
                observer.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(observer):
                observer(epoch, metrics)


__all__ = [
    "BatchProgress",
    "CancellationToken",
    "SessionState",
    "StopReason",
    "Trainer",
    "TrainingSessionResult",
]
