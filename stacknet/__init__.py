"""stacknet public API."""

from .config import EngineSettings, load_settings
from .core import activations, costs, layers, types  # noqa: F401
from .core.errors import NumericOverflowError, ShapeMismatchError, TensorReleasedError
from .core.layers import activation, fully_connected, output, softmax
from .core.network import SequentialNetwork
from .core.tensor import Tensor, TensorArena
from .core.types import (
    ActivationType,
    CostFunctionType,
    LayerType,
    NetworkType,
    SamplesBatch,
    TensorInfo,
)
from .manager import new_sequential, train_network, train_network_async
from .training.datasets import BatchesCollection, TestDataset, ValidationDataset
from .training.optimizers import (
    AdaGrad,
    Adam,
    Momentum,
    RMSProp,
    StochasticGradientDescent,
    resolve_algorithm,
)
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import (
    BatchProgress,
    CancellationToken,
    SessionState,
    StopReason,
    TrainingSessionResult,
)

__all__ = [
    "ActivationType",
    "AdaGrad",
    "Adam",
    "BatchProgress",
    "BatchesCollection",
    "CancellationToken",
    "CostFunctionType",
    "EngineSettings",
    "LayerType",
    "Momentum",
    "NetworkType",
    "NumericOverflowError",
    "RMSProp",
    "SamplesBatch",
    "SequentialNetwork",
    "SessionState",
    "ShapeMismatchError",
    "StochasticGradientDescent",
    "StopReason",
    "Tensor",
    "TensorArena",
    "TensorInfo",
    "TensorReleasedError",
    "TestDataset",
    "TrainingSessionResult",
    "ValidationDataset",
    "activation",
    "activations",
    "costs",
    "fully_connected",
    "layers",
    "load_preset",
    "load_settings",
    "new_sequential",
    "output",
    "presets",
    "resolve_algorithm",
    "run_pipeline",
    "softmax",
    "train_network",
    "train_network_async",
    "types",
]
