"""Deterministic in-memory datasets used by presets and tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping

import numpy as np
from sklearn.datasets import make_blobs

from ..core.types import DTYPE, Array


@dataclass(frozen=True)
class SplitIndices:
    """Indices for train/validation/test partitions."""

    train: np.ndarray
    val: np.ndarray
    test: np.ndarray

    @property
    def sizes(self) -> Mapping[str, int]:
        return {
            "train": int(self.train.size),
            "val": int(self.val.size),
            "test": int(self.test.size),
        }


@dataclass(frozen=True)
class ArrayDataset:
    """Full feature/target matrices of a dataset plus its split indices."""

    name: str
    inputs: Array
    targets: Array
    splits: SplitIndices

    def split(self, name: str) -> tuple[Array, Array]:
        indices = getattr(self.splits, name)
        return self.inputs[indices], self.targets[indices]


def deterministic_split(
    n_samples: int,
    *,
    val_split: float = 0.1,
    test_split: float = 0.2,
    seed: int = 0,
) -> SplitIndices:
    """Return deterministic indices for the requested split ratios."""

    if not 0 <= val_split < 1:
        raise ValueError("val_split must be in [0, 1)")
    if not 0 <= test_split < 1:
        raise ValueError("test_split must be in [0, 1)")
    if val_split + test_split >= 1:
        raise ValueError("val_split + test_split must be < 1")

    rng = np.random.default_rng(seed)
    indices = np.arange(n_samples)
    rng.shuffle(indices)

    test_size = min(max(int(round(n_samples * test_split)), 1 if test_split > 0 else 0), n_samples)
    remaining = n_samples - test_size
    val_size = min(max(int(round(n_samples * val_split)), 1 if val_split > 0 else 0), remaining)
    if n_samples - val_size - test_size <= 0:
        raise ValueError("Not enough samples for the requested splits")

    return SplitIndices(
        train=indices[test_size + val_size :],
        val=indices[test_size : test_size + val_size],
        test=indices[:test_size],
    )


def one_hot(labels: Array, num_classes: int) -> Array:
    eye = np.eye(num_classes, dtype=DTYPE)
    return eye[np.asarray(labels).reshape(-1).astype(int)]


def _xor(n_points: int = 200, noise: float = 0.1, seed: int = 0, **_: object) -> tuple[Array, Array]:
    rng = np.random.default_rng(seed)
    corners = rng.integers(0, 2, size=(n_points, 2))
    x = corners + noise * rng.standard_normal((n_points, 2))
    y = np.logical_xor(corners[:, 0], corners[:, 1]).astype(DTYPE).reshape(-1, 1)
    return x.astype(DTYPE), y


def _blobs(
    n_points: int = 300,
    n_features: int = 2,
    centers: int = 3,
    cluster_std: float = 0.6,
    seed: int = 0,
    **_: object,
) -> tuple[Array, Array]:
    x, labels = make_blobs(
        n_samples=n_points,
        n_features=n_features,
        centers=centers,
        cluster_std=cluster_std,
        random_state=seed,
    )
    return x.astype(DTYPE), one_hot(labels, centers)


def _sine(n_points: int = 256, freq: int = 1, seed: int = 0, **_: object) -> tuple[Array, Array]:
    rng = np.random.default_rng(seed)
    x = np.linspace(-1.0, 1.0, n_points, dtype=DTYPE).reshape(-1, 1)
    # squashed into (0, 1) so sigmoid outputs can fit it
    y = 0.5 + 0.4 * np.sin(freq * np.pi * x) + 0.02 * rng.standard_normal(x.shape)
    return x, y.astype(DTYPE)


_GENERATORS: Dict[str, Callable[..., tuple[Array, Array]]] = {
    "xor": _xor,
    "blobs": _blobs,
    "sine": _sine,
}


def available_datasets() -> Iterable[str]:
    return sorted(_GENERATORS)


def load_dataset(
    name: str,
    *,
    val_split: float = 0.1,
    test_split: float = 0.2,
    seed: int = 0,
    **options: object,
) -> ArrayDataset:
    """Generate dataset ``name`` and split it deterministically."""

    try:
        generator = _GENERATORS[name]
    except KeyError as exc:
        available = ", ".join(available_datasets())
        raise KeyError(f"Unknown dataset {name!r}. Available datasets: {available}") from exc
    x, y = generator(seed=seed, **options)
    splits = deterministic_split(x.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    return ArrayDataset(name=name, inputs=x, targets=y, splits=splits)


__all__ = [
    "ArrayDataset",
    "SplitIndices",
    "available_datasets",
    "deterministic_split",
    "load_dataset",
    "one_hot",
]
