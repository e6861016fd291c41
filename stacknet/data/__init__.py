"""Synthetic dataset generators."""

from .synthetic import ArrayDataset, available_datasets, deterministic_split, load_dataset

__all__ = ["ArrayDataset", "available_datasets", "deterministic_split", "load_dataset"]
