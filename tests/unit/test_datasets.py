import numpy as np
import pytest

from stacknet.core.errors import ShapeMismatchError
from stacknet.core.types import SamplesBatch
from stacknet.data.synthetic import deterministic_split, load_dataset, one_hot
from stacknet.training.datasets import BatchesCollection, TestDataset, ValidationDataset


def test_from_arrays_keeps_remainder_batch():
    x = np.arange(50, dtype=np.float32).reshape(25, 2)
    y = np.arange(25, dtype=np.float32)
    dataset = BatchesCollection.from_arrays(x, y, 10)
    assert [batch.size for batch in dataset] == [10, 10, 5]
    assert dataset.count == 25
    assert dataset.input_features == 2 and dataset.output_features == 1
    inputs, targets = dataset.to_arrays()
    np.testing.assert_array_equal(inputs, x)
    np.testing.assert_array_equal(targets[:, 0], y)


def test_shuffle_is_deterministic():
    x = np.arange(20, dtype=np.float32).reshape(10, 2)
    y = np.arange(10, dtype=np.float32).reshape(10, 1)
    first = BatchesCollection.from_arrays(x, y, 4, shuffle_seed=3)
    second = BatchesCollection.from_arrays(x, y, 4, shuffle_seed=3)
    np.testing.assert_array_equal(first[0].inputs, second[0].inputs)
    shuffled_x, shuffled_y = first.to_arrays()
    # pairs stay aligned
    np.testing.assert_array_equal(shuffled_x[:, 0] / 2, shuffled_y[:, 0])


def test_inconsistent_batches_are_rejected():
    good = SamplesBatch.from_arrays(np.zeros((2, 3)), np.zeros((2, 1)))
    bad = SamplesBatch.from_arrays(np.zeros((2, 4)), np.zeros((2, 1)))
    with pytest.raises(ShapeMismatchError):
        BatchesCollection([good, bad])
    with pytest.raises(ValueError):
        BatchesCollection([])
    with pytest.raises(ShapeMismatchError):
        SamplesBatch.from_arrays(np.zeros((3, 2)), np.zeros((2, 1)))


def test_validation_convergence_window():
    validation = ValidationDataset(np.zeros((2, 1)), np.zeros((2, 1)), tolerance=0.01, epochs_interval=2)
    assert not validation.has_converged([1.0, 1.0])
    assert validation.has_converged([5.0, 1.0, 1.005, 1.0])
    assert not validation.has_converged([1.0, 1.2, 1.0])
    assert not validation.has_converged([1.0, float("nan"), 1.0])


def test_evaluation_sets_validate_arguments():
    with pytest.raises(ShapeMismatchError):
        TestDataset(np.zeros((3, 2)), np.zeros((2, 1)))
    with pytest.raises(ValueError):
        ValidationDataset(np.zeros((2, 1)), np.zeros((2, 1)), epochs_interval=0)
    with pytest.raises(ValueError):
        TestDataset(np.zeros((0, 2)), np.zeros((0, 1)))
    assert TestDataset(np.zeros((3, 2)), np.zeros(3)).targets.shape == (3, 1)


def test_deterministic_split_partitions_indices():
    split = deterministic_split(100, val_split=0.1, test_split=0.2, seed=5)
    assert split.sizes == {"train": 70, "val": 10, "test": 20}
    everything = np.concatenate([split.train, split.val, split.test])
    np.testing.assert_array_equal(np.sort(everything), np.arange(100))
    again = deterministic_split(100, val_split=0.1, test_split=0.2, seed=5)
    np.testing.assert_array_equal(split.test, again.test)
    with pytest.raises(ValueError):
        deterministic_split(10, val_split=0.5, test_split=0.5)


def test_synthetic_generators():
    blobs = load_dataset("blobs", n_points=60, centers=3, seed=0)
    assert blobs.inputs.shape == (60, 2) and blobs.targets.shape == (60, 3)
    np.testing.assert_array_equal(blobs.targets.sum(axis=1), np.ones(60))
    xor = load_dataset("xor", n_points=40)
    assert set(np.unique(xor.targets)) <= {0.0, 1.0}
    sine = load_dataset("sine", n_points=32, val_split=0.0, test_split=0.0)
    assert sine.split("train")[0].shape == (32, 1)
    with pytest.raises(KeyError):
        load_dataset("mnist")


def test_one_hot():
    np.testing.assert_array_equal(one_hot(np.array([2, 0]), 3), [[0, 0, 1], [1, 0, 0]])
