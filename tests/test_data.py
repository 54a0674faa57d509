"""
Tests for Dataset Utilities
===========================

Labels, samples, datasets, batching and the MNIST IDX reader (exercised
with small synthetic IDX files).
"""

import dataclasses
import struct

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scratchnet.data import (Dataset, Sample, class_index, create_batches, load_mnist,
                             one_hot, read_idx)
from scratchnet.errors import ShapeError


def write_idx_images(path, images):
    images = np.asarray(images, dtype=np.uint8)
    n, rows, cols = images.shape
    path.write_bytes(struct.pack('>IIII', 2051, n, rows, cols) + images.tobytes())


def write_idx_labels(path, labels):
    labels = np.asarray(labels, dtype=np.uint8)
    path.write_bytes(struct.pack('>II', 2049, len(labels)) + labels.tobytes())


def write_fake_mnist(directory, n_train=20, n_test=10, side=4, seed=0):
    """Write the four MNIST IDX files with random images."""
    rng = np.random.default_rng(seed)
    write_idx_images(directory / 'train-images-idx3-ubyte',
                     rng.integers(0, 256, size=(n_train, side, side)))
    write_idx_labels(directory / 'train-labels-idx1-ubyte', np.arange(n_train) % 10)
    write_idx_images(directory / 't10k-images-idx3-ubyte',
                     rng.integers(0, 256, size=(n_test, side, side)))
    write_idx_labels(directory / 't10k-labels-idx1-ubyte', np.arange(n_test) % 10)


class TestLabels:
    """Tests for label helpers."""

    def test_one_hot(self):
        np.testing.assert_array_equal(one_hot(2, 4), [0.0, 0.0, 1.0, 0.0])
        with pytest.raises(ValueError):
            one_hot(4, 4)

    def test_class_index(self):
        assert class_index(3) == 3
        assert class_index(np.array([0.0, 0.0, 1.0])) == 2
        assert class_index(np.array([0.7])) == 1
        assert class_index(np.array([0.2])) == 0


class TestSample:
    """Tests for Sample."""

    def test_inputs_coerced(self):
        sample = Sample([1, 2, 3], 1)
        assert sample.inputs.dtype == np.float64
        assert sample.class_index() == 1
        np.testing.assert_array_equal(sample.target(3), [0.0, 1.0, 0.0])

    def test_immutable(self):
        sample = Sample(np.zeros(3), 0)
        with pytest.raises(ValueError):
            sample.inputs[0] = 1.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            sample.label = 1

    def test_does_not_alias_caller_array(self):
        x = np.zeros(3)
        sample = Sample(x, 0)
        x[0] = 5.0
        assert sample.inputs[0] == 0.0

    def test_one_hot_label(self):
        sample = Sample([0.0, 1.0], [0, 0, 1])
        assert sample.class_index() == 2
        np.testing.assert_array_equal(sample.target(3), [0.0, 0.0, 1.0])


class TestDataset:
    """Tests for Dataset."""

    def test_from_arrays(self):
        X = np.arange(24).reshape(6, 2, 2)
        y = np.array([0, 1, 2, 0, 1, 2])
        dataset = Dataset.from_arrays(X, y)

        assert len(dataset) == 6
        assert dataset.num_features == 4
        assert dataset.num_classes == 3
        np.testing.assert_array_equal(dataset[1].inputs, [4, 5, 6, 7])

    def test_restartable(self):
        dataset = Dataset.from_arrays(np.eye(3), [0, 1, 2])
        assert [s.class_index() for s in dataset] == [s.class_index() for s in dataset]

    def test_slice(self):
        dataset = Dataset.from_arrays(np.eye(4), [0, 1, 2, 3])
        head = dataset[:2]
        assert isinstance(head, Dataset)
        assert len(head) == 2
        assert head.num_classes == 4

    def test_inconsistent_features(self):
        with pytest.raises(ShapeError):
            Dataset([Sample([0.0, 1.0], 0), Sample([0.0], 1)])

    def test_label_count_mismatch(self):
        with pytest.raises(ShapeError):
            Dataset.from_arrays(np.zeros((3, 2)), [0, 1])

    def test_empty(self):
        with pytest.raises(ValueError):
            Dataset([])


class TestBatches:
    """Tests for create_batches."""

    def test_remainder(self):
        batches = list(create_batches(range(10), 4))
        assert batches == [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9]]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(create_batches(range(3), 0))


class TestLoadMNIST:
    """Tests for the IDX reader."""

    def test_load(self, tmp_path):
        write_fake_mnist(tmp_path)
        train, test = load_mnist(tmp_path)

        assert len(train) == 20
        assert len(test) == 10
        assert train.num_features == 16
        assert train.num_classes == 10
        assert train[3].class_index() == 3
        assert all(0.0 <= s.inputs.min() and s.inputs.max() <= 1.0 for s in train)

    def test_without_normalization(self, tmp_path):
        write_fake_mnist(tmp_path)
        train, _ = load_mnist(tmp_path, normalize=False)
        assert max(s.inputs.max() for s in train) > 1.0

    def test_subset(self, tmp_path):
        write_fake_mnist(tmp_path)
        train, test = load_mnist(tmp_path, subset_size=(5, 3), seed=1)
        assert len(train) == 5
        assert len(test) == 3

    def test_nested_directory(self, tmp_path):
        nested = tmp_path / 'raw'
        nested.mkdir()
        write_fake_mnist(nested)
        train, _ = load_mnist(tmp_path)
        assert len(train) == 20

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_mnist(tmp_path / 'nothing-here')

    def test_bad_magic(self, tmp_path):
        write_fake_mnist(tmp_path)
        (tmp_path / 'train-images-idx3-ubyte').write_bytes(struct.pack('>IIII', 1234, 0, 4, 4))
        with pytest.raises(ValueError, match='magic'):
            load_mnist(tmp_path)

    def test_read_idx_shape(self, tmp_path):
        path = tmp_path / "images"
        write_idx_images(path, np.arange(24).reshape(2, 3, 4))

        images = read_idx(path, 2051)

        assert images.shape == (2, 3, 4)
        assert images.dtype == np.uint8
        assert images[1, 2, 3] == 23

    def test_read_idx_truncated(self, tmp_path):
        path = tmp_path / "labels"
        path.write_bytes(struct.pack(">II", 2049, 5) + bytes(3))
        with pytest.raises(ValueError):
            read_idx(path, 2049)

    def test_label_count_mismatch(self, tmp_path):
        write_fake_mnist(tmp_path)
        write_idx_labels(tmp_path / 'train-labels-idx1-ubyte', np.zeros(7))
        with pytest.raises(ValueError):
            load_mnist(tmp_path)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
