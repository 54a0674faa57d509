"""
Dataset Utilities
=================

Helpers for:
- Samples and labels (class index <-> one-hot)
- In-memory datasets
- Data loading (MNIST IDX files)
- Batching
"""

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .errors import ShapeError
from .tensor import DTYPE, as_vector

logger = logging.getLogger(__name__)

IMAGES_MAGIC = 2051
LABELS_MAGIC = 2049


def one_hot(index, num_classes):
    """
    Convert a class index to a one-hot vector.

    Args:
        index: Integer class label
        num_classes: Length of the vector

    Returns:
        Vector of zeros with a 1 at index, shape (num_classes,)
    """
    index = int(index)
    if not 0 <= index < num_classes:
        raise ValueError(f"Class index {index} out of range for {num_classes} classes")
    vec = np.zeros(num_classes, dtype=DTYPE)
    vec[index] = 1.0
    return vec


def class_index(label):
    """Class index of a label given either as an integer or a one-hot vector."""
    if np.ndim(label) == 0:
        return int(label)
    label = np.asarray(label)
    if label.shape[0] == 1:
        return int(label[0] >= 0.5)
    return int(np.argmax(label))


def as_target(label, num_classes):
    """
    Target vector for a label.

    Integer labels become one-hot vectors; with a single output unit the
    target is the label itself ([0.] or [1.]). Vector labels are checked
    against num_classes and returned as float64.
    """
    if np.ndim(label) == 0:
        if num_classes == 1:
            return np.array([float(label)], dtype=DTYPE)
        return one_hot(label, num_classes)
    return as_vector(label, length=num_classes, what="target")


@dataclass(frozen=True, eq=False)
class Sample:
    """
    One labeled example.

    Attributes:
        inputs: Input vector of fixed length D (stored read-only, float64)
        label: Class index or one-hot vector
    """

    inputs: np.ndarray
    label: Any

    def __post_init__(self):
        inputs = np.array(self.inputs, dtype=DTYPE).reshape(-1)
        inputs.setflags(write=False)
        object.__setattr__(self, 'inputs', inputs)
        if np.ndim(self.label) != 0:
            label = np.array(self.label, dtype=DTYPE)
            label.setflags(write=False)
            object.__setattr__(self, 'label', label)

    def class_index(self):
        return class_index(self.label)

    def target(self, num_classes):
        return as_target(self.label, num_classes)


class Dataset:
    """
    Ordered, finite, restartable sequence of Samples.

    Args:
        samples: Iterable of Sample
        num_classes: Number of classes C (inferred from labels if None)
    """

    def __init__(self, samples, num_classes: Optional[int] = None):
        self.samples = list(samples)
        if not self.samples:
            raise ValueError("Dataset must contain at least one sample")

        self.num_features = self.samples[0].inputs.shape[0]
        for i, sample in enumerate(self.samples):
            if sample.inputs.shape[0] != self.num_features:
                raise ShapeError(f"sample {i} inputs", (self.num_features,), sample.inputs.shape)

        if num_classes is None:
            first = self.samples[0].label
            if np.ndim(first) != 0:
                num_classes = len(first)
            else:
                num_classes = max(s.class_index() for s in self.samples) + 1
        self.num_classes = num_classes

    @classmethod
    def from_arrays(cls, X, y, num_classes=None):
        """
        Build a dataset from arrays.

        Args:
            X: Features, shape (N, ...) - each row is flattened
            y: Labels, shape (N,) or (N, C)
        """
        X = np.asarray(X, dtype=DTYPE)
        X = X.reshape(X.shape[0], -1)
        y = np.asarray(y)
        if len(X) != len(y):
            raise ShapeError("labels", (len(X),), y.shape)
        if y.ndim == 1:
            samples = [Sample(x, int(label)) for x, label in zip(X, y)]
        else:
            samples = [Sample(x, label) for x, label in zip(X, y)]
        return cls(samples, num_classes=num_classes)

    def __len__(self):
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Dataset(self.samples[index], num_classes=self.num_classes)
        return self.samples[index]

    def __repr__(self):
        return f"Dataset({len(self)} samples, {self.num_features} features, {self.num_classes} classes)"


# (images, labels) file name prefixes per split
MNIST_FILES = {
    'train': ('train-images', 'train-labels'),
    'test': ('t10k-images', 't10k-labels'),
}


def load_mnist(data_dir='data', subset_size=None, normalize=True, seed=None):
    """
    Load the MNIST train and test splits from IDX files.

    Args:
        data_dir: Directory holding the four IDX files (searched recursively)
        subset_size: (train_size, test_size) random subset, None for everything
        normalize: Divide pixel values by 255
        seed: Seed for choosing the subset

    Returns:
        (train, test) Datasets, one flattened image per Sample, 10 classes
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise FileNotFoundError(f"MNIST directory not found: {data_dir}")

    rng = np.random.default_rng(seed)
    splits = {}
    for position, split in enumerate(MNIST_FILES):
        images, labels = _load_split(data_dir, split)
        if subset_size is not None:
            keep = rng.permutation(len(images))[:subset_size[position]]
            images, labels = images[keep], labels[keep]

        features = images.reshape(len(images), -1).astype(DTYPE)
        if normalize:
            features /= 255.0
        splits[split] = Dataset.from_arrays(features, labels, num_classes=10)

    train, test = splits['train'], splits['test']
    if train.num_features != test.num_features:
        raise ValueError(f"Train images have {train.num_features} pixels, test images {test.num_features}")

    logger.info("Loaded MNIST from %s: %d training, %d test samples (%d features)",
                data_dir, len(train), len(test), train.num_features)
    return train, test


def _load_split(data_dir, split):
    images_prefix, labels_prefix = MNIST_FILES[split]
    images = read_idx(_locate(data_dir, images_prefix), IMAGES_MAGIC)
    labels = read_idx(_locate(data_dir, labels_prefix), LABELS_MAGIC)
    if len(images) != len(labels):
        raise ValueError(f"{split} split has {len(images)} images but {len(labels)} labels")
    return images, labels


def _locate(data_dir, prefix):
    """Path of the IDX file whose name starts with prefix."""
    candidates = sorted(p for p in data_dir.rglob(f'{prefix}*') if p.is_file())
    if not candidates:
        raise FileNotFoundError(f"No IDX file starting with '{prefix}' under {data_dir}")
    # Prefer the shallowest match, e.g. data/train-images over data/raw/train-images
    return min(candidates, key=lambda p: len(p.relative_to(data_dir).parts))


def read_idx(path, expected_magic):
    """
    Read an unsigned-byte IDX array.

    The big-endian magic number encodes the element type (third byte, 0x08
    for uint8) and the number of dimensions (fourth byte); one uint32 per
    dimension follows, then the raw data.

    Returns:
        uint8 ndarray shaped by the header
    """
    with open(path, 'rb') as f:
        header = f.read(4)
        if len(header) < 4:
            raise ValueError(f"{path}: file too short for an IDX header")
        (magic,) = struct.unpack('>I', header)
        if magic != expected_magic:
            raise ValueError(f"{path}: invalid magic number {magic} (expected {expected_magic})")

        ndim = magic & 0xFF
        dims = f.read(4 * ndim)
        if len(dims) < 4 * ndim:
            raise ValueError(f"{path}: IDX header truncated")
        shape = struct.unpack(f'>{ndim}I', dims)
        data = np.frombuffer(f.read(), dtype=np.uint8)

    if data.size != int(np.prod(shape)):
        raise ValueError(f"{path}: header declares shape {shape} but holds {data.size} values")
    logger.debug("Read IDX %s with shape %s", path, shape)
    return data.reshape(shape)


def create_batches(items, batch_size):
    """
    Split a sequence into consecutive mini-batches.

    The last batch holds the remainder and may be smaller.

    Yields:
        Lists of at most batch_size items
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    items = list(items)
    for start_idx in range(0, len(items), batch_size):
        yield items[start_idx:start_idx + batch_size]
