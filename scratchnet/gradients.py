"""Per-layer gradient accumulator used by the Trainer."""

import numpy as np

from .errors import ShapeError
from .tensor import DTYPE, add_in_place, scale_in_place


class GradientSet:
    """
    Weight and bias gradients for every layer of a network.

    Each buffer is shaped exactly like the parameter it belongs to. The
    buffers are allocated once and reused: zero() at the start of a batch,
    accumulate() once per sample (summing), average() at the end.
    """

    def __init__(self, network):
        self.weights = [np.zeros(layer.params['weight'].shape, dtype=DTYPE)
                        for layer in network.layers]
        self.biases = [np.zeros(layer.params['bias'].shape, dtype=DTYPE)
                       for layer in network.layers]
        self.count = 0

    def zero(self):
        for buf in self.weights:
            buf.fill(0.0)
        for buf in self.biases:
            buf.fill(0.0)
        self.count = 0

    def accumulate(self, gradients):
        """
        Add one sample's gradients.

        Args:
            gradients: Sequence of (grad_weight, grad_bias), layer 0 first
        """
        if len(gradients) != len(self.weights):
            raise ShapeError("gradient list", len(self.weights), len(gradients))
        for (grad_w, grad_b), acc_w, acc_b in zip(gradients, self.weights, self.biases):
            add_in_place(acc_w, grad_w)
            add_in_place(acc_b, grad_b)
        self.count += 1

    def merge(self, other):
        """Add another GradientSet (e.g. a worker's private one) into this one."""
        for acc_w, acc_b, w, b in zip(self.weights, self.biases, other.weights, other.biases):
            add_in_place(acc_w, w)
            add_in_place(acc_b, b)
        self.count += other.count

    def average(self):
        """Divide every buffer by the number of accumulated samples."""
        if self.count == 0:
            return self
        factor = 1.0 / self.count
        for buf in self.weights:
            scale_in_place(buf, factor)
        for buf in self.biases:
            scale_in_place(buf, factor)
        return self

    def is_finite(self):
        return all(np.all(np.isfinite(buf)) for buf in self.weights + self.biases)

    def pairs(self):
        """List of (grad_weight, grad_bias), layer 0 first."""
        return list(zip(self.weights, self.biases))

    def __len__(self):
        return len(self.weights)
