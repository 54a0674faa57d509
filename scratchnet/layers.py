"""
Layers - From Scratch Implementation
====================================

The one layer type of a feed-forward network: a fully connected (Dense)
affine transform followed by an activation.

Forward:
    z = W @ x + b
    a = activation(z)

Backward (given dL/da from the layer above):
    delta = dL/da * activation'(z)       (element-wise)
    dL/dW = outer(delta, x)
    dL/db = delta
    dL/dx = W.T @ delta                  (handed to the layer below)

Everything works on one sample (1-D vectors) at a time so each arithmetic
step stays visible.
"""

import logging

import numpy as np

from .activations import ActivationKind, get_activation
from .errors import ShapeError, StateError
from .tensor import DTYPE, as_vector, mat_vec, outer, transpose

logger = logging.getLogger(__name__)

WEIGHT_INITS = ('he', 'xavier', 'uniform')


class Dense:
    """
    Fully Connected (Dense) Layer with activation.

    Each output is connected to every input.

    Args:
        input_dim: Number of input features
        output_dim: Number of output units
        activation: Activation name or ActivationKind (default: sigmoid)
        weight_init: 'he', 'xavier' or 'uniform'
        rng: numpy.random.Generator used for initialization (default: fresh)

    Parameters:
        params['weight']: shape (output_dim, input_dim), row i feeds unit i
        params['bias']: shape (output_dim,)

    Forward-pass cache (consumed by backward):
        cache['x']: input vector
        cache['z']: pre-activation vector
        cache['a']: output vector
    """

    def __init__(self, input_dim, output_dim, activation='sigmoid',
                 weight_init='xavier', rng=None):
        if input_dim <= 0 or output_dim <= 0:
            raise ShapeError("Dense dimensions", "positive", (output_dim, input_dim))

        self.input_dim = int(input_dim)
        self.output_dim = int(output_dim)
        self.activation = get_activation(activation)

        rng = rng if rng is not None else np.random.default_rng()
        shape = (self.output_dim, self.input_dim)

        # Weight initialization
        if weight_init == 'he':
            weight = rng.standard_normal(shape) * np.sqrt(2.0 / input_dim)
            bias = np.zeros(self.output_dim)
        elif weight_init == 'xavier':
            weight = rng.standard_normal(shape) * np.sqrt(1.0 / input_dim)
            bias = np.zeros(self.output_dim)
        elif weight_init == 'uniform':
            weight = rng.random(shape)
            bias = rng.random(self.output_dim)
        else:
            raise ValueError(f"Unknown weight_init '{weight_init}'. Available: {', '.join(WEIGHT_INITS)}")

        self.params = {
            'weight': weight.astype(DTYPE),
            'bias': bias.astype(DTYPE),
        }
        self.cache = {}

        logger.debug("Initialized %r with %s weights", self, weight_init)

    @classmethod
    def from_parameters(cls, weight, bias, activation):
        """
        Wrap existing parameter buffers in a layer.

        Args:
            weight: Matrix, shape (output_dim, input_dim)
            bias: Vector, shape (output_dim,)
            activation: Activation name, code or ActivationKind
        """
        weight = np.asarray(weight, dtype=DTYPE)
        if weight.ndim != 2 or 0 in weight.shape:
            raise ShapeError("weight", "(out_dim, in_dim)", weight.shape)
        bias = as_vector(bias, length=weight.shape[0], what="bias")

        layer = cls.__new__(cls)
        layer.output_dim, layer.input_dim = weight.shape
        layer.activation = get_activation(activation)
        layer.params = {'weight': weight, 'bias': bias}
        layer.cache = {}
        return layer

    @property
    def weight(self):
        return self.params['weight']

    @property
    def bias(self):
        return self.params['bias']

    def forward(self, x):
        """Forward pass: a = activation(W @ x + b). Caches x, z and a."""
        x = as_vector(x, what="layer input")
        if x.shape[0] != self.input_dim:
            raise ShapeError("layer input", (self.input_dim,), x.shape)

        z = mat_vec(self.params['weight'], x) + self.params['bias']
        a = self.activation.apply(z)

        self.cache = {'x': x, 'z': z, 'a': a}
        return a

    def backward(self, grad_output):
        """
        Backward pass for the sample seen by the last forward().

        Args:
            grad_output: dL/da, shape (output_dim,)

        Returns:
            Tuple (grad_input, grad_weight, grad_bias)
        """
        if not self.cache:
            raise StateError("Dense.backward() called without a matching forward()")

        grad_output = as_vector(grad_output, what="output gradient")
        if grad_output.shape[0] != self.output_dim:
            raise ShapeError("output gradient", (self.output_dim,), grad_output.shape)

        cache, self.cache = self.cache, {}

        delta = grad_output * self.activation.derivative(cache['z'], cache['a'])
        grad_weight = outer(delta, cache['x'])
        grad_bias = delta
        grad_input = mat_vec(transpose(self.params['weight']), delta)

        return grad_input, grad_weight, grad_bias

    def update(self, grad_weight, grad_bias, learning_rate):
        """In-place gradient descent step on this layer's parameters."""
        weight = self.params['weight']
        bias = self.params['bias']
        if grad_weight.shape != weight.shape:
            raise ShapeError("weight gradient", weight.shape, grad_weight.shape)
        if grad_bias.shape != bias.shape:
            raise ShapeError("bias gradient", bias.shape, grad_bias.shape)
        weight -= learning_rate * grad_weight
        bias -= learning_rate * grad_bias

    def replica(self):
        """A layer sharing this layer's parameter buffers with its own cache."""
        return Dense.from_parameters(self.params['weight'], self.params['bias'], self.activation)

    def copy(self):
        """A layer with copied parameter buffers."""
        return Dense.from_parameters(self.params['weight'].copy(),
                                     self.params['bias'].copy(), self.activation)

    @property
    def parameter_count(self):
        return self.params['weight'].size + self.params['bias'].size

    def __repr__(self):
        return f"Dense({self.input_dim}, {self.output_dim}, activation={self.activation})"
