"""
Network Main Class
==================

The class that ties the layers together:
- Layer stacking (with dimension checks)
- Forward pass
- Backward pass (backpropagation)
- Prediction
- In-place gradient descent update

Example architecture for MNIST:
    Input (784) -> Dense(16, sigmoid) -> Dense(16, sigmoid) -> Dense(10, softmax)
"""

import logging
import threading

import numpy as np

from .activations import ActivationKind
from .errors import ShapeError
from .layers import Dense

logger = logging.getLogger(__name__)


class Network:
    """
    Feed-forward neural network.

    An ordered, non-empty sequence of Dense layers where the input dimension
    of layer i+1 equals the output dimension of layer i.

    Example:
        >>> net = Network.from_sizes([784, 16, 16, 10], seed=0)
        >>> out = net.forward(np.zeros(784))
        >>> out.shape
        (10,)
    """

    def __init__(self, layers):
        """
        Args:
            layers: Sequence of Dense layers, input side first
        """
        layers = list(layers)
        if not layers:
            raise ShapeError("network", "at least one layer", 0)

        for i in range(1, len(layers)):
            if layers[i].input_dim != layers[i - 1].output_dim:
                raise ShapeError(f"layer {i} input", (layers[i - 1].output_dim,),
                                 (layers[i].input_dim,))

        for i, layer in enumerate(layers[:-1]):
            if layer.activation is ActivationKind.SOFTMAX:
                raise ValueError(f"Softmax is only supported on the output layer (found on layer {i})")

        self.layers = layers
        # Held while parameters are written (apply_gradients) or read as a
        # whole (evaluation, checkpointing).
        self.lock = threading.RLock()

    @classmethod
    def from_sizes(cls, sizes, hidden_activation='sigmoid', output_activation='softmax',
                   weight_init='xavier', seed=None):
        """
        Build a freshly initialized network.

        Args:
            sizes: Units per layer including the input, e.g. [784, 16, 16, 10]
            hidden_activation: Activation for all but the last layer
            output_activation: Activation for the last layer
            weight_init: 'he', 'xavier' or 'uniform'
            seed: Seed for reproducible initialization
        """
        sizes = list(sizes)
        if len(sizes) < 2:
            raise ShapeError("layer sizes", "at least [inputs, outputs]", tuple(sizes))

        rng = np.random.default_rng(seed)
        layers = []
        for i, (in_dim, out_dim) in enumerate(zip(sizes[:-1], sizes[1:])):
            last = i == len(sizes) - 2
            activation = output_activation if last else hidden_activation
            layers.append(Dense(in_dim, out_dim, activation=activation,
                                weight_init=weight_init, rng=rng))
        network = cls(layers)
        logger.debug("Built %r (%d parameters)", network, network.parameter_count())
        return network

    @property
    def input_dim(self):
        return self.layers[0].input_dim

    @property
    def output_dim(self):
        return self.layers[-1].output_dim

    @property
    def layer_sizes(self):
        return [self.input_dim] + [layer.output_dim for layer in self.layers]

    @property
    def output_activation(self):
        return self.layers[-1].activation

    def forward(self, x):
        """
        Forward pass through the network.

        Args:
            x: Input vector, shape (input_dim,)

        Returns:
            Output vector, shape (output_dim,)
        """
        for layer in self.layers:
            x = layer.forward(x)
        return x

    def predict(self, x):
        """
        Predict the class index of one input.

        Multi-output networks return argmax of the output (numpy returns the
        first maximum, so ties go to the lowest index). A single-output
        network is a binary classifier thresholded at 0.5.
        """
        output = self.forward(x)
        return self.decide(output)

    def decide(self, output):
        """Class index for an already computed output vector."""
        if output.shape[0] == 1:
            return int(output[0] >= 0.5)
        return int(np.argmax(output))

    def predict_classes(self, X):
        """
        Predict class labels for many inputs.

        Args:
            X: Inputs, shape (N, input_dim)

        Returns:
            Predicted class indices, shape (N,)
        """
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X[np.newaxis, :]
        return np.array([self.predict(row) for row in X], dtype=int)

    def backward(self, grad):
        """
        Backward pass through the network.

        Propagates the loss gradient from the output layer to the input
        layer, each layer's input gradient becoming the output gradient of
        the layer before it.

        Args:
            grad: Gradient from the loss function, shape (output_dim,)

        Returns:
            List of (grad_weight, grad_bias) per layer, layer 0 first
        """
        gradients = []
        for layer in reversed(self.layers):
            grad, grad_weight, grad_bias = layer.backward(grad)
            gradients.append((grad_weight, grad_bias))
        gradients.reverse()
        return gradients

    def apply_gradients(self, gradients, learning_rate):
        """
        Gradient descent step: W -= lr * dW, b -= lr * db for every layer.

        Parameters are updated in place; no new buffers are allocated.
        """
        if len(gradients) != len(self.layers):
            raise ShapeError("gradient list", len(self.layers), len(gradients))
        with self.lock:
            for layer, (grad_weight, grad_bias) in zip(self.layers, gradients):
                layer.update(grad_weight, grad_bias, learning_rate)

    def replica(self):
        """Network sharing this network's parameters with private caches."""
        replica = Network.__new__(Network)
        replica.layers = [layer.replica() for layer in self.layers]
        replica.lock = self.lock
        return replica

    def copy(self):
        """Deep copy of the network's parameters (a point-in-time snapshot)."""
        with self.lock:
            return Network([layer.copy() for layer in self.layers])

    def parameter_count(self):
        return sum(layer.parameter_count for layer in self.layers)

    def allclose(self, other, atol=0.0):
        """True when both networks share a topology and parameters match within atol."""
        if self.layer_sizes != other.layer_sizes:
            return False
        for a, b in zip(self.layers, other.layers):
            if a.activation is not b.activation:
                return False
            if not np.allclose(a.weight, b.weight, rtol=0.0, atol=atol):
                return False
            if not np.allclose(a.bias, b.bias, rtol=0.0, atol=atol):
                return False
        return True

    def summary(self):
        """Model summary table as a string."""
        lines = []
        lines.append("=" * 60)
        lines.append(f"{'Layer':<40} {'Params':>15}")
        lines.append("=" * 60)
        for i, layer in enumerate(self.layers):
            lines.append(f"{i:3d}. {str(layer):<35} {layer.parameter_count:>15,}")
        lines.append("-" * 60)
        lines.append(f"Total trainable parameters: {self.parameter_count():,}")
        lines.append("=" * 60)
        return '\n'.join(lines)

    def __repr__(self):
        layout = ' -> '.join(str(s) for s in self.layer_sizes)
        return f"Network({layout})"

