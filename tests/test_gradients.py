"""
Gradient Checking Tests
=======================

Verify analytical gradients match numerical approximations.
If backward() is wrong, training still runs but silently learns nothing,
so these checks matter more than any other test.

Method: Centered finite differences
    f'(x) ≈ (f(x + ε) - f(x - ε)) / (2ε)

We compare:
    - Analytical gradient: computed by backward()
    - Numerical gradient: finite difference approximation
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scratchnet.layers import Dense
from scratchnet.losses import CrossEntropyLoss, MSELoss
from scratchnet.network import Network


def numerical_gradient(f, x, epsilon=1e-5):
    """
    Compute numerical gradient using centered finite differences.

    Args:
        f: Function of no arguments returning the scalar loss; it must
            read x (which is perturbed in place)
        x: Array at which to compute gradient
        epsilon: Small perturbation

    Returns:
        Numerical gradient, same shape as x
    """
    grad = np.zeros_like(x)

    it = np.nditer(x, flags=['multi_index'])
    while not it.finished:
        idx = it.multi_index
        grad[idx] = numerical_partial(f, x, idx, epsilon)
        it.iternext()

    return grad


def numerical_partial(f, x, idx, epsilon=1e-5):
    """Centered difference of f with respect to the single entry x[idx]."""
    original = x[idx]

    x[idx] = original + epsilon
    loss_plus = f()

    x[idx] = original - epsilon
    loss_minus = f()

    x[idx] = original
    return (loss_plus - loss_minus) / (2 * epsilon)


def relative_error(analytical, numerical):
    """
    Compute relative error between analytical and numerical gradients.

    Returns:
        Maximum relative error across all elements
    """
    diff = np.abs(analytical - numerical)
    denom = np.maximum(np.abs(analytical) + np.abs(numerical), 1e-8)
    return np.max(diff / denom)


def analytic_gradients(network, loss, x, target):
    """Per-layer (grad_weight, grad_bias) from one forward/backward pass."""
    output = network.forward(x)
    _, grad = loss.compute(output, target)
    return network.backward(grad)


class TestDenseGradients:
    """Gradient tests for a single Dense layer."""

    @pytest.mark.parametrize('activation', ['identity', 'sigmoid', 'relu'])
    def test_dense_gradients(self, activation):
        """Test Dense weight, bias and input gradients."""
        np.random.seed(42)
        dense = Dense(5, 3, activation=activation, rng=np.random.default_rng(0))
        x = np.random.randn(5)
        upstream = np.random.randn(3)

        def loss_fn():
            return np.sum(dense.forward(x) * upstream)

        dense.forward(x)
        grad_input, grad_weight, grad_bias = dense.backward(upstream)

        num_weight = numerical_gradient(loss_fn, dense.params['weight'])
        num_bias = numerical_gradient(loss_fn, dense.params['bias'])
        num_input = numerical_gradient(loss_fn, x)

        assert relative_error(grad_weight, num_weight) < 1e-5, "weight gradient mismatch"
        assert relative_error(grad_bias, num_bias) < 1e-5, "bias gradient mismatch"
        assert relative_error(grad_input, num_input) < 1e-5, "input gradient mismatch"


class TestNetworkGradients:
    """End-to-end gradient tests through Network.backward()."""

    def test_sampled_parameters_sigmoid_mse(self):
        """
        [2, 3, 1] sigmoid network with MSE: 25 random (input, parameter)
        pairs, each compared against a centered difference.
        """
        rng = np.random.default_rng(2024)
        net = Network.from_sizes([2, 3, 1], hidden_activation='sigmoid',
                                 output_activation='sigmoid', seed=1)
        loss = MSELoss()

        for _ in range(25):
            x = rng.uniform(-1.0, 1.0, size=2)
            target = rng.uniform(0.0, 1.0, size=1)

            gradients = analytic_gradients(net, loss, x, target)

            layer_index = int(rng.integers(len(net.layers)))
            layer = net.layers[layer_index]
            name = 'weight' if rng.random() < 0.7 else 'bias'
            param = layer.params[name]
            idx = tuple(int(rng.integers(dim)) for dim in param.shape)

            analytic = gradients[layer_index][0 if name == 'weight' else 1][idx]
            numeric = numerical_partial(lambda: loss.forward(net.forward(x), target), param, idx)

            assert np.isclose(analytic, numeric, rtol=1e-4, atol=1e-8), \
                f"layer {layer_index} {name}{idx}: analytic {analytic}, numeric {numeric}"

    def test_all_parameters_sigmoid_mse(self):
        """Every parameter of a [2, 3, 1] network on one sample."""
        net = Network.from_sizes([2, 3, 1], hidden_activation='sigmoid',
                                 output_activation='sigmoid', seed=3)
        loss = MSELoss()
        x = np.array([0.3, -0.8])
        target = np.array([1.0])

        gradients = analytic_gradients(net, loss, x, target)

        def loss_fn():
            return loss.forward(net.forward(x), target)

        for layer, (grad_weight, grad_bias) in zip(net.layers, gradients):
            num_weight = numerical_gradient(loss_fn, layer.params['weight'])
            num_bias = numerical_gradient(loss_fn, layer.params['bias'])
            assert relative_error(grad_weight, num_weight) < 1e-4
            assert relative_error(grad_bias, num_bias) < 1e-4

    def test_softmax_cross_entropy(self):
        """
        The folded softmax + cross-entropy gradient (output - target) agrees
        with differentiating the composed loss numerically.
        """
        net = Network.from_sizes([4, 5, 3], hidden_activation='relu',
                                 output_activation='softmax', weight_init='he', seed=7)
        loss = CrossEntropyLoss()
        x = np.array([0.5, -0.2, 0.9, 0.1])
        label = 2

        gradients = analytic_gradients(net, loss, x, label)

        def loss_fn():
            return loss.forward(net.forward(x), np.eye(3)[label])

        for layer, (grad_weight, grad_bias) in zip(net.layers, gradients):
            num_weight = numerical_gradient(loss_fn, layer.params['weight'])
            num_bias = numerical_gradient(loss_fn, layer.params['bias'])
            assert relative_error(grad_weight, num_weight) < 1e-4
            assert relative_error(grad_bias, num_bias) < 1e-4

    def test_mse_identity_output(self):
        """MSE on a multi-unit identity output divides by the unit count."""
        net = Network.from_sizes([3, 4, 2], hidden_activation='sigmoid',
                                 output_activation='identity', seed=11)
        loss = MSELoss()
        x = np.array([1.0, 0.0, -1.0])
        target = np.array([0.25, -0.5])

        gradients = analytic_gradients(net, loss, x, target)

        def loss_fn():
            return loss.forward(net.forward(x), target)

        layer = net.layers[-1]
        num_weight = numerical_gradient(loss_fn, layer.params['weight'])
        assert relative_error(gradients[-1][0], num_weight) < 1e-4


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
