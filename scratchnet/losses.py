"""
Loss Functions
==============

Loss functions measure how wrong the network's prediction is for one
sample. The goal of training is to minimize the loss.

Each loss implements:
- compute(output, label): (scalar loss, gradient for backpropagation)

The gradient is what Network.backward() receives. For MSE it is dL/da
(the output layer multiplies in its activation derivative). For
cross-entropy on a Softmax output it is dL/dz = output - target, the
Softmax Jacobian folded in analytically.

Any non-finite loss or gradient raises DivergenceError, so corrupted values
never reach the parameters.
"""

import numpy as np

from .activations import ActivationKind
from .data import as_target
from .errors import DivergenceError
from .tensor import DTYPE


class Loss:
    """
    A per-sample loss. Subclasses define forward() (the scalar value),
    backward() (the gradient handed to Network.backward) and supports().
    """

    name = None
    aliases = ()

    def forward(self, output, target):
        raise NotImplementedError

    def backward(self, output, target):
        raise NotImplementedError

    def supports(self, activation):
        """Whether this loss can be paired with the given output activation."""
        raise NotImplementedError

    def compute(self, output, label):
        """
        Loss and initial gradient for one sample.

        Args:
            output: Network output vector, shape (C,)
            label: Class index, or target vector of shape (C,)

        Returns:
            Tuple (loss, gradient)

        Raises:
            DivergenceError: if either value is NaN or infinite
        """
        target = as_target(label, output.shape[0])

        loss = float(self.forward(output, target))
        if not np.isfinite(loss):
            raise DivergenceError(f"{self.name} loss is not finite ({loss})", value=loss)

        grad = self.backward(output, target)
        if not np.all(np.isfinite(grad)):
            raise DivergenceError(f"{self.name} gradient is not finite", value=loss)

        return loss, grad

    def __call__(self, output, target):
        return self.forward(output, np.asarray(target, dtype=DTYPE))

    def __repr__(self):
        return f"{type(self).__name__}()"


class CrossEntropyLoss(Loss):
    """
    Categorical cross-entropy on a Softmax output.

        L = -sum_i target_i * log(output_i)

    With a one-hot target this is -log of the probability given to the
    correct class. Outputs are clipped to [epsilon, 1] before the log.
    """

    name = 'cross_entropy'
    aliases = ('ce', 'crossentropy', 'categorical_crossentropy')

    def __init__(self, epsilon=1e-15):
        self.epsilon = epsilon

    def forward(self, output, target):
        return -np.sum(target * np.log(np.clip(output, self.epsilon, 1.0)))

    def backward(self, output, target):
        """
        Softmax and cross-entropy differentiate together to
            dL/dz = output - target
        which is what the Softmax layer's unit derivative passes through.
        """
        return output - target

    def supports(self, activation):
        return activation is ActivationKind.SOFTMAX


class MSELoss(Loss):
    """
    Mean squared error over the C output units.

        L = (1/C) * sum((output - target)^2)
        dL/doutput = (2/C) * (output - target)
    """

    name = 'mse'
    aliases = ('mean_squared_error', 'l2')

    def forward(self, output, target):
        return np.mean((output - target) ** 2)

    def backward(self, output, target):
        return 2.0 * (output - target) / output.shape[0]

    def supports(self, activation):
        return activation is not ActivationKind.SOFTMAX


LOSSES = {alias: cls
          for cls in (CrossEntropyLoss, MSELoss)
          for alias in (cls.name,) + cls.aliases}


def get_loss(name, output_activation=None):
    """
    Resolve a loss by name.

    Args:
        name: Loss instance, registered name or alias, or 'auto'
            (cross-entropy for a Softmax output, MSE otherwise)
        output_activation: ActivationKind of the output layer, used by 'auto'

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    key = name.strip().lower().replace('-', '_').replace(' ', '_')
    if key == 'auto':
        return CrossEntropyLoss() if output_activation is ActivationKind.SOFTMAX else MSELoss()

    try:
        return LOSSES[key]()
    except KeyError:
        raise ValueError(f"Unknown loss '{name}'. Available: auto, {', '.join(sorted(LOSSES))}") from None
