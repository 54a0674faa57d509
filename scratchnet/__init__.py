"""
Feed-Forward Neural Networks from Scratch
=========================================

A fully connected neural network trainer using only NumPy.
This library demonstrates the mechanics of:
- Dense layers with sigmoid, ReLU, identity and softmax activations
- Forward and backward propagation, one sample at a time
- Mini-batch stochastic gradient descent
- Cooperative, checkpoint-safe cancellation of training
- A compact binary checkpoint format
"""

from .activations import ActivationKind, get_activation
from .layers import Dense
from .network import Network
from .gradients import GradientSet
from .losses import CrossEntropyLoss, MSELoss, get_loss
from .trainer import Trainer, TrainerConfig, TrainerStatus, TrainingHistory, TrainingState
from .evaluator import EvaluationResult, evaluate, confusion_matrix
from .data import Sample, Dataset, load_mnist, read_idx, one_hot, class_index, create_batches
from .errors import (NetworkError, ShapeError, StateError, DivergenceError,
                     FormatError, IoError)
from . import serializer

__version__ = "1.0.0"
__all__ = [
    # Activations
    'ActivationKind', 'get_activation',
    # Model
    'Dense', 'Network', 'GradientSet',
    # Losses
    'CrossEntropyLoss', 'MSELoss', 'get_loss',
    # Training
    'Trainer', 'TrainerConfig', 'TrainerStatus', 'TrainingHistory', 'TrainingState',
    # Evaluation
    'EvaluationResult', 'evaluate', 'confusion_matrix',
    # Data
    'Sample', 'Dataset', 'load_mnist', 'read_idx', 'one_hot', 'class_index', 'create_batches',
    # Errors
    'NetworkError', 'ShapeError', 'StateError', 'DivergenceError', 'FormatError', 'IoError',
    # Checkpoints
    'serializer',
]
