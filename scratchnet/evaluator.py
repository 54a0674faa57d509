"""
Evaluator
=========

Read-only scoring of a network on held-out samples: forward passes only,
no gradients, no parameter writes.

The network lock is held for the whole pass, so evaluation never observes
a half-applied update when a Trainer runs on another thread.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .errors import ShapeError

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """
    Scores for one evaluation pass.

    Attributes:
        accuracy: Fraction of correctly classified samples
        correct: Correct predictions per class (indexed by true class)
        total: Samples per class (indexed by true class)
        average_loss: Mean loss, when a loss function was given
        average_confidence: Mean output value of the predicted unit
        least_confident_error: Index of the misclassified sample with the
            lowest confidence, or None when every sample is correct
        confusion: Confusion matrix, rows = true class, cols = predicted
    """

    accuracy: float
    correct: List[int]
    total: List[int]
    average_loss: Optional[float] = None
    average_confidence: float = 0.0
    least_confident_error: Optional[int] = None
    confusion: np.ndarray = field(default=None, repr=False)

    def per_class_accuracy(self):
        """Accuracy per class (NaN for classes without samples)."""
        return [c / t if t else float('nan') for c, t in zip(self.correct, self.total)]


def confusion_matrix(y_true, y_pred, num_classes=None):
    """
    Compute confusion matrix.

    Args:
        y_true: True labels
        y_pred: Predicted labels
        num_classes: Number of classes

    Returns:
        Confusion matrix, shape (num_classes, num_classes)
    """
    y_true = np.asarray(y_true, dtype=int)
    y_pred = np.asarray(y_pred, dtype=int)

    if num_classes is None:
        num_classes = max(y_true.max(), y_pred.max()) + 1

    cm = np.zeros((num_classes, num_classes), dtype=int)
    for t, p in zip(y_true, y_pred):
        cm[t, p] += 1

    return cm


def evaluate(network, samples, loss=None):
    """
    Evaluate a network on labeled samples.

    Args:
        network: Network to score (not modified)
        samples: Sequence of Sample
        loss: Optional Loss instance for average_loss

    Returns:
        EvaluationResult
    """
    samples = list(samples)
    if not samples:
        raise ValueError("Cannot evaluate on an empty sample set")

    # A single output unit is a binary classifier: two classes.
    num_classes = max(network.output_dim, 2)

    y_true = np.empty(len(samples), dtype=int)
    y_pred = np.empty(len(samples), dtype=int)
    confidences = np.empty(len(samples))
    total_loss = 0.0

    with network.lock:
        # Private caches: the trainer's forward-pass caches stay untouched.
        view = network.replica()
        for i, sample in enumerate(samples):
            output = view.forward(sample.inputs)
            predicted = view.decide(output)

            y_true[i] = sample.class_index()
            if not 0 <= y_true[i] < num_classes:
                raise ShapeError(f"class index of sample {i}", f"< {num_classes}", int(y_true[i]))
            y_pred[i] = predicted
            if output.shape[0] == 1:
                confidences[i] = output[0] if predicted == 1 else 1.0 - output[0]
            else:
                confidences[i] = output[predicted]

            if loss is not None:
                sample_loss, _ = loss.compute(output, sample.label)
                total_loss += sample_loss

    cm = confusion_matrix(y_true, y_pred, num_classes)
    correct = np.diag(cm).tolist()
    total = cm.sum(axis=1).tolist()

    wrong = np.flatnonzero(y_true != y_pred)
    least_confident = int(wrong[np.argmin(confidences[wrong])]) if wrong.size else None

    result = EvaluationResult(
        accuracy=float(np.mean(y_true == y_pred)),
        correct=correct,
        total=total,
        average_loss=total_loss / len(samples) if loss is not None else None,
        average_confidence=float(np.mean(confidences)),
        least_confident_error=least_confident,
        confusion=cm,
    )
    logger.debug("Evaluated %d samples: accuracy %.4f", len(samples), result.accuracy)
    return result
