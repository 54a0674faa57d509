"""
Visualization Utilities
=======================

Matplotlib figures for:
- Training progress (loss, accuracy and learning rate per epoch)
- Confusion matrix
- A single input image with its prediction (e.g. the least confident error)

Every function returns the Figure; the caller decides whether to show or
close it.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def _save(fig, save_path, what):
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info("%s plot saved to %s", what, save_path)


def plot_training_history(history, figsize=(14, 5), save_path=None):
    """
    Plot per-epoch training curves.

    Args:
        history: TrainingHistory, or dict with 'loss', 'accuracy' and
            optionally 'val_loss', 'val_accuracy', 'lr'
        figsize: Figure size
        save_path: Path to save figure
    """
    if not isinstance(history, dict):
        history = vars(history)

    panels = [('loss', 'Loss'), ('accuracy', 'Accuracy')]
    if history.get('lr'):
        panels.append(('lr', 'Learning Rate'))

    fig, axes = plt.subplots(1, len(panels), figsize=figsize)
    epochs = np.arange(1, len(history['loss']) + 1)

    for ax, (key, title) in zip(axes, panels):
        values = history[key]
        label = 'Training' if key != 'lr' else 'Scheduled'
        ax.plot(epochs[:len(values)], values, 'b-', label=label, linewidth=2)

        val_values = history.get(f'val_{key}')
        if val_values:
            ax.plot(epochs[:len(val_values)], val_values, 'r--', label='Validation', linewidth=2)

        ax.set_xlabel('Epoch', fontsize=12)
        ax.set_ylabel(title, fontsize=12)
        ax.set_title(title, fontsize=14)
        ax.legend(fontsize=10)
        ax.grid(True, alpha=0.3)

    if history.get('cancelled'):
        fig.suptitle(f"Stopped early after {history.get('batches_completed', 0)} batches",
                     fontsize=12, color='darkred')

    fig.tight_layout()
    _save(fig, save_path, "Training history")
    return fig


def visualize_confusion_matrix(cm, class_names=None, normalize=False, figsize=(10, 8), save_path=None):
    """
    Visualize confusion matrix (rows = true class, columns = predicted).

    Args:
        cm: Confusion matrix, shape (num_classes, num_classes)
        class_names: List of class names
        normalize: Color and annotate by row fraction instead of count
        figsize: Figure size
        save_path: Path to save figure
    """
    cm = np.asarray(cm)
    n = cm.shape[0]
    if class_names is None:
        class_names = [str(i) for i in range(n)]

    if normalize:
        row_totals = cm.sum(axis=1, keepdims=True)
        values = np.divide(cm, row_totals, out=np.zeros(cm.shape), where=row_totals > 0)
        cell_text = [[f'{v:.2f}' for v in row] for row in values]
    else:
        values = cm
        cell_text = [[str(int(v)) for v in row] for row in cm]

    fig, ax = plt.subplots(figsize=figsize)
    im = ax.imshow(values, interpolation='nearest', cmap=plt.cm.Blues)
    fig.colorbar(im, ax=ax)

    accuracy = np.trace(cm) / cm.sum() if cm.sum() else 0.0
    ax.set(xticks=np.arange(n), yticks=np.arange(n),
           xticklabels=class_names, yticklabels=class_names,
           xlabel='Predicted Label', ylabel='True Label',
           title=f'Confusion Matrix (accuracy {accuracy:.2%})')

    # Dark cells get white text
    thresh = values.max() / 2.0 if values.size else 0.0
    for i in range(n):
        for j in range(n):
            ax.text(j, i, cell_text[i][j], ha='center', va='center',
                    color='white' if values[i, j] > thresh else 'black')

    fig.tight_layout()
    _save(fig, save_path, "Confusion matrix")
    return fig


def plot_prediction(inputs, output, true_label=None, image_shape=None, figsize=(8, 4), save_path=None):
    """
    Show one input image next to the network's output vector.

    Args:
        inputs: Flat input vector (reshaped to image_shape)
        output: Network output for this input
        true_label: Correct class index, if known
        image_shape: (height, width) of the image; square inputs are
            inferred when None, anything else is drawn as a single row
        figsize: Figure size
        save_path: Path to save figure
    """
    inputs = np.asarray(inputs)
    output = np.asarray(output)
    predicted = int(np.argmax(output))

    if image_shape is None:
        side = int(round(np.sqrt(inputs.size)))
        image_shape = (side, side) if side * side == inputs.size else (1, inputs.size)

    fig, (ax_img, ax_out) = plt.subplots(1, 2, figsize=figsize)

    ax_img.imshow(inputs.reshape(image_shape), cmap='gray')
    if true_label is None:
        color = 'steelblue'
        ax_img.set_title(f'Pred: {predicted}', fontsize=11)
    else:
        color = 'green' if predicted == true_label else 'red'
        ax_img.set_title(f'True: {true_label}  Pred: {predicted}', color=color, fontsize=11)
    ax_img.axis('off')

    ax_out.bar(range(len(output)), output, color='steelblue')
    ax_out.bar(predicted, output[predicted], color=color)
    ax_out.set_xticks(range(len(output)))
    ax_out.set_xlabel('Class', fontsize=11)
    ax_out.set_ylabel('Output', fontsize=11)
    ax_out.set_title(f'Confidence: {output[predicted]:.3f}', fontsize=11)

    fig.tight_layout()
    _save(fig, save_path, "Prediction")
    return fig
