"""
Trainer
=======

Mini-batch stochastic gradient descent with cooperative cancellation.

State machine:
    IDLE -> RUNNING -> (cancel flag seen at a batch boundary) -> FINISHING -> STOPPED
    RUNNING -> (epochs done, or error) -> STOPPED

Per batch:
    1. zero the GradientSet
    2. for each sample: forward, loss, backward, accumulate (sum)
    3. divide by the batch size, apply W -= lr * dW
    4. poll the cancel flag

The flag is only polled between batches, so a checkpoint written on
cancellation always holds a whole number of applied batches.
"""

import json
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import yaml
from tqdm import tqdm

from . import serializer
from .data import create_batches
from .errors import DivergenceError, ShapeError, StateError
from .evaluator import evaluate
from .gradients import GradientSet
from .losses import get_loss

logger = logging.getLogger(__name__)


# ============================================================================
# Learning Rate Schedulers
# ============================================================================

def constant_lr():
    """No decay - constant learning rate."""
    def scheduler(epoch, initial_lr):
        return initial_lr
    return scheduler


def step_decay(drop_rate=0.5, drop_every=10):
    """
    Step decay: LR = initial_lr * drop_rate^(epoch // drop_every)

    Example: drop by 0.5 every 10 epochs
    """
    def scheduler(epoch, initial_lr):
        return initial_lr * (drop_rate ** (epoch // drop_every))
    return scheduler


def exponential_decay(decay_rate=0.95):
    """
    Exponential decay: LR = initial_lr * decay_rate^epoch
    """
    def scheduler(epoch, initial_lr):
        return initial_lr * (decay_rate ** epoch)
    return scheduler


def cosine_annealing(total_steps, min_lr=0.0):
    """
    Cosine annealing: Smooth decay following cosine curve.

    LR decreases slowly at first, faster in middle, then slowly again at end.
    """
    def scheduler(epoch, initial_lr):
        progress = min(epoch / total_steps, 1.0)
        return min_lr + 0.5 * (initial_lr - min_lr) * (1 + math.cos(math.pi * progress))
    return scheduler


LR_SCHEDULERS = {
    'constant': constant_lr,
    'step': step_decay,
    'exponential': exponential_decay,
    'cosine': cosine_annealing,
}


def get_lr_scheduler(name, **kwargs):
    """Build a learning rate scheduler by name."""
    if callable(name):
        return name
    if name not in LR_SCHEDULERS:
        raise ValueError(f"Unknown lr_schedule '{name}'. Available: {list(LR_SCHEDULERS.keys())}")
    try:
        return LR_SCHEDULERS[name](**kwargs)
    except TypeError as exc:
        raise ValueError(f"Bad arguments for lr_schedule '{name}': {exc}") from exc


# ============================================================================
# Configuration and state
# ============================================================================

@dataclass
class TrainerConfig:
    """
    Everything that controls a training run.

    Args:
        epochs: Number of passes over the training set
        batch_size: Samples per gradient update
        learning_rate: Initial learning rate
        seed: Seed for the per-epoch shuffle
        loss: 'auto', 'cross_entropy' or 'mse'
        lr_schedule: 'constant', 'step', 'exponential' or 'cosine'
        lr_schedule_args: Keyword arguments for the schedule
        workers: Threads computing per-sample gradients within a batch
        checkpoint_path: Where to save the network (None disables saving)
        checkpoint_every_epoch: Also save at the end of every epoch
        shuffle: Shuffle the sample order every epoch
        verbose: Show a progress bar
    """

    epochs: int = 10
    batch_size: int = 32
    learning_rate: float = 0.1
    seed: int = 0
    loss: str = 'auto'
    lr_schedule: str = 'constant'
    lr_schedule_args: Dict[str, Any] = field(default_factory=dict)
    workers: int = 1
    checkpoint_path: Optional[str] = None
    checkpoint_every_epoch: bool = True
    shuffle: bool = True
    verbose: bool = False

    def __post_init__(self):
        # YAML reads values such as 1e-3 as strings.
        try:
            self.epochs = int(self.epochs)
            self.batch_size = int(self.batch_size)
            self.seed = int(self.seed)
            self.workers = int(self.workers)
            self.learning_rate = float(self.learning_rate)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid trainer config value: {exc}") from exc
        if not isinstance(self.lr_schedule_args, dict):
            raise ValueError(f"lr_schedule_args must be a mapping, got {self.lr_schedule_args!r}")

        if self.epochs <= 0:
            raise ValueError(f"epochs must be positive, got {self.epochs}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if not self.learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

    @classmethod
    def from_mapping(cls, mapping):
        """Build a config from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown trainer config keys: {', '.join(unknown)}")
        return cls(**mapping)

    @classmethod
    def from_file(cls, path):
        """Load a config from a YAML (.yaml/.yml) or JSON file."""
        path = Path(path)
        text = path.read_text()
        if path.suffix.lower() in {'.yaml', '.yml'}:
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_mapping(data)


class TrainerStatus(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    FINISHING = 'finishing'
    STOPPED = 'stopped'


@dataclass
class TrainingState:
    """Progress of the current run. Only the Trainer writes to it."""

    epoch: int = 0
    batch: int = 0
    learning_rate: float = 0.0
    status: TrainerStatus = TrainerStatus.IDLE
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancel_requested(self):
        return self.cancel_event.is_set()


@dataclass
class TrainingHistory:
    """Per-epoch metrics of a fit() call."""

    loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)
    lr: List[float] = field(default_factory=list)
    batches_completed: int = 0
    cancelled: bool = False
    checkpoint_path: Optional[str] = None


# ============================================================================
# Trainer
# ============================================================================

class Trainer:
    """
    Mini-batch SGD trainer.

    Args:
        network: Network to train (parameters are updated in place)
        config: TrainerConfig (defaults if None)
        cancel_event: threading.Event shared with whoever requests a stop
            (e.g. a signal handler); a private one is created if None
        callbacks: Objects with optional on_batch_end(state, loss) and
            on_epoch_end(state, history) methods

    Example:
        >>> trainer = Trainer(net, TrainerConfig(epochs=5, batch_size=16))
        >>> history = trainer.fit(train_samples, validation=test_samples)
    """

    def __init__(self, network, config=None, cancel_event=None, callbacks=()):
        self.network = network
        self.config = config or TrainerConfig()
        self.callbacks = list(callbacks)

        self.loss_fn = get_loss(self.config.loss, network.output_activation)
        if not self.loss_fn.supports(network.output_activation):
            raise ValueError(f"{self.loss_fn!r} cannot be paired with a "
                             f"{network.output_activation} output layer")

        schedule_args = dict(self.config.lr_schedule_args)
        if self.config.lr_schedule == 'cosine':
            schedule_args.setdefault('total_steps', self.config.epochs)
        self.scheduler = get_lr_scheduler(self.config.lr_schedule, **schedule_args)
        self.gradients = GradientSet(network)
        self.state = TrainingState(
            learning_rate=self.config.learning_rate,
            cancel_event=cancel_event if cancel_event is not None else threading.Event(),
        )

        self._executor = None
        self._replicas = []
        self._worker_gradients = []

    @property
    def status(self):
        return self.state.status

    def request_stop(self):
        """Ask the running fit() to stop after the current batch."""
        self.state.cancel_event.set()

    # ------------------------------------------------------------------
    # Scheduling

    def epoch_order(self, n, epoch):
        """Sample order for an epoch; depends only on (seed, epoch)."""
        if not self.config.shuffle:
            return np.arange(n)
        rng = np.random.default_rng([self.config.seed, epoch])
        return rng.permutation(n)

    def iter_batches(self, samples, epoch):
        """Yield the epoch's mini-batches as lists of samples."""
        order = self.epoch_order(len(samples), epoch)
        yield from create_batches((samples[i] for i in order), self.config.batch_size)

    # ------------------------------------------------------------------
    # One batch

    def train_batch(self, batch):
        """
        Run one gradient descent step on a batch.

        Returns:
            Mean loss over the batch

        Raises:
            DivergenceError: before any parameter is touched
        """
        loss_sum, _ = self._train_batch(batch)
        return loss_sum / len(batch)

    def _train_batch(self, batch):
        if not batch:
            raise ValueError("Cannot train on an empty batch")

        self.gradients.zero()
        if self.config.workers > 1 and len(batch) > 1:
            loss_sum, correct = self._accumulate_parallel(batch)
        else:
            loss_sum, correct = self._accumulate(self.network, batch, self.gradients)

        self.gradients.average()
        if not self.gradients.is_finite():
            raise DivergenceError("Averaged gradient is not finite")

        self.network.apply_gradients(self.gradients.pairs(), self.state.learning_rate)
        return loss_sum, correct

    def _accumulate(self, network, samples, gradients):
        loss_sum = 0.0
        correct = 0
        for sample in samples:
            output = network.forward(sample.inputs)
            loss, grad = self.loss_fn.compute(output, sample.label)
            loss_sum += loss
            correct += network.decide(output) == sample.class_index()
            gradients.accumulate(network.backward(grad))
        return loss_sum, correct

    def _accumulate_parallel(self, batch):
        workers = self.config.workers
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='scratchnet')
            self._replicas = [self.network.replica() for _ in range(workers)]
            self._worker_gradients = [GradientSet(self.network) for _ in range(workers)]

        chunk = -(-len(batch) // workers)
        futures = []
        for w in range(workers):
            part = batch[w * chunk:(w + 1) * chunk]
            if not part:
                break
            self._worker_gradients[w].zero()
            futures.append(self._executor.submit(
                self._accumulate, self._replicas[w], part, self._worker_gradients[w]))

        # Join every worker before touching the shared accumulator.
        results = [future.result() for future in futures]

        loss_sum = 0.0
        correct = 0
        for w, (part_loss, part_correct) in enumerate(results):
            self.gradients.merge(self._worker_gradients[w])
            loss_sum += part_loss
            correct += part_correct
        return loss_sum, correct

    def close(self):
        """Shut down the worker pool, if one was started."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Full run

    def fit(self, samples, validation=None):
        """
        Train the network.

        Args:
            samples: Sequence of Sample (e.g. a Dataset)
            validation: Optional samples evaluated after every epoch

        Returns:
            TrainingHistory

        Raises:
            StateError: fit() is already running
            DivergenceError: a loss or gradient became non-finite; the
                epoch is abandoned and the divergent batch is not applied
            IoError: the checkpoint could not be written
        """
        if self.state.status in (TrainerStatus.RUNNING, TrainerStatus.FINISHING):
            raise StateError(f"fit() called while trainer is {self.state.status.value}")

        samples = list(samples)
        if not samples:
            raise ValueError("Cannot train on an empty sample set")
        if samples[0].inputs.shape[0] != self.network.input_dim:
            raise ShapeError("sample inputs", (self.network.input_dim,), samples[0].inputs.shape)

        history = TrainingHistory(checkpoint_path=self.config.checkpoint_path)
        self.state.status = TrainerStatus.RUNNING
        self.state.epoch = 0
        self.state.batch = 0
        logger.info("Training %r on %d samples for %d epochs (batch size %d)",
                    self.network, len(samples), self.config.epochs, self.config.batch_size)
        try:
            self._run(samples, validation, history)
        except DivergenceError as exc:
            logger.error("Training diverged in epoch %d, batch %d: %s",
                         self.state.epoch, self.state.batch, exc)
            raise
        finally:
            self.state.status = TrainerStatus.STOPPED
            self.close()
        return history

    def _run(self, samples, validation, history):
        config = self.config
        n_batches = -(-len(samples) // config.batch_size)

        for epoch in range(config.epochs):
            self.state.epoch = epoch
            self.state.learning_rate = self.scheduler(epoch, config.learning_rate)

            if self.state.cancel_requested:
                self._finish(history)
                return

            batches = self.iter_batches(samples, epoch)
            if config.verbose:
                batches = tqdm(batches, total=n_batches, desc=f"Epoch {epoch + 1}/{config.epochs}")

            epoch_loss = 0.0
            epoch_correct = 0
            stopped = False
            try:
                for index, batch in enumerate(batches):
                    self.state.batch = index
                    loss_sum, correct = self._train_batch(batch)
                    history.batches_completed += 1
                    epoch_loss += loss_sum
                    epoch_correct += correct

                    for callback in self.callbacks:
                        if hasattr(callback, 'on_batch_end'):
                            callback.on_batch_end(self.state, loss_sum / len(batch))

                    if config.verbose:
                        batches.set_postfix({'loss': f'{loss_sum / len(batch):.4f}'})

                    # Batch boundary: the only place the cancel flag is polled.
                    if self.state.cancel_requested:
                        stopped = True
                        break
            finally:
                if config.verbose:
                    batches.close()

            if stopped:
                self._finish(history)
                return

            history.loss.append(epoch_loss / len(samples))
            history.accuracy.append(epoch_correct / len(samples))
            history.lr.append(self.state.learning_rate)

            msg = (f"Epoch {epoch + 1}/{config.epochs} - Loss: {history.loss[-1]:.4f}"
                   f" - Acc: {history.accuracy[-1]:.4f}")
            if validation is not None:
                result = evaluate(self.network, validation, loss=self.loss_fn)
                history.val_loss.append(result.average_loss)
                history.val_accuracy.append(result.accuracy)
                msg += f" - Val Loss: {result.average_loss:.4f} - Val Acc: {result.accuracy:.4f}"
            logger.info("%s - LR: %.6f", msg, self.state.learning_rate)

            for callback in self.callbacks:
                if hasattr(callback, 'on_epoch_end'):
                    callback.on_epoch_end(self.state, history)

            if config.checkpoint_path and config.checkpoint_every_epoch:
                serializer.save(self.network, config.checkpoint_path)

    def _finish(self, history):
        self.state.status = TrainerStatus.FINISHING
        history.cancelled = True
        logger.info("Stop requested: finishing after epoch %d, batch %d",
                    self.state.epoch, self.state.batch)
        if self.config.checkpoint_path:
            serializer.save(self.network, self.config.checkpoint_path)
        else:
            logger.warning("No checkpoint_path configured; stopping without saving")
