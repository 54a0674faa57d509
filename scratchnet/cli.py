"""Command line entry point: train or evaluate a network on MNIST."""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

import matplotlib.pyplot as plt

from . import serializer, visualizations
from .data import load_mnist
from .errors import DivergenceError, FormatError, IoError
from .evaluator import evaluate
from .network import Network
from .trainer import Trainer, TrainerConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_IO_ERROR = 1
EXIT_FAILURE = 2


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='scratchnet', description=__doc__)
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging verbosity')
    sub = parser.add_subparsers(dest='command', required=True)

    def add_common(p):
        p.add_argument('--data-dir', type=Path, default=Path('data'),
                       help='Directory holding the MNIST IDX files')
        p.add_argument('--checkpoint', type=Path, default=Path('network.bin'),
                       help='Checkpoint file to load/save')
        p.add_argument('--subset', type=int, nargs=2, metavar=('TRAIN', 'TEST'),
                       help='Use a random subset of the dataset')
        p.add_argument('--plot-dir', type=Path,
                       help='Write plots (PNG) into this directory')

    train = sub.add_parser('train', help='Train a new or existing network')
    add_common(train)
    train.add_argument('--config', type=Path, help='YAML/JSON trainer config')
    train.add_argument('--hidden', type=int, nargs='*', default=[16, 16],
                       help='Hidden layer sizes for a new network')
    train.add_argument('--epochs', type=int)
    train.add_argument('--batch-size', type=int)
    train.add_argument('--learning-rate', type=float)
    train.add_argument('--seed', type=int)
    train.add_argument('--workers', type=int)
    choice = train.add_mutually_exclusive_group()
    choice.add_argument('--new', action='store_true', help='Start from a freshly initialized network')
    choice.add_argument('--resume', action='store_true', help='Continue from the checkpoint')

    ev = sub.add_parser('evaluate', help='Score a saved network on the test set')
    add_common(ev)

    return parser.parse_args(argv)


def build_config(args):
    config = TrainerConfig.from_file(args.config) if args.config else TrainerConfig(verbose=True)
    overrides = {
        'epochs': args.epochs,
        'batch_size': args.batch_size,
        'learning_rate': args.learning_rate,
        'seed': args.seed,
        'workers': args.workers,
    }
    values = vars(config).copy()
    values.update({k: v for k, v in overrides.items() if v is not None})
    values['checkpoint_path'] = str(args.checkpoint)
    return TrainerConfig(**values)


def want_resume(args):
    """The train-new vs. load-existing choice."""
    if args.new:
        return False
    if args.resume:
        return True
    if not args.checkpoint.exists():
        return False
    answer = input(f"Load existing network from {args.checkpoint}? [y/N] ")
    return answer.strip().lower() in ('y', 'yes')


def install_signal_handlers(cancel_event):
    """SIGINT/SIGTERM set the cancel flag; training stops after the current batch."""
    def handler(signum, frame):
        if cancel_event.is_set():
            return
        logger.warning("Received %s: finishing current batch, then saving",
                       signal.Signals(signum).name)
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_train(args):
    train_set, test_set = load_mnist(args.data_dir, subset_size=args.subset)
    config = build_config(args)

    network = None
    if want_resume(args):
        try:
            network = serializer.load(args.checkpoint)
        except FormatError as exc:
            logger.warning("Checkpoint %s is unusable (%s); starting a fresh network",
                           args.checkpoint, exc)
    if network is None:
        sizes = [train_set.num_features] + list(args.hidden) + [train_set.num_classes]
        network = Network.from_sizes(sizes, seed=config.seed)
    logger.info("Network layout: %r", network)
    logger.debug("\n%s", network.summary())

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    trainer = Trainer(network, config, cancel_event=cancel_event)
    history = trainer.fit(train_set, validation=test_set)

    if history.cancelled:
        logger.info("Training stopped after %d batches; checkpoint at %s",
                    history.batches_completed, config.checkpoint_path)
    else:
        serializer.save(network, config.checkpoint_path)

    if args.plot_dir and history.loss:
        args.plot_dir.mkdir(parents=True, exist_ok=True)
        fig = visualizations.plot_training_history(history, save_path=args.plot_dir / 'history.png')
        plt.close(fig)
    return EXIT_OK


def run_evaluate(args):
    _, test_set = load_mnist(args.data_dir, subset_size=args.subset)
    network = serializer.load(args.checkpoint)

    result = evaluate(network, test_set)
    logger.info("Accuracy: %.4f", result.accuracy)
    logger.info("Confidence: %.4f", result.average_confidence)
    for cls, accuracy in enumerate(result.per_class_accuracy()):
        logger.info("  class %d: %d/%d (%.4f)", cls, result.correct[cls], result.total[cls], accuracy)

    if args.plot_dir:
        args.plot_dir.mkdir(parents=True, exist_ok=True)
        fig = visualizations.visualize_confusion_matrix(
            result.confusion, save_path=args.plot_dir / 'confusion.png')
        plt.close(fig)
        if result.least_confident_error is not None:
            sample = test_set[result.least_confident_error]
            fig = visualizations.plot_prediction(
                sample.inputs, network.forward(sample.inputs), sample.class_index(),
                save_path=args.plot_dir / 'least_confident_error.png')
            plt.close(fig)
    return EXIT_OK


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    commands = {'train': run_train, 'evaluate': run_evaluate}
    try:
        return commands[args.command](args)
    except IoError as exc:
        logger.error("%s", exc)
        return EXIT_IO_ERROR
    except (DivergenceError, FormatError, FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
