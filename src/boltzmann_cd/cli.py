#!/usr/bin/env python
"""boltzmann-cd command-line interface."""

import argparse
import logging
import sys
from pathlib import Path


def _load_data(path: Path):
    """Load a ``[n_samples, n_visible]`` array from a .pt or .csv file."""
    import numpy as np
    import torch

    if path.suffix == ".pt":
        data = torch.load(path, map_location="cpu")
        if not isinstance(data, torch.Tensor):
            raise ValueError(f"{path} must contain a single tensor")
        return data.to(torch.float32)
    if path.suffix == ".csv":
        array = np.loadtxt(path, delimiter=",", skiprows=1, ndmin=2)
        return torch.as_tensor(array, dtype=torch.float32)
    raise ValueError(f"Unsupported data format {path.suffix!r}, expected .pt or .csv")


def cmd_train(args):
    """Train a model."""
    from boltzmann_cd.config import load_config
    from boltzmann_cd.errors import BoltzmannError
    from boltzmann_cd.pipeline import plot_history, save_history, save_model, train_rbm

    config_path = Path(args.config)
    data_path = Path(args.data)

    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        return 1
    if not data_path.exists():
        print(f"Error: Data file not found: {data_path}")
        return 1

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        cfg = load_config(config_path)
        data = _load_data(data_path)

        print(f"Loaded dataset: {data.shape[0]} samples x {data.shape[1]} units")
        print("=" * 60)

        model, trainer, history = train_rbm(cfg, data, progress=not args.quiet)
    except (BoltzmannError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    save_model(model, out_dir / "model.pt")
    save_history(history, out_dir / "history.json")
    plot_history(history, out_dir / "history.png")

    print("\n" + "=" * 60)
    print("TRAINING COMPLETE")
    print("=" * 60)
    print(f"Trainer: {trainer!r}")
    print(f"Final reconstruction error: {history['recon_error'][-1]:.6f}")
    print(f"Run directory: {out_dir}")
    print("  - model.pt")
    print("  - history.json")
    print("  - history.png")

    return 0


def cmd_evaluate(args):
    """Evaluate a trained model."""
    from boltzmann_cd.pipeline import evaluate, load_model

    model_path = Path(args.run) / "model.pt"
    data_path = Path(args.data)

    if not model_path.exists():
        print(f"Error: Model not found: {model_path}")
        return 1
    if not data_path.exists():
        print(f"Error: Data file not found: {data_path}")
        return 1

    model, _ = load_model(model_path)
    try:
        data = _load_data(data_path)
        metrics = evaluate(model, data, recon_k=args.recon_k)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    print("EVALUATION RESULTS")
    print("=" * 60)
    for key, value in metrics.items():
        print(f"{key}: {value:.6f}")

    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="boltzmann-cd - RBM training with (persistent) contrastive divergence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # train command
    train_parser = subparsers.add_parser(
        "train",
        help="Train a model",
    )
    train_parser.add_argument(
        "--config", "-c",
        type=str,
        required=True,
        help="Path to a config.py defining a `config` dict",
    )
    train_parser.add_argument(
        "--data", "-d",
        type=str,
        required=True,
        help="Training data (.csv with a header row, or .pt tensor)",
    )
    train_parser.add_argument(
        "--out", "-o",
        type=str,
        default="run",
        help="Output directory",
    )
    train_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Disable progress bars",
    )

    # evaluate command
    eval_parser = subparsers.add_parser(
        "evaluate",
        help="Evaluate a trained model",
    )
    eval_parser.add_argument(
        "--run", "-r",
        type=str,
        required=True,
        help="Run directory containing model.pt",
    )
    eval_parser.add_argument(
        "--data", "-d",
        type=str,
        required=True,
        help="Evaluation data (.csv with a header row, or .pt tensor)",
    )
    eval_parser.add_argument(
        "--recon-k",
        type=int,
        default=1,
        help="Gibbs steps used for reconstruction",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "train":
        return cmd_train(args)
    elif args.command == "evaluate":
        return cmd_evaluate(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
