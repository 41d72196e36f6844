"""End-to-end training helpers: data loading, epoch loop, checkpoints."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import torch
from torch.utils.data import DataLoader, TensorDataset
from tqdm.auto import tqdm

from boltzmann_cd.config import RBMConfig, TrainConfig
from boltzmann_cd.errors import PreconditionError
from boltzmann_cd.model import RBM
from boltzmann_cd.trainers import BaseCDTrainer, CDTrainer, PersistentCDTrainer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _as_tensor(data) -> torch.Tensor:
    if isinstance(data, torch.Tensor):
        return data.to(torch.float32)
    return torch.as_tensor(data, dtype=torch.float32)


def make_loader(data, batch_size: int, *, shuffle: bool = True, seed: int = 42) -> DataLoader:
    """DataLoader yielding ``[n, nv]`` float batches of at most ``batch_size`` rows."""
    data = _as_tensor(data)
    if data.dim() != 2:
        raise ValueError(f"Expected a 2-D [n_samples, n_visible] array, got shape {tuple(data.shape)}")
    if data.size(0) == 0:
        raise ValueError("Cannot build a loader over an empty dataset")

    generator = torch.Generator()
    generator.manual_seed(seed)
    return DataLoader(
        TensorDataset(data),
        batch_size=batch_size,
        shuffle=shuffle,
        generator=generator,
        drop_last=False,
        collate_fn=lambda rows: torch.stack([r[0] for r in rows], dim=0),
    )


def build_trainer(model: RBM, train_cfg: TrainConfig) -> BaseCDTrainer:
    trainer_cls = PersistentCDTrainer if train_cfg.persistent else CDTrainer
    return trainer_cls(model, k=train_cfg.k)


# --------------------------------------------------
# Training loop
# --------------------------------------------------


def fit(
    model: RBM,
    trainer: BaseCDTrainer,
    data,
    *,
    epochs: int = 10,
    shuffle: bool = True,
    seed: int = 42,
    log_every: int = 1,
    progress: bool = True,
) -> Dict[str, List[float]]:
    """Train ``model`` for ``epochs`` passes over ``data``.

    Batches come from ``make_loader`` with the model's ``batch_size``.
    With a persistent trainer, shuffling changes which sample feeds which
    chain slot but the chains themselves carry on.

    Returns a history dict with per-epoch mean reconstruction error and
    mean free energy per unit.
    """
    loader = make_loader(data, model.batch_size, shuffle=shuffle, seed=seed)
    history: Dict[str, List[float]] = {
        "epoch": [],
        "recon_error": [],
        "free_energy": [],
    }

    for epoch in range(1, epochs + 1):
        model.train()
        errors = []

        pbar = tqdm(loader, desc=f"Epoch {epoch}/{epochs}", leave=False, disable=not progress)
        for v in pbar:
            v = v.to(model.W.device)
            errors.append(trainer.train_batch(v, model))
            pbar.set_postfix(recon=f"{errors[-1]:.4f}")

        recon = sum(errors) / len(errors)
        with torch.no_grad():
            fe = float(model.free_energy(loader.dataset.tensors[0].to(model.W.device)).mean())
        fe /= model.nv + model.nh

        history["epoch"].append(epoch)
        history["recon_error"].append(recon)
        history["free_energy"].append(fe)

        if epoch % log_every == 0 or epoch == epochs:
            logger.info(
                "Epoch %04d | lr=%.3e | recon_error=%.6f | free_energy=%.4f",
                epoch,
                model.learning_rate,
                recon,
                fe,
            )

    return history


@torch.no_grad()
def evaluate(model: RBM, data, *, recon_k: int = 1, batch_size: int = 256) -> Dict[str, float]:
    """Score ``model`` on ``data`` without touching its parameters.

    Returns:
        free_energy_mean: mean free energy per unit (visible + hidden).
        recon_mse_mean: mean squared error of a sampled ``recon_k``-step
            reconstruction.
        recon_bit_error: fraction of visible units flipped by that
            reconstruction.
        cd_error: the trainers' proxy, sqrt(mean(dbv ** 2)) with
            dbv = mean(v - P(v=1|h)) over the whole dataset, comparable to
            the ``recon_error`` history of ``fit``.
    """
    loader = make_loader(data, batch_size, shuffle=False)
    if loader.dataset.tensors[0].size(1) != model.nv:
        raise PreconditionError(
            f"Data has {loader.dataset.tensors[0].size(1)} columns, "
            f"the model has {model.nv} visible units."
        )

    n_samples = len(loader.dataset)
    fe_total = 0.0
    sq_err_total = 0.0
    flips_total = 0.0
    vbias_diff = torch.zeros(model.nv, dtype=model.W.dtype, device=model.W.device)

    for v in loader:
        v = v.to(model.W.device, dtype=model.W.dtype)

        fe_total += float(model.free_energy(v).sum())

        v_rec = model.reconstruct(v, k=recon_k)
        sq_err_total += float(((v - v_rec) ** 2).sum())
        flips_total += float((v != v_rec).sum())

        h = model.sample_hidden(v)
        vbias_diff += (v - model.visible_prob(h)).sum(dim=0)

    n_values = n_samples * model.nv
    vbias_diff /= n_samples

    return {
        "free_energy_mean": fe_total / n_samples / (model.nv + model.nh),
        "recon_mse_mean": sq_err_total / n_values,
        "recon_bit_error": flips_total / n_values,
        "cd_error": math.sqrt(float((vbias_diff ** 2).mean())),
    }


def train_rbm(cfg: Dict[str, Any], data, *, progress: bool = True) -> Tuple[RBM, BaseCDTrainer, Dict[str, List[float]]]:
    """Build an RBM and its trainer from ``cfg`` and fit it to ``data``."""
    model_cfg = RBMConfig.from_dict(cfg)
    train_cfg = TrainConfig.from_dict(cfg.get("train", {}))

    model = RBM(model_cfg)
    trainer = build_trainer(model, train_cfg)
    logger.info("Training %r with %r", model, trainer)

    history = fit(
        model,
        trainer,
        data,
        epochs=train_cfg.epochs,
        shuffle=train_cfg.shuffle,
        seed=train_cfg.seed,
        log_every=train_cfg.log_every,
        progress=progress,
    )
    return model, trainer, history


# --------------------------------------------------
# Persistence
# --------------------------------------------------


def save_model(model: RBM, path: PathLike) -> None:
    checkpoint = {
        "model_state_dict": model.state_dict(),
        "nv": model.nv,
        "nh": model.nh,
        "config": model.config.to_dict(),
    }
    torch.save(checkpoint, path)
    logger.info("Model saved to %s", path)


def load_model(path: PathLike) -> Tuple[RBM, Dict[str, Any]]:
    checkpoint = torch.load(path, map_location="cpu")
    config = checkpoint["config"]
    model = RBM(RBMConfig.from_dict(config))
    model.load_state_dict(checkpoint["model_state_dict"])
    return model, config


def save_history(history: Dict[str, List[float]], path: PathLike) -> None:
    clean = {
        key: [None if isinstance(x, float) and math.isnan(x) else x for x in values]
        for key, values in history.items()
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(clean, f, indent=2)


def plot_history(history: Dict[str, List[float]], path: PathLike) -> Optional[Path]:
    """Write recon-error / free-energy curves to ``path``; None if matplotlib is missing."""
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as e:
        logger.warning("plot_history: matplotlib import failed: %s", e)
        return None

    epochs = history.get("epoch", [])
    fig, axes = plt.subplots(1, 2, figsize=(11, 4))

    axes[0].plot(epochs, history.get("recon_error", []))
    axes[0].set_title("Reconstruction error")
    axes[0].set_xlabel("epoch")
    axes[0].set_ylabel("rms visible bias gradient")

    axes[1].plot(epochs, history.get("free_energy", []))
    axes[1].set_title("Free Energy")
    axes[1].set_xlabel("epoch")
    axes[1].set_ylabel("mean FE per unit")

    fig.tight_layout()
    path = Path(path)
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return path
