"""
Contrastive Divergence trainers.

    CDTrainer            CD-k: the negative chain restarts from the data
                         of every sample, every batch.
    PersistentCDTrainer  PCD-k: the negative chain of batch slot i is
                         carried over from the previous call.

Both accumulate the same statistics per sample

    dW  += h1_a (x) v1 - h2_a (x) v2_a
    dbv += v1 - v2_a
    dbh += h1_a - h2_a

average them over the batch and hand them to ``WeightUpdateRule``.
``train_batch`` returns sqrt(mean(dbv ** 2)), a cheap proxy for the
reconstruction error.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Union

import torch

from boltzmann_cd.errors import ConfigurationError, PreconditionError
from boltzmann_cd.gradients import (
    GradientAccumulator,
    MomentumAccumulator,
    SparsityState,
    WeightUpdateRule,
)
from boltzmann_cd.model import CDModel

logger = logging.getLogger(__name__)

Batch = Union[torch.Tensor, Sequence[torch.Tensor]]


class BaseCDTrainer:
    """Per-batch flow shared by CD-k and PCD-k.

    Args:
        model: Model whose shape and capability flags size the trainer state.
        k: Number of Gibbs steps in the negative phase, at least 1.
    """

    name = "CD"

    def __init__(self, model: CDModel, k: int = 1) -> None:
        if int(k) < 1:
            raise ConfigurationError(f"{self.name}-{k} is not a valid training method")
        self.k = int(k)

        config = model.config
        self.config = config
        self.n_visible = model.nv
        self.n_hidden = model.nh
        self.batch_capacity = config.batch_size

        dtype = model.W.dtype
        device = model.W.device

        self.grads = GradientAccumulator(self.n_visible, self.n_hidden, dtype=dtype, device=device)
        self.momentum: Optional[MomentumAccumulator] = None
        if config.momentum_enabled:
            self.momentum = MomentumAccumulator(
                self.n_visible, self.n_hidden, dtype=dtype, device=device
            )
        self.sparsity: Optional[SparsityState] = SparsityState() if config.sparsity_enabled else None

        self.update_rule = WeightUpdateRule(config)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(k={self.k}, nv={self.n_visible}, nh={self.n_hidden})"

    # --------------------------------------------------
    # Preconditions
    # --------------------------------------------------

    def _check_batch(self, batch: Batch, model: CDModel) -> int:
        if (model.nv, model.nh) != (self.n_visible, self.n_hidden):
            raise PreconditionError(
                f"Trainer was built for a {self.n_visible}x{self.n_hidden} model, "
                f"got {model.nv}x{model.nh}."
            )

        n_samples = len(batch)
        if n_samples == 0:
            raise PreconditionError("Cannot train on an empty batch.")
        if n_samples > self.batch_capacity:
            raise PreconditionError(
                f"Batch of {n_samples} samples exceeds the configured batch_size "
                f"{self.batch_capacity}."
            )

        if isinstance(batch, torch.Tensor):
            if batch.dim() != 2 or batch.size(1) != self.n_visible:
                raise PreconditionError(
                    f"The size of the training samples must match the {self.n_visible} "
                    f"visible units, got batch of shape {tuple(batch.shape)}."
                )
            return n_samples

        for i, sample in enumerate(batch):
            size = sample.numel() if isinstance(sample, torch.Tensor) else len(sample)
            if size != self.n_visible:
                raise PreconditionError(
                    f"Sample {i} has {size} values, the model has {self.n_visible} visible units."
                )
        return n_samples

    # --------------------------------------------------
    # Gibbs chain
    # --------------------------------------------------

    def _begin_batch(self, n_samples: int, model: CDModel) -> None:
        """Hook called once per batch before the sample loop."""

    def _negative_phase(self, slot: int, model: CDModel) -> None:
        """Fill v2_a/v2_s and h2_a/h2_s from the positive phase in h1_a/h1_s."""
        raise NotImplementedError

    def _gibbs_tail(self, model: CDModel) -> None:
        # CD-k: k - 1 more alternations after the first reconstruction
        for _ in range(1, self.k):
            model.activate_visible(model.h2_a, model.h2_s, model.v2_a, model.v2_s)
            model.activate_hidden(model.h2_a, model.h2_s, model.v2_a, model.v2_s)

    # --------------------------------------------------
    # Training
    # --------------------------------------------------

    @torch.no_grad()
    def train_batch(self, batch: Batch, model: CDModel) -> float:
        """Run one CD update on ``model`` and return the reconstruction error.

        Raises:
            PreconditionError: the batch is empty, larger than the configured
                batch_size, or a sample does not have ``nv`` values.
            NumericDivergenceError: a gradient or parameter became non-finite.
        """
        n_samples = self._check_batch(batch, model)

        grads = self.grads
        grads.zero_()

        # Reset mean activation probability if necessary
        if self.sparsity is not None:
            self.sparsity.q_batch = 0.0

        self._begin_batch(n_samples, model)

        for i in range(n_samples):
            sample = batch[i]
            if not isinstance(sample, torch.Tensor):
                sample = torch.as_tensor(sample)
            model.v1.copy_(sample.reshape(-1))

            # Positive phase
            model.activate_hidden(model.h1_a, model.h1_s, model.v1, model.v1)

            self._negative_phase(i, model)

            grads.w_grad.add_(torch.outer(model.v1, model.h1_a))
            grads.w_grad.sub_(torch.outer(model.v2_a, model.h2_a))
            grads.vbias_grad.add_(model.v1 - model.v2_a)
            grads.hbias_grad.add_(model.h1_a - model.h2_a)

            if self.sparsity is not None:
                self.sparsity.q_batch += float(model.h2_a.sum())

        # Keep only the mean of the gradients
        grads.mean_(n_samples)

        # Mean activation probability of the hidden units
        if self.sparsity is not None:
            self.sparsity.q_batch /= n_samples * self.n_hidden

        grads.check_finite()

        self.update_rule.apply(model, grads, self.momentum, self.sparsity)

        error = math.sqrt(float((grads.vbias_grad ** 2).mean()))
        logger.debug("%s-%d batch of %d: recon error %.6f", self.name, self.k, n_samples, error)
        return error


class CDTrainer(BaseCDTrainer):
    """CD-k: the negative chain starts from the positive hidden sample."""

    name = "CD"

    def _negative_phase(self, slot: int, model: CDModel) -> None:
        model.activate_visible(model.h1_a, model.h1_s, model.v2_a, model.v2_s)
        model.activate_hidden(model.h2_a, model.h2_s, model.v2_a, model.v2_s)
        self._gibbs_tail(model)


class PersistentCDTrainer(BaseCDTrainer):
    """PCD-k: the negative chain of each batch slot survives across calls.

    Slot ``i`` is tied to the position of a sample within the batch, not to
    its identity, so batches must be fed in a consistent order. Chain state
    is sized to the model's ``batch_size`` on the first call, and a slot is
    seeded from its positive phase the first time it is used.
    """

    name = "PCD"

    def __init__(self, model: CDModel, k: int = 1) -> None:
        super().__init__(model, k)
        self.chain_a: Optional[torch.Tensor] = None
        self.chain_s: Optional[torch.Tensor] = None
        self._seeded: Optional[torch.Tensor] = None

    def reset_chains(self) -> None:
        """Drop the persistent chains; the next call reseeds them from data."""
        self.chain_a = None
        self.chain_s = None
        self._seeded = None

    def _begin_batch(self, n_samples: int, model: CDModel) -> None:
        if self.chain_a is None:
            shape = (self.batch_capacity, self.n_hidden)
            self.chain_a = torch.zeros(shape, dtype=model.W.dtype, device=model.W.device)
            self.chain_s = torch.zeros_like(self.chain_a)
            self._seeded = torch.zeros(self.batch_capacity, dtype=torch.bool)
            logger.debug("allocated %d persistent chains", self.batch_capacity)

    def _negative_phase(self, slot: int, model: CDModel) -> None:
        chain_a = self.chain_a[slot]
        chain_s = self.chain_s[slot]

        if not self._seeded[slot]:
            chain_a.copy_(model.h1_a)
            chain_s.copy_(model.h1_s)
            self._seeded[slot] = True

        # The persisted activation seeds the reconstruction
        model.activate_visible(chain_a, chain_a, model.v2_a, model.v2_s)
        model.activate_hidden(model.h2_a, model.h2_s, model.v2_a, model.v2_s)
        self._gibbs_tail(model)

        chain_a.copy_(model.h2_a)
        chain_s.copy_(model.h2_s)
