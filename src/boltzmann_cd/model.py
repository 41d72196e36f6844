"""
Binary-binary Restricted Boltzmann Machine in PyTorch.

The model owns the parameters, the Gibbs-sampling randomness and the
activation functions. Training is not done here: a trainer from
``boltzmann_cd.trainers`` drives ``activate_hidden`` / ``activate_visible``
through the scratch buffers below and updates the parameters in place.

Scratch buffers (one visible/hidden pair per phase):

    v1              positive-phase visible data
    h1_a, h1_s      positive-phase hidden activation / sampled state
    v2_a, v2_s      negative-phase visible activation / sampled state
    h2_a, h2_s      negative-phase hidden activation / sampled state

They are written exclusively by the trainer for the duration of one
``train_batch`` call; callers must not train the same model from two
threads.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Union

import torch
import torch.nn as nn

from boltzmann_cd.config import RBMConfig


class CDModel(Protocol):
    """What the contrastive divergence trainers need from a model."""

    config: RBMConfig
    nv: int
    nh: int

    W: torch.Tensor
    bv: torch.Tensor
    bh: torch.Tensor

    learning_rate: float
    momentum: float
    decay_rate: float
    sparsity_target: float
    sparsity_cost: float
    weight_cost: float

    v1: torch.Tensor
    h1_a: torch.Tensor
    h1_s: torch.Tensor
    v2_a: torch.Tensor
    v2_s: torch.Tensor
    h2_a: torch.Tensor
    h2_s: torch.Tensor

    def activate_hidden(
        self, h_a: torch.Tensor, h_s: torch.Tensor, v_a: torch.Tensor, v_s: torch.Tensor
    ) -> None: ...

    def activate_visible(
        self, h_a: torch.Tensor, h_s: torch.Tensor, v_a: torch.Tensor, v_s: torch.Tensor
    ) -> None: ...


class RBM(nn.Module):
    def __init__(self, config: Union[RBMConfig, Dict[str, Any]]) -> None:
        super().__init__()

        if not isinstance(config, RBMConfig):
            config = RBMConfig.from_dict(config)
        else:
            config.validate()
        self.config = config

        self.nv = config.n_visible
        self.nh = config.n_hidden

        # --------- parameters ----------
        self.W = nn.Parameter(torch.empty(self.nv, self.nh))
        self.bv = nn.Parameter(torch.zeros(self.nv))
        self.bh = nn.Parameter(torch.zeros(self.nh))

        self.generator = torch.Generator()
        if config.seed is not None:
            self.generator.manual_seed(config.seed)
        else:
            self.generator.seed()

        with torch.no_grad():
            self.W.normal_(0.0, config.init_std, generator=self.generator)

        # --------- hyperparameters (mutable between batches) ----------
        self.learning_rate = float(config.learning_rate)
        self.momentum = float(config.momentum)
        self.decay_rate = float(config.decay_rate)
        self.sparsity_target = float(config.sparsity_target)
        self.sparsity_cost = float(config.sparsity_cost)
        self.weight_cost = float(config.weight_cost)

        # --------- scratch buffers ----------
        # non-persistent: they are not part of the learned state
        for name, size in (
            ("v1", self.nv),
            ("h1_a", self.nh),
            ("h1_s", self.nh),
            ("v2_a", self.nv),
            ("v2_s", self.nv),
            ("h2_a", self.nh),
            ("h2_s", self.nh),
        ):
            self.register_buffer(name, torch.zeros(size), persistent=False)

    @property
    def batch_size(self) -> int:
        return self.config.batch_size

    # --------------------------------------------------
    # Core distributions
    # --------------------------------------------------

    def hidden_prob(self, v: torch.Tensor) -> torch.Tensor:
        """Compute P(h=1 | v)."""
        return torch.sigmoid(v @ self.W + self.bh)

    def visible_prob(self, h: torch.Tensor) -> torch.Tensor:
        """Compute P(v=1 | h)."""
        return torch.sigmoid(h @ self.W.T + self.bv)

    def _bernoulli(self, p: torch.Tensor) -> torch.Tensor:
        """Sample from Bernoulli distribution."""
        return torch.bernoulli(p, generator=self.generator)

    def sample_hidden(self, v: torch.Tensor) -> torch.Tensor:
        """Draw h ~ P(h | v)."""
        return self._bernoulli(self.hidden_prob(v))

    # --------------------------------------------------
    # Gibbs-sampling steps used by the trainers
    # --------------------------------------------------

    @torch.no_grad()
    def activate_hidden(
        self, h_a: torch.Tensor, h_s: torch.Tensor, v_a: torch.Tensor, v_s: torch.Tensor
    ) -> None:
        """Write P(h=1 | v) into ``h_a`` and a sample of it into ``h_s``.

        Binary visible units: the activation ``v_a`` drives the hidden units,
        ``v_s`` is accepted for interface symmetry.
        """
        h_a.copy_(self.hidden_prob(v_a))
        h_s.copy_(self._bernoulli(h_a))

    @torch.no_grad()
    def activate_visible(
        self, h_a: torch.Tensor, h_s: torch.Tensor, v_a: torch.Tensor, v_s: torch.Tensor
    ) -> None:
        """Write P(v=1 | h) into ``v_a`` and a sample of it into ``v_s``.

        The reconstruction is driven by the hidden state ``h_s``.
        """
        v_a.copy_(self.visible_prob(h_s))
        v_s.copy_(self._bernoulli(v_a))

    # --------------------------------------------------
    # Forward (semantic: inference, NOT training)
    # --------------------------------------------------

    def forward(self, v: torch.Tensor) -> torch.Tensor:
        """Return P(h=1 | v)."""
        return self.hidden_prob(v.to(self.W.dtype))

    # --------------------------------------------------
    # Utilities
    # --------------------------------------------------

    @torch.no_grad()
    def reconstruct(self, v: torch.Tensor, k: int = 1) -> torch.Tensor:
        v = v.to(self.W.dtype)
        for _ in range(k):
            v = self._bernoulli(self.visible_prob(self.sample_hidden(v)))
        return v

    def free_energy(self, v: torch.Tensor) -> torch.Tensor:
        v = v.to(self.W.dtype)
        wx_b = v @ self.W + self.bh
        return -v @ self.bv - torch.nn.functional.softplus(wx_b).sum(dim=-1)

    def extra_repr(self) -> str:
        cfg = self.config
        return (
            f"nv={self.nv}, nh={self.nh}, batch_size={cfg.batch_size}, "
            f"momentum={cfg.momentum_enabled}, sparsity={cfg.sparsity_enabled}, "
            f"decay={cfg.decay.value}"
        )
