"""
Gradient storage and the weight update rule shared by the CD trainers.

Per-trainer state:

    GradientAccumulator   mean gradients of the current batch
    MomentumAccumulator   exponentially blended gradients (momentum only)
    SparsityState         running mean hidden activation (sparsity only)

``WeightUpdateRule.apply`` turns the accumulated gradients into an in-place
update of ``W``, ``bv`` and ``bh``:

    1. momentum blending        inc <- m * inc + (1 - m) * grad
    2. sparsity penalty         q_t = rate * q_old + (1 - rate) * q_batch
                                h_penalty = cost * (q_t - target)
    3. effective gradient       inc if momentum is enabled, else grad
    4-6. decayed update of W, bh and bv (see ``DecayType``)
    7. NaN / Inf check on the parameters
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import torch

from boltzmann_cd.config import DecayType, RBMConfig
from boltzmann_cd.errors import ConfigurationError, NumericDivergenceError

logger = logging.getLogger(__name__)

Gradients = Tuple[torch.Tensor, torch.Tensor, torch.Tensor]


def check_finite(**tensors: torch.Tensor) -> None:
    """Raise NumericDivergenceError naming the first tensor with a NaN or Inf."""
    for name, t in tensors.items():
        if not bool(torch.isfinite(t).all()):
            n_bad = int((~torch.isfinite(t)).sum())
            raise NumericDivergenceError(
                f"{name} has {n_bad} non-finite value(s); "
                "check the learning rate and decay settings"
            )


class GradientAccumulator:
    """Weight and bias gradients summed over one batch, then averaged."""

    def __init__(
        self,
        n_visible: int,
        n_hidden: int,
        *,
        dtype: torch.dtype = torch.float32,
        device: Optional[torch.device] = None,
    ) -> None:
        self.w_grad = torch.zeros(n_visible, n_hidden, dtype=dtype, device=device)
        self.vbias_grad = torch.zeros(n_visible, dtype=dtype, device=device)
        self.hbias_grad = torch.zeros(n_hidden, dtype=dtype, device=device)

    def zero_(self) -> None:
        self.w_grad.zero_()
        self.vbias_grad.zero_()
        self.hbias_grad.zero_()

    def mean_(self, n_samples: int) -> None:
        self.w_grad.div_(n_samples)
        self.vbias_grad.div_(n_samples)
        self.hbias_grad.div_(n_samples)

    def check_finite(self) -> None:
        check_finite(w_grad=self.w_grad, vbias_grad=self.vbias_grad, hbias_grad=self.hbias_grad)

    def as_tuple(self) -> Gradients:
        return self.w_grad, self.vbias_grad, self.hbias_grad


class MomentumAccumulator:
    """Blended gradients carried across batches."""

    def __init__(
        self,
        n_visible: int,
        n_hidden: int,
        *,
        dtype: torch.dtype = torch.float32,
        device: Optional[torch.device] = None,
    ) -> None:
        self.w_inc = torch.zeros(n_visible, n_hidden, dtype=dtype, device=device)
        self.a_inc = torch.zeros(n_visible, dtype=dtype, device=device)
        self.b_inc = torch.zeros(n_hidden, dtype=dtype, device=device)

    def blend_(self, grads: GradientAccumulator, momentum: float) -> None:
        self.w_inc.mul_(momentum).add_(grads.w_grad, alpha=1.0 - momentum)
        self.a_inc.mul_(momentum).add_(grads.vbias_grad, alpha=1.0 - momentum)
        self.b_inc.mul_(momentum).add_(grads.hbias_grad, alpha=1.0 - momentum)

    def as_tuple(self) -> Gradients:
        return self.w_inc, self.a_inc, self.b_inc


class SparsityState:
    """Running estimate of the mean hidden activation probability."""

    def __init__(self) -> None:
        self.q_prev = 0.0
        self.q_batch = 0.0
        self.q_now = 0.0

    def penalty(self, decay_rate: float, target: float, cost: float) -> float:
        self.q_now = decay_rate * self.q_prev + (1.0 - decay_rate) * self.q_batch
        return cost * (self.q_now - target)

    def commit(self) -> None:
        self.q_prev = self.q_now

    def __repr__(self) -> str:
        return (
            f"SparsityState(q_prev={self.q_prev:.6g}, q_batch={self.q_batch:.6g}, "
            f"q_now={self.q_now:.6g})"
        )


# --------------------------------------------------
# Effective gradient selection
# --------------------------------------------------


class RawGradients:
    """Use the batch gradients as they are."""

    uses_momentum = False

    def __call__(
        self, grads: GradientAccumulator, momentum: Optional[MomentumAccumulator], m: float
    ) -> Gradients:
        return grads.as_tuple()


class MomentumGradients:
    """Blend the batch gradients into the momentum accumulator and use that."""

    uses_momentum = True

    def __call__(
        self, grads: GradientAccumulator, momentum: Optional[MomentumAccumulator], m: float
    ) -> Gradients:
        momentum.blend_(grads, m)
        return momentum.as_tuple()


# --------------------------------------------------
# Update rule
# --------------------------------------------------


def _decayed(
    param: torch.Tensor, grad: torch.Tensor, decay: DecayType, lr: float, cost: float, penalty: float
) -> None:
    """param += lr * (grad - cost * decay(param) - penalty)"""
    decay_term = param.abs() if decay.is_l1 else param
    step = grad - cost * decay_term
    if penalty:
        step = step - penalty
    param.add_(step, alpha=lr)


def _plain(param: torch.Tensor, grad: torch.Tensor, lr: float, penalty: float) -> None:
    """param += lr * grad - penalty"""
    param.add_(grad, alpha=lr)
    if penalty:
        param.sub_(penalty)


class WeightUpdateRule:
    """Apply momentum, sparsity penalty and weight decay to an RBM.

    Which gradient feeds the update (raw or momentum-blended) is decided
    once here, from ``config.momentum_enabled``.
    """

    def __init__(self, config: RBMConfig) -> None:
        self.config = config
        self.decay = config.decay
        self.sparsity_enabled = config.sparsity_enabled
        self._select = MomentumGradients() if config.momentum_enabled else RawGradients()

    @property
    def uses_momentum(self) -> bool:
        return self._select.uses_momentum

    @torch.no_grad()
    def apply(
        self,
        model,
        grads: GradientAccumulator,
        momentum: Optional[MomentumAccumulator] = None,
        sparsity: Optional[SparsityState] = None,
    ) -> float:
        """Update ``model.W``, ``model.bv`` and ``model.bh`` in place.

        Returns the sparsity penalty that was applied (0.0 when disabled).

        Raises:
            ConfigurationError: the momentum / sparsity state does not match
                the configuration this rule was built for.
            NumericDivergenceError: a parameter is NaN or Inf after the update.
        """
        if (momentum is not None) != self.uses_momentum:
            raise ConfigurationError(
                f"momentum state {'given' if momentum is not None else 'missing'} "
                f"but momentum_enabled={self.uses_momentum}"
            )
        if (sparsity is not None) != self.sparsity_enabled:
            raise ConfigurationError(
                f"sparsity state {'given' if sparsity is not None else 'missing'} "
                f"but sparsity_enabled={self.sparsity_enabled}"
            )

        lr = model.learning_rate
        cost = model.weight_cost

        w_fgrad, a_fgrad, b_fgrad = self._select(grads, momentum, model.momentum)

        # Penalty applied to weights and hidden biases
        h_penalty = 0.0
        if sparsity is not None:
            h_penalty = sparsity.penalty(model.decay_rate, model.sparsity_target, model.sparsity_cost)

        # Weights
        if self.decay.decays_weights:
            _decayed(model.W, w_fgrad, self.decay, lr, cost, h_penalty)
        else:
            _plain(model.W, w_fgrad, lr, h_penalty)

        # Hidden biases: decayed only on demand, the sparsity penalty always applies
        if self.decay.decays_biases:
            _decayed(model.bh, b_fgrad, self.decay, lr, cost, h_penalty)
        else:
            _plain(model.bh, b_fgrad, lr, h_penalty)

        # Visible biases: never penalized for sparsity
        if self.decay.decays_biases:
            _decayed(model.bv, a_fgrad, self.decay, lr, cost, 0.0)
        else:
            _plain(model.bv, a_fgrad, lr, 0.0)

        check_finite(W=model.W, bv=model.bv, bh=model.bh)

        if sparsity is not None:
            sparsity.commit()
            logger.debug("sparsity %r penalty=%.6g", sparsity, h_penalty)

        return h_penalty
