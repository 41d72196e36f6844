"""RBM training with Contrastive Divergence (CD-k) and Persistent CD (PCD-k)."""

from boltzmann_cd.config import DecayType, RBMConfig, TrainConfig, load_config
from boltzmann_cd.errors import (
    BoltzmannError,
    ConfigurationError,
    NumericDivergenceError,
    PreconditionError,
)
from boltzmann_cd.gradients import (
    GradientAccumulator,
    MomentumAccumulator,
    SparsityState,
    WeightUpdateRule,
)
from boltzmann_cd.model import RBM, CDModel
from boltzmann_cd.trainers import BaseCDTrainer, CDTrainer, PersistentCDTrainer

__version__ = "0.1.0"

__all__ = [
    "BaseCDTrainer",
    "BoltzmannError",
    "CDModel",
    "CDTrainer",
    "ConfigurationError",
    "DecayType",
    "GradientAccumulator",
    "MomentumAccumulator",
    "NumericDivergenceError",
    "PersistentCDTrainer",
    "PreconditionError",
    "RBM",
    "RBMConfig",
    "SparsityState",
    "TrainConfig",
    "WeightUpdateRule",
    "load_config",
]
