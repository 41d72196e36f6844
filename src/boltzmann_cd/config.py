"""Model and training configuration.

Configs are plain dicts in project files (``config.py`` exposing a
``config`` dict), turned into frozen dataclasses before use:

    config = {
        "model": {"n_visible": 784, "n_hidden": 500, "batch_size": 64,
                  "momentum_enabled": True, "decay": "l2"},
        "train": {"k": 1, "persistent": True, "epochs": 10},
    }
"""

from __future__ import annotations

import enum
import importlib.util
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from boltzmann_cd.errors import ConfigurationError


class DecayType(enum.Enum):
    """Weight decay policy.

    Plain L1/L2 decay the weights only; the ``_FULL`` variants decay the
    biases as well.
    """

    NONE = "none"
    L1 = "l1"
    L2 = "l2"
    L1_FULL = "l1_full"
    L2_FULL = "l2_full"

    @classmethod
    def parse(cls, value: Union[str, "DecayType", None]) -> "DecayType":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            known = [d.value for d in cls]
            raise ConfigurationError(f"Unknown decay type {value!r}. Known: {known}") from None

    @property
    def decays_weights(self) -> bool:
        return self is not DecayType.NONE

    @property
    def decays_biases(self) -> bool:
        return self in (DecayType.L1_FULL, DecayType.L2_FULL)

    @property
    def is_l1(self) -> bool:
        return self in (DecayType.L1, DecayType.L1_FULL)


def _from_mapping(cls, cfg: Dict[str, Any], section: str):
    cfg = dict(cfg.get(section, cfg))
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {section} config keys: {unknown}")
    return cls(**cfg)


@dataclass(frozen=True)
class RBMConfig:
    """Shape, hyperparameters and capability flags of an RBM.

    The flags (``momentum_enabled``, ``sparsity_enabled``, ``decay``) and
    the sizes are fixed for the lifetime of a model; they decide which
    accumulators a trainer allocates and which update path it takes.
    The scalar hyperparameters are only initial values, the model keeps
    its own mutable copy.
    """

    n_visible: int
    n_hidden: int
    batch_size: int = 1
    learning_rate: float = 0.1
    momentum: float = 0.5
    decay_rate: float = 0.99
    sparsity_target: float = 0.01
    sparsity_cost: float = 1.0
    weight_cost: float = 0.0002
    momentum_enabled: bool = False
    sparsity_enabled: bool = False
    decay: DecayType = DecayType.NONE
    init_std: float = 0.01
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        # allow "l2" etc. straight from a config dict
        object.__setattr__(self, "decay", DecayType.parse(self.decay))

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if self.n_visible <= 0 or self.n_hidden <= 0:
            raise ConfigurationError(
                f"Unit counts must be positive, got n_visible={self.n_visible}, "
                f"n_hidden={self.n_hidden}."
            )
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.learning_rate <= 0.0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0.0 <= self.momentum < 1.0:
            raise ConfigurationError(f"momentum must be in [0, 1), got {self.momentum}")
        if not 0.0 <= self.decay_rate < 1.0:
            raise ConfigurationError(f"decay_rate must be in [0, 1), got {self.decay_rate}")
        if not 0.0 < self.sparsity_target < 1.0:
            raise ConfigurationError(
                f"sparsity_target must be in (0, 1), got {self.sparsity_target}"
            )
        if self.sparsity_cost < 0.0 or self.weight_cost < 0.0:
            raise ConfigurationError("sparsity_cost and weight_cost must be non-negative")
        if self.init_std < 0.0:
            raise ConfigurationError(f"init_std must be non-negative, got {self.init_std}")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "RBMConfig":
        """Accept either a full app config with a "model" key, or a model-only dict."""
        config = _from_mapping(cls, cfg, "model")
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["decay"] = self.decay.value
        return out


@dataclass(frozen=True)
class TrainConfig:
    """How an RBM is trained: CD-k or PCD-k, and the epoch loop around it."""

    k: int = 1
    persistent: bool = False
    epochs: int = 10
    shuffle: bool = True
    seed: int = 42
    log_every: int = 1

    def validate(self) -> None:
        if self.k < 1:
            raise ConfigurationError(f"CD-{self.k} is not a valid training method, k must be >= 1")
        if self.epochs < 1:
            raise ConfigurationError(f"epochs must be >= 1, got {self.epochs}")
        if self.log_every < 1:
            raise ConfigurationError(f"log_every must be >= 1, got {self.log_every}")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "TrainConfig":
        config = _from_mapping(cls, cfg, "train")
        config.validate()
        return config


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load the ``config`` dict from a Python config file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    spec = importlib.util.spec_from_file_location(f"_boltzmann_cd_config_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load config from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    config = getattr(module, "config", None)
    if not isinstance(config, dict):
        raise ConfigurationError(f"{path} must define a module-level dict named 'config'")
    return config
