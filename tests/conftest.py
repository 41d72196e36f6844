import pytest
import torch

from boltzmann_cd.config import RBMConfig
from boltzmann_cd.model import RBM


class MeanFieldRBM(RBM):
    """RBM whose sampled states are its activation probabilities.

    Makes every Gibbs step deterministic given the parameters.
    """

    def activate_hidden(self, h_a, h_s, v_a, v_s):
        h_a.copy_(self.hidden_prob(v_a))
        h_s.copy_(h_a)

    def activate_visible(self, h_a, h_s, v_a, v_s):
        v_a.copy_(self.visible_prob(h_s))
        v_s.copy_(v_a)


class RecordingRBM(MeanFieldRBM):
    """Mean-field RBM that remembers the hidden seed of every reconstruction."""

    def __init__(self, config):
        super().__init__(config)
        self.visible_seeds = []

    def activate_visible(self, h_a, h_s, v_a, v_s):
        self.visible_seeds.append(h_a.clone())
        super().activate_visible(h_a, h_s, v_a, v_s)


def _config(**overrides):
    params = dict(n_visible=6, n_hidden=4, batch_size=8, learning_rate=0.1, seed=0)
    params.update(overrides)
    return RBMConfig(**params)


@pytest.fixture
def make_config():
    return _config


@pytest.fixture
def make_rbm():
    def factory(cls=RBM, **overrides):
        return cls(_config(**overrides))

    return factory


@pytest.fixture
def mean_field_cls():
    return MeanFieldRBM


@pytest.fixture
def recording_cls():
    return RecordingRBM


@pytest.fixture
def binary_data():
    g = torch.Generator().manual_seed(1234)
    return torch.bernoulli(torch.full((20, 6), 0.4), generator=g)
