"""Tests for the configuration layer."""

import pytest

from boltzmann_cd.config import DecayType, RBMConfig, TrainConfig, load_config
from boltzmann_cd.errors import ConfigurationError


class TestDecayType:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("none", DecayType.NONE),
            (None, DecayType.NONE),
            ("L1", DecayType.L1),
            ("l2", DecayType.L2),
            ("L1_FULL", DecayType.L1_FULL),
            ("l2_full", DecayType.L2_FULL),
            (DecayType.L2, DecayType.L2),
        ],
    )
    def test_parse(self, name, expected):
        assert DecayType.parse(name) is expected

    def test_parse_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown decay"):
            DecayType.parse("l3")

    def test_targets(self):
        assert not DecayType.NONE.decays_weights
        assert not DecayType.NONE.decays_biases
        for d in (DecayType.L1, DecayType.L2):
            assert d.decays_weights and not d.decays_biases
        for d in (DecayType.L1_FULL, DecayType.L2_FULL):
            assert d.decays_weights and d.decays_biases
        assert DecayType.L1.is_l1 and DecayType.L1_FULL.is_l1
        assert not DecayType.L2.is_l1


class TestRBMConfig:
    def test_defaults_validate(self):
        cfg = RBMConfig(n_visible=10, n_hidden=5)
        cfg.validate()
        assert cfg.decay is DecayType.NONE
        assert not cfg.momentum_enabled
        assert not cfg.sparsity_enabled

    def test_decay_string_is_parsed(self):
        cfg = RBMConfig(n_visible=3, n_hidden=2, decay="l2_full")
        assert cfg.decay is DecayType.L2_FULL

    def test_from_full_app_config(self):
        cfg = RBMConfig.from_dict(
            {
                "model": {"n_visible": 4, "n_hidden": 3, "batch_size": 16, "momentum_enabled": True},
                "train": {"k": 2},
            }
        )
        assert (cfg.n_visible, cfg.n_hidden, cfg.batch_size) == (4, 3, 16)
        assert cfg.momentum_enabled

    def test_from_model_only_dict(self):
        cfg = RBMConfig.from_dict({"n_visible": 4, "n_hidden": 3, "decay": "L1"})
        assert cfg.decay is DecayType.L1

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="n_hiden"):
            RBMConfig.from_dict({"n_visible": 4, "n_hiden": 3})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"n_visible": 0},
            {"n_hidden": -1},
            {"batch_size": 0},
            {"learning_rate": 0.0},
            {"momentum": 1.0},
            {"decay_rate": -0.1},
            {"sparsity_target": 0.0},
            {"weight_cost": -1.0},
        ],
    )
    def test_invalid_values(self, overrides):
        params = dict(n_visible=4, n_hidden=3)
        params.update(overrides)
        with pytest.raises(ConfigurationError):
            RBMConfig(**params).validate()

    def test_frozen(self):
        cfg = RBMConfig(n_visible=4, n_hidden=3)
        with pytest.raises(AttributeError):
            cfg.n_visible = 5

    def test_to_dict_round_trip(self):
        cfg = RBMConfig(n_visible=4, n_hidden=3, decay="l1_full", seed=7)
        assert RBMConfig.from_dict(cfg.to_dict()) == cfg


class TestTrainConfig:
    def test_cd_zero_rejected(self):
        with pytest.raises(ConfigurationError, match="CD-0"):
            TrainConfig.from_dict({"k": 0})

    def test_from_full_config(self):
        cfg = TrainConfig.from_dict({"train": {"k": 3, "persistent": True, "epochs": 2}})
        assert cfg.k == 3 and cfg.persistent and cfg.epochs == 2


class TestLoadConfig:
    def test_load(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text(
            'config = {"model": {"n_visible": 2, "n_hidden": 2}, "train": {"k": 1}}\n',
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg["model"]["n_visible"] == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.py")

    def test_missing_config_dict(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text("settings = {}\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="config"):
            load_config(path)
