import pytest

from adahmc import config
from adahmc.errors import ConfigurationError


def test_static_hmc_defaults():
    cfg = config.static_hmc(0.1, 10)
    assert cfg.variant == "static"
    assert cfg.step_size == 0.1
    assert cfg.n_step == 10
    assert cfg.metric_type == "unit"
    assert not cfg.is_adaptive
    assert cfg.resolve_n_adapt_iter(1000) == 0


def test_dual_averaging_hmc_defaults():
    cfg = config.dual_averaging_hmc(1.5)
    assert cfg.variant == "dual_averaging"
    assert cfg.integration_time == 1.5
    assert cfg.adapt_stat_target == 0.8
    assert cfg.is_adaptive


def test_nuts_defaults():
    cfg = config.nuts()
    assert cfg.variant == "nuts"
    assert cfg.max_tree_depth == 10
    assert cfg.max_delta_h == 1000
    assert cfg.metric_type == "diagonal"
    assert cfg.termination_criterion == "generalized"
    assert isinstance(cfg.adaptation, config.AdaptationConfig)


def test_config_immutable():
    cfg = config.nuts()
    with pytest.raises(AttributeError):
        cfg.max_tree_depth = 5


@pytest.mark.parametrize(
    "n_sample,expected", [(None, 1000), (100, 50), (3000, 1000)]
)
def test_default_n_adapt_iter(n_sample, expected):
    assert config.nuts().resolve_n_adapt_iter(n_sample) == expected


def test_explicit_n_adapt_iter():
    assert config.nuts(n_adapt_iter=200).resolve_n_adapt_iter(1000) == 200


def test_n_adapt_iter_not_less_than_n_sample_raises():
    cfg = config.nuts(n_adapt_iter=200)
    with pytest.raises(ConfigurationError):
        cfg.resolve_n_adapt_iter(200)


def test_n_adapt_iter_with_discarded_warm_up():
    cfg = config.nuts(n_adapt_iter=200, discard_warm_up=True)
    assert cfg.resolve_n_adapt_iter(100) == 200


@pytest.mark.parametrize(
    "factory,kwargs",
    [
        (config.SamplerAlgorithmConfig, {"variant": "slice"}),
        (config.static_hmc, {"step_size": 0.1, "n_step": 0}),
        (config.static_hmc, {"step_size": -0.1, "n_step": 10}),
        (config.static_hmc, {"step_size": 0.1, "n_step": 10, "n_adapt_iter": 10}),
        (config.dual_averaging_hmc, {"integration_time": 0.0}),
        (
            config.dual_averaging_hmc,
            {"integration_time": 1.0, "adapt_stat_target": 1.0},
        ),
        (config.nuts, {"n_adapt_iter": 0}),
        (config.nuts, {"n_adapt_iter": -5}),
        (config.nuts, {"max_tree_depth": 0}),
        (config.nuts, {"max_delta_h": -1.0}),
        (config.nuts, {"metric_type": "sparse"}),
        (config.nuts, {"termination_criterion": "rotation"}),
    ],
)
def test_invalid_config_raises(factory, kwargs):
    with pytest.raises(ConfigurationError):
        factory(**kwargs)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        config.nuts(adapt_stat_target=0.0)


def test_adaptation_config_defaults():
    adaptation = config.AdaptationConfig()
    assert adaptation.uses_default_windows
    assert adaptation.log_step_size_reg_coefficient == 0.05
    assert adaptation.iter_offset == 10
    assert adaptation.iter_decay_coeff == 0.75
    assert adaptation.stager_kwargs() == {
        "n_init_fast_stage_iter": 75,
        "n_final_fast_stage_iter": 50,
        "n_init_slow_window_iter": 25,
        "slow_window_multiplier": 2,
        "shrink_to_fit": True,
    }


def test_adaptation_config_explicit_windows():
    adaptation = config.AdaptationConfig(init_buffer=20, term_buffer=10, base_window=5)
    assert not adaptation.uses_default_windows
    kwargs = adaptation.stager_kwargs()
    assert kwargs["n_init_fast_stage_iter"] == 20
    assert kwargs["n_final_fast_stage_iter"] == 10
    assert kwargs["n_init_slow_window_iter"] == 5
    assert not kwargs["shrink_to_fit"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"init_buffer": -1},
        {"base_window": 0},
        {"window_multiplier": 0.5},
        {"log_step_size_reg_coefficient": 0.0},
        {"iter_decay_coeff": 0.5},
        {"iter_offset": -1},
    ],
)
def test_adaptation_config_invalid_raises(kwargs):
    with pytest.raises(ConfigurationError):
        config.AdaptationConfig(**kwargs)
