from __future__ import annotations

import numpy as np
import pytest

from bayesian_primer import data_IO, mc_sampling, posterior_predictive
from bayesian_primer import model as model_module


def _posterior_samples(normal_model, observations, n_samples: int = 4000, seed: int = 0) -> np.ndarray:
    """Exact posterior draws, shaped like a chain."""
    mean, sd = normal_model.analytic_posterior(observations)
    return np.random.default_rng(seed).normal(mean, sd, size=(n_samples // 4, 4, 1))


def test_simulate_replicates_shapes(normal_model, observations) -> None:
    samples = _posterior_samples(normal_model, observations)
    parameters, y_rep = posterior_predictive.simulate_replicates(
        normal_model, samples, n_observations=12, n_replicates=300, rng=np.random.default_rng(1)
    )

    assert parameters.shape == (300, 1)
    assert y_rep.shape == (300, 12)
    # Without replacement, each posterior sample is used at most once
    assert np.unique(parameters[:, 0]).size == 300


def test_simulate_replicates_with_replacement(normal_model) -> None:
    samples = np.array([[1.0], [2.0]])
    parameters, y_rep = posterior_predictive.simulate_replicates(
        normal_model, samples, n_observations=3, n_replicates=50, rng=np.random.default_rng(2)
    )

    assert y_rep.shape == (50, 3)
    assert set(parameters[:, 0]) <= {1.0, 2.0}


def test_simulate_replicates_invalid(normal_model) -> None:
    with pytest.raises(ValueError, match="replicate"):
        posterior_predictive.simulate_replicates(
            normal_model, np.ones((10, 1)), n_observations=3, n_replicates=0, rng=np.random.default_rng(0)
        )


def test_well_specified_model_has_moderate_p_values(normal_model, observations) -> None:
    samples = _posterior_samples(normal_model, observations)
    output = posterior_predictive.posterior_predictive_check(
        normal_model,
        samples,
        observations,
        statistics=["mean", "median"],
        n_replicates=2000,
        rng=np.random.default_rng(3),
    )

    assert output["y_rep"].shape == (2000, observations.size)
    for name in ["mean", "median"]:
        result = output["statistics"][name]
        assert result["replicated"].shape == (2000,)
        assert 0.2 < result["p_value"] < 0.8
    assert output["statistics"]["mean"]["observed"] == pytest.approx(observations.mean())


def test_misspecified_spread_has_extreme_p_value(normal_model) -> None:
    # The model assumes a measurement sd of 1, but the data scatter much more
    observations = np.random.default_rng(4).normal(0.0, 5.0, size=40)
    samples = _posterior_samples(normal_model, observations)
    output = posterior_predictive.posterior_predictive_check(
        normal_model, samples, observations, statistics=["sd", "min", "max"], n_replicates=1000, rng=np.random.default_rng(5)
    )

    assert output["statistics"]["sd"]["p_value"] < 0.01
    assert output["statistics"]["max"]["p_value"] < 0.01
    assert output["statistics"]["min"]["p_value"] > 0.99


def test_unknown_statistic(normal_model, observations) -> None:
    with pytest.raises(ValueError, match="Unknown test statistic 'kurtosis'"):
        posterior_predictive.posterior_predictive_check(
            normal_model,
            np.ones((10, 1)),
            observations,
            statistics=["mean", "kurtosis"],
            n_replicates=10,
            rng=np.random.default_rng(0),
        )


def test_sd_statistic_of_single_observation() -> None:
    sd = posterior_predictive.get_test_statistic("sd")
    assert sd(np.array([3.0])) == 0.0
    assert sd(np.array([[1.0, 3.0], [2.0, 2.0]])).tolist() == pytest.approx([np.sqrt(2.0), 0.0])


def test_prior_predictive_spread() -> None:
    model = model_module.NormalMeanModel(prior_mean=1.0, prior_sd=2.0, likelihood_sd=0.5)
    datasets = posterior_predictive.sample_prior_predictive(model, n_observations=5, n_draws=20000, rng=np.random.default_rng(6))

    assert datasets.shape == (20000, 5)
    assert datasets.mean() == pytest.approx(1.0, abs=0.05)
    # Marginal variance is prior variance plus measurement variance
    assert datasets[:, 0].std() == pytest.approx(np.sqrt(4.0 + 0.25), rel=0.03)


def test_run_posterior_predictive(analysis_config) -> None:
    config = mc_sampling.MCMCConfig.from_analysis_config(analysis_config)
    mc_sampling.run_mcmc(config)
    output = posterior_predictive.run_posterior_predictive(config)

    assert output["y_rep"].shape == (200, 12)
    assert sorted(output["statistics"]) == ["max", "mean", "min", "sd"]

    stored = data_IO.read_dict_from_h5(config.mcmc_output_dir, "posterior_predictive.h5")
    assert float(stored["statistics"]["mean"]["p_value"]) == pytest.approx(output["statistics"]["mean"]["p_value"])


def test_run_posterior_predictive_needs_mcmc_output(analysis_config) -> None:
    config = mc_sampling.MCMCConfig.from_analysis_config(analysis_config)
    with pytest.raises(FileNotFoundError):
        posterior_predictive.run_posterior_predictive(config)
