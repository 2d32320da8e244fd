from __future__ import annotations

import numpy as np
import pytest
import scipy.stats

from bayesian_primer import model as model_module


def test_log_posterior_is_prior_plus_likelihood(normal_model, observations) -> None:
    mu = np.array([2.0])
    expected_prior = scipy.stats.norm.logpdf(2.0, loc=0.0, scale=10.0)
    expected_likelihood = scipy.stats.norm.logpdf(observations, loc=2.0, scale=1.0).sum()

    assert normal_model.log_prior(mu) == pytest.approx(expected_prior)
    assert normal_model.log_likelihood(mu, observations) == pytest.approx(expected_likelihood)
    assert normal_model.log_posterior(mu, observations) == pytest.approx(expected_prior + expected_likelihood)


def test_batched_evaluation_matches_single_points(normal_model, observations) -> None:
    parameters = np.array([[-1.0], [0.5], [2.4], [7.0]])
    batched = normal_model.log_posterior(parameters, observations)

    assert batched.shape == (4,)
    for i, p in enumerate(parameters):
        assert batched[i] == pytest.approx(normal_model.log_posterior(p, observations))


def test_log_posterior_peaks_at_analytic_posterior_mean(normal_model, observations) -> None:
    mean, sd = normal_model.analytic_posterior(observations)
    grid = np.linspace(mean - 3 * sd, mean + 3 * sd, 601)[:, np.newaxis]
    log_posterior = normal_model.log_posterior(grid, observations)

    assert grid[np.argmax(log_posterior), 0] == pytest.approx(mean, abs=6 * sd / 600)


def test_analytic_posterior() -> None:
    model = model_module.NormalMeanModel(prior_mean=1.0, prior_sd=2.0, likelihood_sd=0.5)
    y = np.array([2.0, 3.0, 4.0])
    mean, sd = model.analytic_posterior(y)

    prior_precision = 1 / 4
    data_precision = 3 / 0.25
    assert sd == pytest.approx(np.sqrt(1 / (prior_precision + data_precision)))
    assert mean == pytest.approx((1.0 * prior_precision + 9.0 / 0.25) / (prior_precision + data_precision))


def test_wide_prior_posterior_approaches_sample_mean(observations) -> None:
    model = model_module.NormalMeanModel(prior_mean=0.0, prior_sd=1e6, likelihood_sd=1.0)
    mean, sd = model.analytic_posterior(observations)

    assert mean == pytest.approx(observations.mean(), rel=1e-6)
    assert sd == pytest.approx(1 / np.sqrt(observations.size), rel=1e-6)


def test_sample_prior_and_simulate_shapes(normal_model) -> None:
    rng = np.random.default_rng(1)
    parameters = normal_model.sample_prior(5, rng)
    datasets = normal_model.simulate(parameters, 7, rng)

    assert parameters.shape == (5, 1)
    assert datasets.shape == (5, 7)


def test_simulate_is_centered_on_parameter(normal_model) -> None:
    rng = np.random.default_rng(2)
    datasets = normal_model.simulate(np.array([[3.0]]), 20000, rng)

    assert datasets.mean() == pytest.approx(3.0, abs=0.05)
    assert datasets.std() == pytest.approx(1.0, abs=0.05)


@pytest.mark.parametrize("field", ["prior_sd", "likelihood_sd"])
@pytest.mark.parametrize("value", [0.0, -1.0, np.inf, np.nan])
def test_invalid_standard_deviations(field, value) -> None:
    settings = {"prior_mean": 0.0, "prior_sd": 1.0, "likelihood_sd": 1.0}
    settings[field] = value
    with pytest.raises(ValueError, match=field):
        model_module.NormalMeanModel(**settings)


def test_from_config_missing_setting() -> None:
    with pytest.raises(KeyError, match="likelihood_sd"):
        model_module.NormalMeanModel.from_config({"prior_mean": 0.0, "prior_sd": 1.0})


@pytest.mark.parametrize("observations", [[], [1.0, np.nan], [np.inf]])
def test_invalid_observations(observations) -> None:
    with pytest.raises(ValueError, match="bservation"):
        model_module.validate_observations(observations)
