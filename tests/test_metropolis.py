from __future__ import annotations

import numpy as np
import pytest
import scipy.stats

from bayesian_primer import log_posterior
from bayesian_primer.mc_sampling import metropolis


def _standard_normal_log_density(x: np.ndarray) -> float:
    return float(scipy.stats.norm.logpdf(x[0]))


def test_chain_has_one_value_per_step() -> None:
    rng = np.random.default_rng(10)
    chain = metropolis.metropolis_chain(_standard_normal_log_density, [0.0], 250, 1.0, rng)

    assert chain.samples.shape == (250, 1)
    assert chain.log_prob.shape == (250,)
    assert chain.n_steps == 250
    assert 0 < chain.n_accepted <= 250
    np.testing.assert_allclose(chain.log_prob, scipy.stats.norm.logpdf(chain.samples[:, 0]))


def test_rejected_steps_repeat_the_current_value() -> None:
    rng = np.random.default_rng(11)
    chain = metropolis.metropolis_chain(_standard_normal_log_density, [0.0], 2000, 3.0, rng)

    n_moves = np.count_nonzero(np.diff(chain.samples[:, 0]) != 0)
    first_moved = chain.samples[0, 0] != 0.0
    assert n_moves + int(first_moved) == chain.n_accepted
    assert chain.n_accepted < 2000


def test_flat_density_always_accepts() -> None:
    rng = np.random.default_rng(12)
    chain = metropolis.metropolis_chain(lambda x: 0.0, [0.0], 500, 1.0, rng)

    assert chain.n_accepted == 500
    assert chain.acceptance_fraction == 1.0
    assert np.all(np.diff(chain.samples[:, 0]) != 0)


def test_zero_density_candidates_are_rejected() -> None:
    # Uniform target on (0, 1): any candidate outside has zero density
    def log_density(x: np.ndarray) -> float:
        return 0.0 if 0 < x[0] < 1 else -np.inf

    rng = np.random.default_rng(13)
    chain = metropolis.metropolis_chain(log_density, [0.5], 3000, 2.0, rng)

    assert np.all((chain.samples > 0) & (chain.samples < 1))
    assert chain.n_accepted < 3000


def test_same_seed_gives_same_chain() -> None:
    first = metropolis.metropolis_chain(_standard_normal_log_density, [1.0], 300, 0.8, np.random.default_rng(5))
    second = metropolis.metropolis_chain(_standard_normal_log_density, [1.0], 300, 0.8, np.random.default_rng(5))

    np.testing.assert_array_equal(first.samples, second.samples)
    assert first.n_accepted == second.n_accepted


def test_samples_standard_normal() -> None:
    rng = np.random.default_rng(14)
    chain = metropolis.metropolis_chain(_standard_normal_log_density, [0.0], 40000, 2.4, rng)
    samples = chain.samples[1000:, 0]

    assert samples.mean() == pytest.approx(0.0, abs=0.1)
    assert samples.std() == pytest.approx(1.0, abs=0.07)


@pytest.mark.parametrize(("n_steps", "proposal_width"), [(0, 1.0), (-3, 1.0), (10, 0.0), (10, -0.5), (10, np.nan)])
def test_invalid_arguments(n_steps, proposal_width) -> None:
    with pytest.raises(ValueError):
        metropolis.metropolis_chain(
            _standard_normal_log_density, [0.0], n_steps, proposal_width, np.random.default_rng(0)
        )


def test_posterior_matches_analytic_result(normal_model, observations) -> None:
    log_posterior.initialize_pool_variables(normal_model, observations)
    rng = np.random.default_rng(15)
    chain = metropolis.metropolis_chain(log_posterior.log_posterior_point, [0.0], 30000, 0.6, rng)
    samples = chain.samples[2000:, 0]

    mean, sd = normal_model.analytic_posterior(observations)
    assert samples.mean() == pytest.approx(mean, abs=0.5 * sd)
    assert samples.std() == pytest.approx(sd, rel=0.15)
    assert 0.2 < chain.acceptance_fraction < 0.9
