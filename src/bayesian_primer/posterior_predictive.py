"""Prior and posterior predictive checks.

The posterior predictive check asks whether data simulated from the fitted model look like the
observed data. For each posterior draw of the parameters, we simulate a replicated dataset y_rep
of the same size as the observations, and compare a test statistic T of the replicated datasets
to the observed T(y):

    p = P(T(y_rep) >= T(y) | y)

p-values close to 0 or 1 indicate that the model fails to reproduce that feature of the data.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import attrs
import numpy as np
import numpy.typing as npt

from bayesian_primer import analysis, data_IO, mc_sampling
from bayesian_primer import model as model_module

logger = logging.getLogger(__name__)

# Test statistics, each reducing the last axis (the observations in a dataset)
_test_statistics: dict[str, Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]] = {
    "mean": lambda y: np.mean(y, axis=-1),
    "sd": lambda y: np.std(y, axis=-1, ddof=1) if y.shape[-1] > 1 else np.zeros(y.shape[:-1]),
    "min": lambda y: np.min(y, axis=-1),
    "max": lambda y: np.max(y, axis=-1),
    "median": lambda y: np.median(y, axis=-1),
}


def available_test_statistics() -> list[str]:
    return list(_test_statistics)


def get_test_statistic(name: str) -> Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]:
    """Retrieve a test statistic by name."""
    try:
        return _test_statistics[name]
    except KeyError as e:
        msg = f"Unknown test statistic '{name}'. Available: {available_test_statistics()}"
        raise ValueError(msg) from e


def sample_prior_predictive(
    model: model_module.NormalMeanModel,
    n_observations: int,
    n_draws: int,
    rng: np.random.Generator,
) -> npt.NDArray[np.float64]:
    """Simulate datasets from the prior predictive distribution.

    Useful to check that the prior generates plausible data before looking at the observations.

    :return: simulated datasets with shape (n_draws, n_observations)
    """
    parameters = model.sample_prior(n_draws, rng)
    return model.simulate(parameters, n_observations, rng)


def simulate_replicates(
    model: model_module.NormalMeanModel,
    posterior_samples: npt.ArrayLike,
    n_observations: int,
    n_replicates: int,
    rng: np.random.Generator,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Simulate datasets from the posterior predictive distribution.

    Parameter values are drawn from the posterior samples without replacement if there are
    enough of them, and with replacement otherwise.

    Args:
        model: Model to simulate from.
        posterior_samples: Posterior samples, with the parameters along the last axis
            (e.g. (n_steps, n_chains, n_parameters) or (n_samples, n_parameters)).
        n_observations: Size of each replicated dataset.
        n_replicates: Number of replicated datasets.
        rng: Random number generator.
    Returns:
        (parameter values used, with shape (n_replicates, n_parameters),
         replicated datasets, with shape (n_replicates, n_observations))
    """
    if n_replicates < 1:
        msg = f"Need at least one replicate, but requested {n_replicates}"
        raise ValueError(msg)
    samples = np.asarray(posterior_samples, dtype=np.float64)
    flat = samples.reshape(-1, samples.shape[-1]) if samples.ndim > 1 else samples[:, np.newaxis]
    if flat.shape[0] == 0:
        msg = "No posterior samples available"
        raise ValueError(msg)

    indices = rng.choice(flat.shape[0], size=n_replicates, replace=n_replicates > flat.shape[0])
    parameters = flat[indices]
    return parameters, model.simulate(parameters, n_observations, rng)


def posterior_predictive_check(
    model: model_module.NormalMeanModel,
    posterior_samples: npt.ArrayLike,
    observations: npt.ArrayLike,
    statistics: list[str],
    n_replicates: int,
    rng: np.random.Generator,
) -> dict[str, Any]:
    """Compare test statistics of the observations to those of posterior predictive replicates.

    Args:
        model: Model to simulate from.
        posterior_samples: Posterior samples, with the parameters along the last axis.
        observations: Observed data.
        statistics: Names of the test statistics to evaluate.
        n_replicates: Number of replicated datasets.
        rng: Random number generator.
    Returns:
        dict with the replicated datasets ("y_rep") and, for each statistic, the observed value,
        the replicated values and the posterior predictive p-value.
    """
    y = model_module.validate_observations(observations)
    # Check the names before doing any work
    statistic_functions = {name: get_test_statistic(name) for name in statistics}

    _, y_rep = simulate_replicates(model, posterior_samples, y.size, n_replicates, rng)

    output: dict[str, Any] = {"y_rep": y_rep, "statistics": {}}
    for name, func in statistic_functions.items():
        observed = float(func(y))
        replicated = func(y_rep)
        p_value = float(np.mean(replicated >= observed))
        output["statistics"][name] = {
            "observed": observed,
            "replicated": replicated,
            "p_value": p_value,
        }
        logger.info(f"  T={name}: observed {observed:.4f}, replicated mean {replicated.mean():.4f}, p-value {p_value:.3f}")
    return output


@attrs.define
class PosteriorPredictiveConfig:
    """Settings for the posterior predictive check.

    Attributes:
        n_replicates: Number of replicated datasets.
        statistics: Test statistics to evaluate.
        random_seed: Seed for the random number generator. None for a fresh seed each time.
        output_filename: Name of the output file.
    """

    n_replicates: int = attrs.field(default=1000, converter=int)
    statistics: list[str] = attrs.field(factory=lambda: ["mean", "sd", "min", "max"])
    random_seed: int | None = None
    output_filename: str = "posterior_predictive.h5"

    @classmethod
    def from_analysis_config(cls, analysis_config: analysis.AnalysisConfig) -> PosteriorPredictiveConfig:
        ppc_configuration = analysis_config.parameters("posterior_predictive")
        return cls(
            n_replicates=ppc_configuration.get("n_replicates", 1000),
            statistics=list(ppc_configuration.get("statistics", ["mean", "sd", "min", "max"])),
            random_seed=ppc_configuration.get("random_seed", analysis_config.parameters("mcmc").get("random_seed")),
        )


def run_posterior_predictive(mcmc_config: mc_sampling.MCMCConfig) -> dict[str, Any]:
    """Run the posterior predictive check on the MCMC output of an analysis.

    :param MCMCConfig mcmc_config: Configuration of the MCMC run to check
    :return: output of posterior_predictive_check(), which is also written next to the MCMC output
    """
    ppc_config = PosteriorPredictiveConfig.from_analysis_config(mcmc_config.analysis_config)
    results = data_IO.read_dict_from_h5(mcmc_config.mcmc_output_dir, mcmc_config.mcmc_outputfilename)
    model = model_module.NormalMeanModel.from_config(mcmc_config.analysis_config.model_settings)

    logger.info(f"Running posterior predictive check with {ppc_config.n_replicates} replicates...")
    output = posterior_predictive_check(
        model,
        posterior_samples=results["chain"],
        observations=results["observations"],
        statistics=ppc_config.statistics,
        n_replicates=ppc_config.n_replicates,
        rng=np.random.default_rng(ppc_config.random_seed),
    )
    output["observations"] = np.asarray(results["observations"])

    data_IO.write_dict_to_h5(output, mcmc_config.mcmc_output_dir, ppc_config.output_filename)
    return output
