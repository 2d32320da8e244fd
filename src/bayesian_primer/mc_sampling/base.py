"""Base sampling functionality to compute the posterior.

The main functionalities are:
 - run_mcmc() performs MCMC and returns posterior
 - credible_interval() compute credible interval for a given posterior
 - map_parameters() estimate the MAP parameters from a posterior

A configuration class MCMCConfig provides simple access to sampling settings.
The sampling itself is delegated to backends in this package, which are
discovered automatically (see `register_modules`).

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import ModuleType
from typing import Any

import attrs
import numpy as np
import numpy.typing as npt

from bayesian_primer import analysis, data_IO, register_modules
from bayesian_primer import model as model_module

logger = logging.getLogger(__name__)

_samplers: dict[str, ModuleType] = {}


####################################################################################################################
def run_mcmc(config: MCMCConfig, closure_index: int = -1) -> dict[str, Any]:
    """
    Run MCMC to compute posterior

    :param MCMCConfig config: Instance of MCMCConfig
    :param int closure_index: Index of closure test value to use for MCMC closure. Off by default.
                              If non-negative index is specified, will construct pseudodata from the
                              corresponding closure test value and use that instead of the observations.
    :return: dict with the chain and associated sampling information. It's also written to config.mcmc_outputfile
    """
    # Keep the output location consistent with the requested closure test
    if closure_index < 0:
        closure_index = config.closure_index
    elif closure_index != config.closure_index:
        config = attrs.evolve(config, closure_index=closure_index)

    try:
        sampler = _samplers[config.mcmc_package]
    except KeyError as e:
        msg = f"Invalid MCMC sampler: {config.mcmc_package}. Available: {sorted(_samplers)}"
        raise ValueError(msg) from e

    model = model_module.NormalMeanModel.from_config(config.analysis_config.model_settings)
    observations = data_IO.observations_from_config(config.analysis_config)

    # In the case of a closure test, we use pseudodata generated from the known value
    true_value = None
    if closure_index >= 0:
        closure_test_values = config.analysis_config.closure_test_values
        if closure_index >= len(closure_test_values):
            msg = f"Closure index {closure_index} requested, but only {len(closure_test_values)} closure test values are available"
            raise ValueError(msg)
        true_value = np.array([closure_test_values[closure_index]])
        # Use a separate stream from the sampler so that the pseudodata is reproducible on its own
        pseudodata_rng = np.random.default_rng(
            None if config.random_seed is None else [config.random_seed, closure_index]
        )
        observations = data_IO.generate_pseudodata(
            model, true_value=true_value, n_observations=observations.size, rng=pseudodata_rng
        )
        logger.info(f"Closure test {closure_index}: generated {observations.size} pseudodata points with mu={true_value[0]}")

    logger.info(f"Sampling with '{config.mcmc_package}': {config.n_chains} chains, "
                f"{config.n_burn_steps} burn-in steps, {config.n_sampling_steps} sampling steps")
    output_dict = sampler.run_sampling(config=config, model=model, observations=observations)

    output_dict["observations"] = observations
    output_dict["parameter_names"] = list(model.parameter_names)
    if true_value is not None:
        output_dict["true_value"] = true_value

    data_IO.write_dict_to_h5(output_dict, config.mcmc_output_dir, config.mcmc_outputfilename)
    return output_dict


####################################################################################################################
def credible_interval(
    samples: npt.ArrayLike, confidence: float = 0.9, interval_type: str = "quantile"
) -> tuple[float, float]:
    """
    Compute the credible interval for an array of samples.

    :param 1darray samples: Array of samples
    :param float confidence: Confidence level (default 0.9)
    :param str interval_type: Type of credible interval to compute. Options are:
                        'hpd' - highest-posterior density
                        'quantile' - quantile interval
    """
    samples = np.asarray(samples, dtype=np.float64).ravel()
    if not 0 < confidence < 1:
        msg = f"Confidence must be in (0, 1), but received {confidence}"
        raise ValueError(msg)

    if interval_type == "hpd":
        # Number of samples outside of the interval. The narrowest interval containing
        # the remaining samples is the highest posterior density interval.
        sorted_samples = np.sort(samples)
        n_inside = int(np.ceil(confidence * samples.size))
        n_inside = min(max(n_inside, 1), samples.size)
        widths = sorted_samples[n_inside - 1 :] - sorted_samples[: samples.size - n_inside + 1]
        i_min = np.argmin(widths)
        ci = sorted_samples[i_min], sorted_samples[i_min + n_inside - 1]
    elif interval_type == "quantile":
        cred_range = [(1 - confidence) / 2, 1 - (1 - confidence) / 2]
        ci = np.quantile(samples, cred_range)
    else:
        msg = f"Unknown credible interval type: {interval_type}. Options are 'hpd' or 'quantile'"
        raise ValueError(msg)

    return float(ci[0]), float(ci[1])


####################################################################################################################
def map_parameters(posterior: npt.ArrayLike, method: str = "quantile") -> npt.NDArray[np.float64]:
    """
    Compute the MAP parameters

    :param 2darray posterior: Array of samples, with shape (n_samples, n_parameters)
    :param str method: Method used to compute MAP. Options are:
                        'quantile' - take a narrow quantile interval and compute mean of parameters in that interval
    :return 1darray map_parameters: Array of MAP parameters
    """
    posterior = np.asarray(posterior, dtype=np.float64)
    if posterior.ndim == 1:
        posterior = posterior[:, np.newaxis]

    if method != "quantile":
        msg = f"Unknown MAP method: {method}"
        raise ValueError(msg)

    central_quantile = 0.01
    lower_bounds = np.quantile(posterior, 0.5 - central_quantile / 2, axis=0)
    upper_bounds = np.quantile(posterior, 0.5 + central_quantile / 2, axis=0)
    mask = (posterior >= lower_bounds) & (posterior <= upper_bounds)
    map_values = []
    for i in range(posterior.shape[1]):
        in_band = posterior[mask[:, i], i]
        # With few samples, the central band can be empty. Fall back to the median.
        map_values.append(in_band.mean() if in_band.size > 0 else np.median(posterior[:, i]))
    return np.array(map_values)


def _validate_sampler(name: str, module: ModuleType) -> None:
    """
    Validate that a sampler module follows the expected interface.
    """
    if not callable(getattr(module, "run_sampling", None)):
        msg = f"Sampler module {name} does not have a required 'run_sampling' function"
        raise ValueError(msg)


def available_samplers() -> list[str]:
    return sorted(_samplers)


def _positive(instance: Any, attribute: attrs.Attribute, value: int) -> None:  # noqa: ARG001
    if value < 1:
        msg = f"{attribute.name} must be at least 1, but received {value}"
        raise ValueError(msg)


@attrs.define
class MCMCConfig:
    """MCMC settings for an analysis.

    Attributes:
        analysis_config: Overall analysis configuration.
        mcmc_package: Name of the registered sampling backend.
        n_chains: Number of chains (independent chains for Metropolis, walkers for emcee).
        n_burn_steps: Number of steps to discard at the start of each chain.
        n_sampling_steps: Number of production steps per chain.
        n_logging_steps: Log progress every n steps.
        n_processes: Number of processes used to evaluate the chains. Default: 1.
        random_seed: Seed for the random number generators. None for a fresh seed each time.
        proposal_width: Standard deviation of the Metropolis proposal distribution.
        initial_values: Starting value for each chain. If not provided, draw from the prior.
        closure_index: Index of the closure test. Negative if this is not a closure test.
    """

    analysis_config: analysis.AnalysisConfig
    mcmc_package: str = "metropolis"
    n_chains: int = attrs.field(default=4, converter=int, validator=_positive)
    n_burn_steps: int = attrs.field(default=1000, converter=int)
    n_sampling_steps: int = attrs.field(default=5000, converter=int, validator=_positive)
    n_logging_steps: int = attrs.field(default=1000, converter=int, validator=_positive)
    n_processes: int = attrs.field(default=1, converter=int, validator=_positive)
    random_seed: int | None = None
    proposal_width: float = attrs.field(default=1.0, converter=float)
    initial_values: list[float] | None = None
    closure_index: int = -1
    mcmc_outputfilename: str = "mcmc.h5"

    @n_burn_steps.validator
    def _check_n_burn_steps(self, attribute: attrs.Attribute, value: int) -> None:
        if value < 0:
            msg = f"n_burn_steps must be non-negative, but received {value}"
            raise ValueError(msg)

    @proposal_width.validator
    def _check_proposal_width(self, attribute: attrs.Attribute, value: float) -> None:
        if not np.isfinite(value) or value <= 0:
            msg = f"proposal_width must be positive and finite, but received {value}"
            raise ValueError(msg)

    def __attrs_post_init__(self) -> None:
        if self.initial_values is not None and len(self.initial_values) != self.n_chains:
            msg = f"Received {len(self.initial_values)} initial values, but running {self.n_chains} chains"
            raise ValueError(msg)

    @classmethod
    def from_analysis_config(cls, analysis_config: analysis.AnalysisConfig, closure_index: int = -1) -> MCMCConfig:
        mcmc_configuration = analysis_config.parameters("mcmc")
        metropolis_configuration = mcmc_configuration.get("metropolis", {}) or {}
        initial_values = metropolis_configuration.get("initial_values")
        return cls(
            analysis_config=analysis_config,
            mcmc_package=mcmc_configuration.get("mcmc_package", "metropolis"),
            n_chains=mcmc_configuration.get("n_chains", 4),
            n_burn_steps=mcmc_configuration.get("n_burn_steps", 1000),
            n_sampling_steps=mcmc_configuration.get("n_sampling_steps", 5000),
            n_logging_steps=mcmc_configuration.get("n_logging_steps", 1000),
            n_processes=mcmc_configuration.get("n_processes", 1),
            random_seed=mcmc_configuration.get("random_seed"),
            proposal_width=metropolis_configuration.get("proposal_width", 1.0),
            initial_values=None if initial_values is None else [float(v) for v in initial_values],
            closure_index=closure_index,
        )

    @property
    def output_dir(self) -> Path:
        return self.analysis_config.output_dir

    @property
    def mcmc_output_dir(self) -> Path:
        if self.closure_index < 0:
            return self.output_dir
        return self.output_dir / "closure" / "results" / str(self.closure_index)

    @property
    def mcmc_outputfile(self) -> Path:
        return self.mcmc_output_dir / self.mcmc_outputfilename

    def seed_sequence(self) -> np.random.SeedSequence:
        """Root seed for the sampling. Closure tests get their own stream."""
        if self.random_seed is None:
            return np.random.SeedSequence()
        if self.closure_index < 0:
            return np.random.SeedSequence(self.random_seed)
        return np.random.SeedSequence([self.random_seed, self.closure_index + 1])


# Actually perform the discovery and registration of the samplers
if not _samplers:
    _samplers.update(
        register_modules.discover_and_register_modules(
            calling_module_name=__name__,
            required_attributes=["run_sampling"],
            validation_function=_validate_sampler,
        )
    )
