"""Sampling implementation using emcee

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import contextlib
import logging
import multiprocessing
from typing import TYPE_CHECKING, Any

import emcee
import numpy as np
import numpy.typing as npt

from bayesian_primer import log_posterior

if TYPE_CHECKING:
    from bayesian_primer.mc_sampling.base import MCMCConfig
    from bayesian_primer.model import NormalMeanModel

logger = logging.getLogger(__name__)

_register_name = "emcee"


def run_sampling(
    config: MCMCConfig,
    model: NormalMeanModel,
    observations: npt.NDArray[np.float64],
) -> dict[str, Any]:
    """Run emcee-based MCMC.

    Markov chain Monte Carlo model calibration using the `affine-invariant ensemble
    sampler (emcee) <http://dfm.io/emcee>`. Each chain is one walker.

    Args:
        config: MCMC config
        model: Model defining the posterior.
        observations: Observed data.
    Returns:
        Sampling output, with the chain stored as (n_steps, n_walkers, n_parameters).
    """
    n_walkers = config.n_chains
    ndim = model.n_parameters
    if n_walkers < 2 * ndim:
        msg = f"emcee needs at least {2 * ndim} walkers for {ndim} parameters, but received {n_walkers}"
        raise ValueError(msg)

    seed_sequence = config.seed_sequence()
    initial_seed, sampler_seed = seed_sequence.spawn(2)

    # We can use multiprocessing in emcee to parallelize the independent walkers
    # NOTE: We need to use `spawn` rather than `fork` on linux, so that the globals are set through the initializer.
    if config.n_processes > 1:
        ctx = multiprocessing.get_context("spawn")
        pool_context = ctx.Pool(
            processes=config.n_processes,
            initializer=log_posterior.initialize_pool_variables,
            initargs=[model, observations],
        )
    else:
        log_posterior.initialize_pool_variables(model, observations)
        pool_context = contextlib.nullcontext()

    with pool_context as pool:
        # Construct sampler (we create a dummy daughter class from emcee.EnsembleSampler, to add some logging info)
        logger.info("Initializing sampler...")
        sampler = LoggingEnsembleSampler(
            n_walkers,
            ndim,
            log_posterior.log_posterior_point,
            pool=pool,
        )
        # emcee still uses the legacy RandomState, so we seed it through its state
        sampler.random_state = np.random.RandomState(  # noqa: NPY002
            sampler_seed.generate_state(1)[0]
        ).get_state()

        # Generate random starting positions for each walker
        if config.initial_values is not None:
            random_pos = np.array(config.initial_values, dtype=np.float64).reshape(n_walkers, ndim)
        else:
            random_pos = model.sample_prior(n_walkers, np.random.default_rng(initial_seed))

        position = random_pos
        if config.n_burn_steps > 0:
            # Run first half of burn-in
            logger.info("Starting initial burn-in...")
            nburn0 = config.n_burn_steps // 2
            if nburn0 > 0:
                sampler.run_mcmc(position, nburn0, n_logging_steps=config.n_logging_steps)
                # Reposition walkers to the most likely points in the chain, then run the second half of burn-in.
                # This significantly accelerates burn-in and helps prevent stuck walkers.
                logger.info("Resampling walker positions...")
                position = _most_likely_positions(sampler, n_walkers)
                sampler.reset()
            state = sampler.run_mcmc(position, config.n_burn_steps - nburn0, n_logging_steps=config.n_logging_steps)
            position = state.coords
            sampler.reset()
            logger.info("Burn-in complete.")

        # Production samples
        logger.info("Starting production...")
        sampler.run_mcmc(position, config.n_sampling_steps, n_logging_steps=config.n_logging_steps)

    output_dict: dict[str, Any] = {}
    output_dict["chain"] = sampler.get_chain()
    output_dict["log_prob"] = sampler.get_log_prob()
    output_dict["acceptance_fraction"] = sampler.acceptance_fraction
    output_dict["initial_positions"] = random_pos
    try:
        output_dict["autocorrelation_time"] = sampler.get_autocorr_time()
    except emcee.autocorr.AutocorrError as e:
        # The chain is too short for a reliable estimate. It's only informational, so we skip it.
        logger.info(f"Could not compute autocorrelation time: {e!s}")

    logger.info("Done.")
    return output_dict


def _most_likely_positions(sampler: emcee.EnsembleSampler, n_walkers: int) -> npt.NDArray[np.float64]:
    """Select the n_walkers distinct positions with the highest log probability seen so far.

    If the chain hasn't visited enough distinct points, fall back to the current positions.
    """
    flat_chain = sampler.get_chain(flat=True)
    flat_log_prob = sampler.get_log_prob(flat=True)
    _, unique_indices = np.unique(flat_log_prob, return_index=True)
    if unique_indices.size < n_walkers:
        logger.info("Not enough distinct points to reposition walkers. Continuing from the current positions.")
        return sampler.get_last_sample().coords
    # np.unique sorts in ascending order, so the most likely points are at the end
    return flat_chain[unique_indices[-n_walkers:]]


####################################################################################################################
class LoggingEnsembleSampler(emcee.EnsembleSampler):
    """
    Add some logging to the emcee.EnsembleSampler class.
    Inherit from: https://emcee.readthedocs.io/en/stable/user/sampler/
    """

    # ---------------------------------------------------------------
    def run_mcmc(self, X0, n_sampling_steps, n_logging_steps=100, **kwargs):
        """
        Run MCMC with logging every 'logging_steps' steps (default: log every 100 steps).
        """
        logger.info(f"  running {self.nwalkers} walkers for {n_sampling_steps} steps")
        result = None
        for n, result in enumerate(self.sample(X0, iterations=n_sampling_steps, **kwargs), start=1):
            if n % n_logging_steps == 0 or n == n_sampling_steps:
                af = self.acceptance_fraction
                logger.info(
                    f"  step {n}: acceptance fraction: mean {af.mean()}, std {af.std()}, min {af.min()}, max {af.max()}"
                )

        return result
