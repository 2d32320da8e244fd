"""Sampling implementation using random-walk Metropolis

Each step of the chain:
 1. Propose a candidate from a normal distribution of fixed width, centered at the current value.
 2. Compute the ratio of the unnormalized posterior densities at the candidate and at the current value.
 3. Accept the candidate with probability min(1, ratio) by comparing the ratio to a uniform draw.
    Otherwise, keep the current value.
 4. Append the resulting value to the chain.

Since the proposal is symmetric, the proposal densities cancel in the acceptance ratio.
The ratio is evaluated as a difference of log densities to avoid underflow.
"""

from __future__ import annotations

import logging
import multiprocessing
from typing import TYPE_CHECKING, Any, Callable

import attrs
import numpy as np
import numpy.typing as npt

from bayesian_primer import log_posterior

if TYPE_CHECKING:
    from bayesian_primer.mc_sampling.base import MCMCConfig
    from bayesian_primer.model import NormalMeanModel

logger = logging.getLogger(__name__)

_register_name = "metropolis"


@attrs.define
class MetropolisChain:
    """Output of a single Metropolis chain.

    Attributes:
        samples: Value after each step, with shape (n_steps, n_parameters).
        log_prob: Log density after each step, with shape (n_steps,).
        n_accepted: Number of accepted proposals.
    """

    samples: npt.NDArray[np.float64]
    log_prob: npt.NDArray[np.float64]
    n_accepted: int

    @property
    def n_steps(self) -> int:
        return self.samples.shape[0]

    @property
    def acceptance_fraction(self) -> float:
        return self.n_accepted / self.n_steps

    @property
    def final_position(self) -> npt.NDArray[np.float64]:
        return self.samples[-1]


def metropolis_chain(
    log_density: Callable[[npt.NDArray[np.float64]], float],
    initial_position: npt.ArrayLike,
    n_steps: int,
    proposal_width: float,
    rng: np.random.Generator,
    n_logging_steps: int = 0,
) -> MetropolisChain:
    """Run a random-walk Metropolis chain.

    Args:
        log_density: Unnormalized log density of the target for a single parameter vector.
        initial_position: Starting value, with shape (n_parameters,).
        n_steps: Number of steps. The chain will contain exactly this many values.
        proposal_width: Standard deviation of the normal proposal distribution.
        rng: Random number generator.
        n_logging_steps: Log the acceptance fraction every n steps. 0 disables the logging.
    Returns:
        The chain.
    """
    if n_steps < 1:
        msg = f"Need at least one step, but requested {n_steps}"
        raise ValueError(msg)
    if not np.isfinite(proposal_width) or proposal_width <= 0:
        msg = f"Proposal width must be positive and finite, but received {proposal_width}"
        raise ValueError(msg)

    current = np.atleast_1d(np.asarray(initial_position, dtype=np.float64)).copy()
    current_log_density = log_density(current)
    if not np.isfinite(current_log_density):
        logger.warning(f"Starting chain at {current}, where the log density is {current_log_density}")

    samples = np.empty((n_steps, current.shape[0]))
    log_prob = np.empty(n_steps)
    n_accepted = 0
    for i in range(n_steps):
        candidate = rng.normal(current, proposal_width)
        candidate_log_density = log_density(candidate)

        # Accept with probability min(1, p(candidate) / p(current)).
        # A NaN ratio (both densities zero) compares as False, so the candidate is rejected.
        log_ratio = candidate_log_density - current_log_density
        if np.log(rng.uniform()) < log_ratio:
            current = candidate
            current_log_density = candidate_log_density
            n_accepted += 1

        samples[i] = current
        log_prob[i] = current_log_density

        n = i + 1
        if n_logging_steps > 0 and (n % n_logging_steps == 0 or n == n_steps):
            logger.info(f"  step {n}: acceptance fraction {n_accepted / n:.3f}")

    return MetropolisChain(samples=samples, log_prob=log_prob, n_accepted=n_accepted)


def _run_chain(
    initial_position: npt.NDArray[np.float64],
    n_burn_steps: int,
    n_sampling_steps: int,
    proposal_width: float,
    seed_sequence: np.random.SeedSequence,
    n_logging_steps: int,
) -> MetropolisChain:
    """Burn-in followed by the production steps for one chain.

    Uses the log-posterior set up by `log_posterior.initialize_pool_variables`, so it can
    be run in a pool worker.
    """
    rng = np.random.default_rng(seed_sequence)
    position = initial_position
    if n_burn_steps > 0:
        logger.info("Starting burn-in...")
        burn_in = metropolis_chain(
            log_posterior.log_posterior_point,
            position,
            n_burn_steps,
            proposal_width,
            rng,
            n_logging_steps=n_logging_steps,
        )
        position = burn_in.final_position
    logger.info("Starting production...")
    return metropolis_chain(
        log_posterior.log_posterior_point,
        position,
        n_sampling_steps,
        proposal_width,
        rng,
        n_logging_steps=n_logging_steps,
    )


def run_sampling(
    config: MCMCConfig,
    model: NormalMeanModel,
    observations: npt.NDArray[np.float64],
) -> dict[str, Any]:
    """Run independent random-walk Metropolis chains.

    Args:
        config: MCMC config.
        model: Model defining the posterior.
        observations: Observed data.
    Returns:
        Sampling output, with the chain stored as (n_steps, n_chains, n_parameters).
    """
    # One independent stream per chain, plus one for the starting positions
    seed_sequence = config.seed_sequence()
    initial_seed, *chain_seeds = seed_sequence.spawn(config.n_chains + 1)

    # Start from overdispersed points drawn from the prior, so that the convergence diagnostics are meaningful
    if config.initial_values is not None:
        initial_positions = np.array(config.initial_values, dtype=np.float64).reshape(config.n_chains, -1)
    else:
        initial_positions = model.sample_prior(config.n_chains, np.random.default_rng(initial_seed))

    chain_args = [
        (
            initial_positions[i],
            config.n_burn_steps,
            config.n_sampling_steps,
            config.proposal_width,
            chain_seeds[i],
            config.n_logging_steps,
        )
        for i in range(config.n_chains)
    ]

    if config.n_processes > 1:
        # NOTE: We use `get_context` here to avoid having to globally specify the context. Plus, it then should be fine
        #       to repeated call this function. (`set_context` can only be called once - otherwise, it's a runtime error).
        ctx = multiprocessing.get_context("spawn")
        with ctx.Pool(
            processes=min(config.n_processes, config.n_chains),
            initializer=log_posterior.initialize_pool_variables,
            initargs=[model, observations],
        ) as pool:
            logger.info(f"Parallelizing {config.n_chains} chains over {config.n_processes} processes...")
            chains = pool.starmap(_run_chain, chain_args)
    else:
        log_posterior.initialize_pool_variables(model, observations)
        chains = []
        for i, args in enumerate(chain_args):
            logger.info(f"Running chain {i} from {args[0]}")
            chains.append(_run_chain(*args))

    acceptance_fraction = np.array([c.acceptance_fraction for c in chains])
    logger.info(
        f"Acceptance fraction: mean {acceptance_fraction.mean():.3f}, min {acceptance_fraction.min():.3f}, max {acceptance_fraction.max():.3f}"
    )

    return {
        "chain": np.stack([c.samples for c in chains], axis=1),
        "log_prob": np.stack([c.log_prob for c in chains], axis=1),
        "acceptance_fraction": acceptance_fraction,
        "initial_positions": initial_positions,
    }
