"""
Sampling module for Bayesian Inference.

This module provides functionality to compute posterior for a given analysis run

The main functionalities are:
 - run_mcmc() performs MCMC and returns posterior
 - credible_interval() compute credible interval for a given posterior
 - map_parameters() estimate the MAP parameters from a posterior

A configuration class MCMCConfig provides simple access to sampling settings

Sampling backends:
 - metropolis: random-walk Metropolis, written out step by step.
 - emcee: affine-invariant ensemble sampler.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

from bayesian_primer.mc_sampling.base import (  # noqa: F401
    MCMCConfig,
    available_samplers,
    credible_interval,
    map_parameters,
    run_mcmc,
)
