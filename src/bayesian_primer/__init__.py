"""Bayesian inference with MCMC: model anatomy, sampling, convergence diagnostics and posterior predictive checks."""

from __future__ import annotations

__version__ = "0.1.0"
