"""Convergence diagnostics and posterior summaries.

The main functionalities are:
 - gelman_rubin() -- R-hat, comparing the between-chain and within-chain variance
 - split_rhat() -- R-hat after splitting each chain in half, which also catches drifts within a chain
 - effective_sample_size() -- number of independent samples equivalent to the (autocorrelated) chain
 - monte_carlo_standard_error() -- uncertainty on the posterior mean due to the finite chain
 - summarize() -- collect the above for each parameter, together with posterior summary statistics
 - compute_diagnostics() -- steering function: read the MCMC output, summarize, and write to file
 - closure_coverage() -- check whether the closure tests recover the true parameter values

Chains are expected with shape (n_steps, n_chains, n_parameters), as written by `mc_sampling`.
A chain with shape (n_steps, n_chains) is treated as a single parameter.
"""

from __future__ import annotations

import logging
from typing import Any

import attrs
import emcee
import numpy as np
import numpy.typing as npt

from bayesian_primer import analysis, data_IO, mc_sampling
from bayesian_primer import model as model_module

logger = logging.getLogger(__name__)


def _as_3d_chain(chain: npt.ArrayLike) -> npt.NDArray[np.float64]:
    chain = np.asarray(chain, dtype=np.float64)
    if chain.ndim == 2:
        chain = chain[:, :, np.newaxis]
    if chain.ndim != 3:
        msg = f"Chain must have shape (n_steps, n_chains[, n_parameters]), but received {chain.shape}"
        raise ValueError(msg)
    return chain


def gelman_rubin(chain: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Gelman-Rubin potential scale reduction factor (R-hat).

        W = mean of the within-chain variances
        B/n = variance of the chain means
        var_hat = (n - 1) / n * W + B / n
        R-hat = sqrt(var_hat / W)

    Values close to 1 indicate that the chains sample the same distribution.

    Args:
        chain: Samples with shape (n_steps, n_chains[, n_parameters]).
    Returns:
        R-hat for each parameter.
    """
    chain = _as_3d_chain(chain)
    n_steps, n_chains, _ = chain.shape
    if n_chains < 2:
        msg = f"R-hat requires at least two chains, but received {n_chains}"
        raise ValueError(msg)
    if n_steps < 2:
        msg = f"R-hat requires at least two steps per chain, but received {n_steps}"
        raise ValueError(msg)

    chain_means = chain.mean(axis=0)
    within = chain.var(axis=0, ddof=1).mean(axis=0)
    between_over_n = chain_means.var(axis=0, ddof=1)
    var_hat = (n_steps - 1) / n_steps * within + between_over_n
    with np.errstate(divide="ignore", invalid="ignore"):
        rhat = np.sqrt(var_hat / within)
    # Chains which never moved have no within-chain variance. If they also agree with each other,
    # there is nothing to distinguish, otherwise they certainly haven't converged.
    rhat = np.where(within > 0, rhat, np.where(between_over_n > 0, np.inf, 1.0))
    return rhat


def split_rhat(chain: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """R-hat after splitting each chain into its first and second half.

    If the number of steps is odd, the middle step is dropped.

    Args:
        chain: Samples with shape (n_steps, n_chains[, n_parameters]).
    Returns:
        Split R-hat for each parameter.
    """
    chain = _as_3d_chain(chain)
    n_steps = chain.shape[0]
    if n_steps < 4:
        msg = f"Split R-hat requires at least four steps per chain, but received {n_steps}"
        raise ValueError(msg)
    half = n_steps // 2
    split = np.concatenate([chain[:half], chain[n_steps - half :]], axis=1)
    return gelman_rubin(split)


def effective_sample_size(chain: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Effective sample size for each parameter.

    Uses the integrated autocorrelation time estimated by emcee, averaged over the chains.
    If the chain is too short for a reliable estimate, emcee warns and we use the estimate anyway.

    Args:
        chain: Samples with shape (n_steps, n_chains[, n_parameters]).
    Returns:
        Effective sample size for each parameter.
    """
    chain = _as_3d_chain(chain)
    n_steps, n_chains, _ = chain.shape
    tau = np.atleast_1d(emcee.autocorr.integrated_time(chain, quiet=True))
    # The autocorrelation time can't be shorter than one step for our purposes (anticorrelated chains
    # would otherwise give more effective samples than actual samples).
    tau = np.maximum(tau, 1.0)
    return n_steps * n_chains / tau


def monte_carlo_standard_error(chain: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Monte Carlo standard error of the posterior mean for each parameter."""
    chain = _as_3d_chain(chain)
    flat = chain.reshape(-1, chain.shape[-1])
    return flat.std(axis=0, ddof=1) / np.sqrt(effective_sample_size(chain))


def summarize(
    chain: npt.ArrayLike,
    parameter_names: list[str] | None = None,
    confidence: float = 0.9,
    interval_type: str = "quantile",
) -> dict[str, dict[str, Any]]:
    """Posterior summary and convergence diagnostics for each parameter.

    Args:
        chain: Samples with shape (n_steps, n_chains[, n_parameters]).
        parameter_names: Names of the parameters. Default: p0, p1, ...
        confidence: Confidence level of the credible interval.
        interval_type: Type of credible interval (see `mc_sampling.credible_interval`).
    Returns:
        Summary for each parameter, keyed by parameter name.
    """
    chain = _as_3d_chain(chain)
    n_parameters = chain.shape[-1]
    if parameter_names is None:
        parameter_names = [f"p{i}" for i in range(n_parameters)]
    if len(parameter_names) != n_parameters:
        msg = f"Received {len(parameter_names)} parameter names for {n_parameters} parameters"
        raise ValueError(msg)

    flat = chain.reshape(-1, n_parameters)
    # R-hat compares chains, so it's undefined for a single chain. Split R-hat still compares its halves.
    if chain.shape[1] > 1:
        rhat = gelman_rubin(chain)
    else:
        logger.warning("Only one chain available, so R-hat is not defined. Relying on split R-hat.")
        rhat = np.full(n_parameters, np.nan)
    rhat_split = split_rhat(chain)
    ess = effective_sample_size(chain)
    mcse = flat.std(axis=0, ddof=1) / np.sqrt(ess)
    map_values = mc_sampling.map_parameters(flat)

    summary = {}
    for i, name in enumerate(parameter_names):
        ci = mc_sampling.credible_interval(flat[:, i], confidence=confidence, interval_type=interval_type)
        summary[name] = {
            "mean": float(flat[:, i].mean()),
            "sd": float(flat[:, i].std(ddof=1)),
            "median": float(np.median(flat[:, i])),
            "map": float(map_values[i]),
            "credible_interval": [ci[0], ci[1]],
            "confidence": confidence,
            "interval_type": interval_type,
            "rhat": float(rhat[i]),
            "split_rhat": float(rhat_split[i]),
            "ess": float(ess[i]),
            "mcse": float(mcse[i]),
        }
    return summary


def check_convergence(summary: dict[str, dict[str, Any]], rhat_threshold: float = 1.01) -> bool:
    """Check that every parameter has R-hat and split R-hat below the threshold.

    An undefined (NaN) R-hat, as for a single chain, is skipped in favor of split R-hat.

    Args:
        summary: Output of `summarize()`.
        rhat_threshold: Largest acceptable R-hat.
    Returns:
        True if all parameters pass.
    """
    converged = True
    for name, values in summary.items():
        worst = max(r for r in (values["rhat"], values["split_rhat"]) if not np.isnan(r))
        if not worst < rhat_threshold:
            logger.warning(
                f"Parameter '{name}' may not have converged: R-hat={values['rhat']:.4f}, "
                f"split R-hat={values['split_rhat']:.4f} (threshold {rhat_threshold})"
            )
            converged = False
    return converged


@attrs.define
class DiagnosticsConfig:
    """Settings for the diagnostics.

    Attributes:
        confidence: Confidence level of the credible intervals.
        interval_type: Type of credible interval ('quantile' or 'hpd').
        rhat_threshold: Largest R-hat considered converged.
        output_filename: Name of the summary file.
    """

    confidence: float = attrs.field(default=0.9, converter=float)
    interval_type: str = "quantile"
    rhat_threshold: float = attrs.field(default=1.01, converter=float)
    output_filename: str = "diagnostics.yaml"

    @classmethod
    def from_analysis_config(cls, analysis_config: analysis.AnalysisConfig) -> DiagnosticsConfig:
        diagnostics_configuration = analysis_config.parameters("diagnostics")
        return cls(
            confidence=diagnostics_configuration.get("confidence", 0.9),
            interval_type=diagnostics_configuration.get("interval_type", "quantile"),
            rhat_threshold=diagnostics_configuration.get("rhat_threshold", 1.01),
        )


def compute_diagnostics(mcmc_config: mc_sampling.MCMCConfig) -> dict[str, Any]:
    """Summarize the MCMC output of an analysis and write the summary to file.

    :param MCMCConfig mcmc_config: Configuration of the MCMC run to summarize
    :return: summary dict, which is also written to diagnostics.yaml next to the MCMC output
    """
    diagnostics_config = DiagnosticsConfig.from_analysis_config(mcmc_config.analysis_config)
    results = data_IO.read_dict_from_h5(mcmc_config.mcmc_output_dir, mcmc_config.mcmc_outputfilename)
    model = model_module.NormalMeanModel.from_config(mcmc_config.analysis_config.model_settings)

    chain = results["chain"]
    summary = summarize(
        chain,
        parameter_names=list(model.parameter_names),
        confidence=diagnostics_config.confidence,
        interval_type=diagnostics_config.interval_type,
    )
    converged = check_convergence(summary, rhat_threshold=diagnostics_config.rhat_threshold)

    acceptance_fraction = np.asarray(results["acceptance_fraction"])
    analytic_mean, analytic_sd = model.analytic_posterior(results["observations"])
    mu_name = model.parameter_names[0]
    output = {
        "analysis": mcmc_config.analysis_config.name,
        "mcmc_package": mcmc_config.mcmc_package,
        "n_steps": int(chain.shape[0]),
        "n_chains": int(chain.shape[1]),
        "converged": converged,
        "rhat_threshold": diagnostics_config.rhat_threshold,
        "acceptance_fraction": {
            "mean": float(acceptance_fraction.mean()),
            "min": float(acceptance_fraction.min()),
            "max": float(acceptance_fraction.max()),
        },
        "parameters": summary,
        # The conjugate posterior allows us to check the sampler directly
        "analytic_posterior": {
            "mean": analytic_mean,
            "sd": analytic_sd,
            "mean_difference_in_mcse": (summary[mu_name]["mean"] - analytic_mean) / summary[mu_name]["mcse"],
        },
    }
    if "true_value" in results:
        output["true_value"] = np.atleast_1d(results["true_value"]).tolist()

    for name, values in summary.items():
        logger.info(
            f"{name}: mean={values['mean']:.4f}, sd={values['sd']:.4f}, "
            f"{int(100 * values['confidence'])}% CI=[{values['credible_interval'][0]:.4f}, {values['credible_interval'][1]:.4f}], "
            f"R-hat={values['rhat']:.4f}, ESS={values['ess']:.0f}"
        )
    logger.info(f"Analytic posterior: mean={analytic_mean:.4f}, sd={analytic_sd:.4f}")

    data_IO.write_dict_to_yaml(output, mcmc_config.mcmc_output_dir, diagnostics_config.output_filename)
    return output


def closure_coverage(analysis_config: analysis.AnalysisConfig) -> dict[str, Any]:
    """Check whether the closure tests recover the true values.

    For each closure test, the true value should lie within the credible interval. For a well
    calibrated analysis, the fraction of covered tests should be close to the confidence level.

    :param AnalysisConfig analysis_config: Analysis configuration
    :return: dict with the coverage of each closure test and the overall coverage fraction
    """
    diagnostics_config = DiagnosticsConfig.from_analysis_config(analysis_config)
    n_closure_tests = len(analysis_config.closure_test_values)
    if n_closure_tests == 0:
        msg = f"No closure test values are specified for analysis '{analysis_config.name}'"
        raise ValueError(msg)

    covered = []
    tests = []
    for closure_index in range(n_closure_tests):
        mcmc_config = mc_sampling.MCMCConfig.from_analysis_config(analysis_config, closure_index=closure_index)
        results = data_IO.read_dict_from_h5(mcmc_config.mcmc_output_dir, mcmc_config.mcmc_outputfilename, verbose=False)
        chain = _as_3d_chain(results["chain"])
        flat = chain.reshape(-1, chain.shape[-1])
        true_value = np.atleast_1d(results["true_value"])
        for i_parameter in range(flat.shape[1]):
            ci = mc_sampling.credible_interval(
                flat[:, i_parameter],
                confidence=diagnostics_config.confidence,
                interval_type=diagnostics_config.interval_type,
            )
            is_covered = bool(ci[0] <= true_value[i_parameter] <= ci[1])
            covered.append(is_covered)
            tests.append(
                {
                    "closure_index": closure_index,
                    "parameter_index": i_parameter,
                    "true_value": float(true_value[i_parameter]),
                    "credible_interval": [ci[0], ci[1]],
                    "covered": is_covered,
                }
            )

    coverage = float(np.mean(covered))
    logger.info(
        f"Closure tests: {sum(covered)}/{len(covered)} true values inside the {diagnostics_config.confidence} credible interval"
    )
    output = {"confidence": diagnostics_config.confidence, "coverage": coverage, "tests": tests}
    data_IO.write_dict_to_yaml(output, analysis_config.output_dir / "closure", "closure_coverage.yaml")
    return output
