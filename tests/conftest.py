"""Shared fixtures for the tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest
import yaml

from bayesian_primer import analysis
from bayesian_primer import model as model_module

OBSERVATIONS = [2.31, 1.87, 3.05, 2.44, 1.62, 2.98, 2.15, 2.71, 3.32, 1.94, 2.57, 2.20]


@pytest.fixture
def observations() -> np.ndarray:
    return np.array(OBSERVATIONS)


@pytest.fixture
def normal_model() -> model_module.NormalMeanModel:
    return model_module.NormalMeanModel(prior_mean=0.0, prior_sd=10.0, likelihood_sd=1.0)


def _base_config(output_dir: Path) -> dict[str, Any]:
    return {
        "output_dir": str(output_dir),
        "reduce_logging_to_file": False,
        "run_mcmc": True,
        "run_closure_tests": False,
        "compute_diagnostics": True,
        "run_posterior_predictive": True,
        "analyses": {
            "normal_mean": {
                "observations": {"values": OBSERVATIONS},
                "model": {"prior_mean": 0.0, "prior_sd": 10.0, "likelihood_sd": 1.0},
                "parameters": {
                    "mcmc": {
                        "mcmc_package": "metropolis",
                        "n_chains": 4,
                        "n_burn_steps": 200,
                        "n_sampling_steps": 2000,
                        "n_logging_steps": 1000,
                        "random_seed": 42,
                        "metropolis": {"proposal_width": 0.6},
                    },
                    "diagnostics": {"confidence": 0.9, "interval_type": "quantile", "rhat_threshold": 1.05},
                    "posterior_predictive": {"n_replicates": 200, "statistics": ["mean", "sd", "min", "max"]},
                },
                "closure_test_values": [0.0, 2.5],
            }
        },
    }


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Write a steering config to a temporary directory.

    Updates are applied to the `normal_mean` analysis block (nested dicts are merged one level deep
    for `parameters`), and top-level keys can be overridden with `top_level`.
    """

    def _write(analysis_updates: dict[str, Any] | None = None, top_level: dict[str, Any] | None = None) -> Path:
        config = _base_config(tmp_path / "output")
        analysis_block = config["analyses"]["normal_mean"]
        for key, value in (analysis_updates or {}).items():
            if key == "parameters":
                for block, settings in value.items():
                    analysis_block["parameters"].setdefault(block, {}).update(settings)
            else:
                analysis_block[key] = value
        config.update(top_level or {})

        config_file = tmp_path / "config.yaml"
        with config_file.open("w") as f:
            yaml.safe_dump(config, f)
        return config_file

    return _write


@pytest.fixture
def analysis_config(write_config: Callable[..., Path]) -> analysis.AnalysisConfig:
    return analysis.AnalysisConfig.from_config_file(analysis_name="normal_mean", config_file=write_config())
