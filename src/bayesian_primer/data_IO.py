"""
Module related to reading observations and reading/writing analysis results

The main functionalities are:
 - observations_from_config() -- load the observations for an analysis (inline values or text file)
 - read_observations() -- read observations from a whitespace delimited text file
 - generate_pseudodata() -- construct pseudodata from a known parameter value for closure tests
 - write/read_dict_to_h5() -- HDF5 serialization of (nested) dictionaries of arrays
 - write_dict_to_yaml() -- human readable summaries (e.g. diagnostics)

DATA STRUCTURE:
---------------
Observations file:
  # Comments are allowed
  1.23
  0.98  1.75   # Multiple values per line are fine as well

Sampling output (mcmc.h5):
  chain                 -- (n_steps, n_chains, n_parameters)
  log_prob              -- (n_steps, n_chains)
  acceptance_fraction   -- (n_chains,)
  observations          -- (n_observations,)
  parameter_names       -- (n_parameters,)
  autocorrelation_time  -- (n_parameters,), if available
  true_value            -- (n_parameters,), closure tests only

.. codeauthor:: James Mulligan, LBL/UCB
.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt
import yaml
from silx.io.dictdump import dicttoh5, h5todict

from bayesian_primer import analysis
from bayesian_primer import model as model_module

logger = logging.getLogger(__name__)


####################################################################################################################
# OBSERVATIONS
####################################################################################################################
def read_observations(filename: Path | str) -> npt.NDArray[np.float64]:
    """
    Read observations from a text file.

    :param filename: path to the whitespace delimited text file
    :return: 1darray of observations
    """
    filename = Path(filename)
    if not filename.exists():
        msg = f"Observations file {filename} does not exist"
        raise FileNotFoundError(msg)

    values = np.loadtxt(filename, comments="#", ndmin=1, dtype=np.float64).ravel()
    return model_module.validate_observations(values)


def observations_from_config(analysis_config: analysis.AnalysisConfig) -> npt.NDArray[np.float64]:
    """
    Load the observations specified in the analysis config.

    Either provide the values directly:
        observations:
          values: [1.2, 0.8, ...]
    or a text file, relative to the config file:
        observations:
          filename: data/observations.txt
    """
    observations_config = analysis_config.raw_analysis_config.get("observations")
    if not observations_config:
        msg = f"Please provide observations for analysis '{analysis_config.name}'"
        raise ValueError(msg)

    if "values" in observations_config and "filename" in observations_config:
        msg = f"Observations for analysis '{analysis_config.name}' specify both values and filename. Choose one."
        raise ValueError(msg)

    if "values" in observations_config:
        return model_module.validate_observations(observations_config["values"])

    filename = Path(observations_config["filename"])
    if not filename.is_absolute():
        filename = analysis_config.config_dir / filename
    logger.info(f"Reading observations from {filename}")
    return read_observations(filename)


def generate_pseudodata(
    model: model_module.NormalMeanModel,
    true_value: npt.ArrayLike,
    n_observations: int,
    rng: np.random.Generator,
) -> npt.NDArray[np.float64]:
    """
    Generate pseudodata from a known parameter value.

    :param model: model used to simulate the data
    :param true_value: parameter value, with shape (n_parameters,)
    :param n_observations: number of observations to generate
    :param rng: random number generator
    :return: 1darray of pseudodata
    """
    true_value = np.atleast_1d(np.asarray(true_value, dtype=np.float64))
    if true_value.shape != (model.n_parameters,):
        msg = f"True value has shape {true_value.shape}, but the model expects ({model.n_parameters},)"
        raise ValueError(msg)
    if n_observations < 1:
        msg = f"Need at least one pseudodata observation, but requested {n_observations}"
        raise ValueError(msg)

    pseudodata = model.simulate(true_value[np.newaxis, :], n_observations, rng)[0]
    return model_module.validate_observations(pseudodata)


####################################################################################################################
# WRITING AND READING RESULTS
####################################################################################################################
def write_dict_to_h5(results: dict[str, Any], output_dir: Path | str, filename: str, verbose: bool = True) -> None:
    """
    Write nested dictionary of ndarray to hdf5 file
    Note: all keys should be strings

    :param dict results: (nested) dictionary to write
    :param str output_dir: directory to write to
    :param str filename: name of hdf5 file to create (will overwrite)
    """
    output_dir = Path(output_dir)
    if verbose:
        logger.info(f"Writing results to {output_dir / filename}...")

    output_dir.mkdir(parents=True, exist_ok=True)
    dicttoh5(results, str(output_dir / filename), mode="w")

    if verbose:
        logger.info("Done.")


def read_dict_from_h5(input_dir: Path | str, filename: str, verbose: bool = True) -> dict[str, Any]:
    """
    Read dictionary of ndarrays from hdf5
    Note: all keys should be strings

    :param str input_dir: directory from which to read data
    :param str filename: name of hdf5 file to read
    """
    path = Path(input_dir) / filename
    if verbose:
        logger.info(f"Loading results from {path}...")

    if not path.exists():
        msg = f"Results file {path} does not exist. Did you run the previous steps?"
        raise FileNotFoundError(msg)
    results: dict[str, Any] = h5todict(str(path))

    if verbose:
        logger.info("Done.")

    return results


def _to_builtin(value: Any) -> Any:
    """Convert numpy types into builtin types so they can be safely dumped to YAML."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.ndarray):
        return _to_builtin(value.tolist())
    if isinstance(value, np.generic):
        return value.item()
    return value


def write_dict_to_yaml(results: dict[str, Any], output_dir: Path | str, filename: str) -> None:
    """
    Write a summary dictionary to YAML.

    :param dict results: (nested) dictionary to write. numpy values are converted to builtin types.
    :param str output_dir: directory to write to
    :param str filename: name of the YAML file to create (will overwrite)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Writing summary to {output_dir / filename}")
    with (output_dir / filename).open("w") as f:
        yaml.safe_dump(_to_builtin(results), f, sort_keys=False)
