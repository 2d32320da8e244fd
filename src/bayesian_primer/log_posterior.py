"""Define the log-posterior separately for performance reasons

In doing so, we can use global variables. This isn't a nice thing to do from a coding perspective,
but it avoids pickling the model and observations for every call when the chains are spread over
a multiprocessing pool. The pool initializer sets the globals once per process.
For the initial concept, see: https://emcee.readthedocs.io/en/stable/tutorials/parallel/#parallel

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import logging

import numpy as np
import numpy.typing as npt

from bayesian_primer import model as model_module

logger = logging.getLogger(__name__)


g_model: model_module.NormalMeanModel | None = None
g_observations: npt.NDArray[np.float64] | None = None


def initialize_pool_variables(
    local_model: model_module.NormalMeanModel, local_observations: npt.NDArray[np.float64]
) -> None:
    """Initialize global variables for the sampling (in this process, or in each pool worker)."""
    global g_model  # noqa: PLW0603
    global g_observations  # noqa: PLW0603
    g_model = local_model
    g_observations = model_module.validate_observations(local_observations)


def log_posterior(X: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Evaluate the unnormalized log-posterior for a set of parameter values.

    :param X: parameter values, with shape (n_parameters,) or (n_samples, n_parameters)
    :return: log-posterior with shape (n_samples,)
    """
    if g_model is None or g_observations is None:
        msg = "Log-posterior called before initialize_pool_variables()"
        raise RuntimeError(msg)

    # Convert to 2darray of shape (n_samples, n_parameters)
    X = np.atleast_2d(np.asarray(X, dtype=np.float64))
    return np.atleast_1d(g_model.log_posterior(X, g_observations))


def log_posterior_point(x: npt.ArrayLike) -> float:
    """Log-posterior for a single point, as needed by samplers which evaluate one walker at a time."""
    return float(log_posterior(x)[0])
