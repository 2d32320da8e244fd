"""Normal model for an unknown mean.

The model has a single parameter, the mean `mu`, with

    mu ~ Normal(prior_mean, prior_sd)
    y_i | mu ~ Normal(mu, likelihood_sd)     (likelihood_sd known)

Since the prior is conjugate, the posterior is known in closed form, which makes this
model convenient for checking samplers: the MCMC estimate can always be compared to
`analytic_posterior()`.

Parameters are passed as arrays with shape (n_parameters,) for a single point, or
(n_samples, n_parameters) for a batch, following the convention used by the samplers.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

import attrs
import numpy as np
import numpy.typing as npt
import scipy.stats

logger = logging.getLogger(__name__)


def _positive_and_finite(instance: Any, attribute: attrs.Attribute, value: float) -> None:  # noqa: ARG001
    if not np.isfinite(value) or value <= 0:
        msg = f"{attribute.name} must be positive and finite, but received {value}"
        raise ValueError(msg)


def _finite(instance: Any, attribute: attrs.Attribute, value: float) -> None:  # noqa: ARG001
    if not np.isfinite(value):
        msg = f"{attribute.name} must be finite, but received {value}"
        raise ValueError(msg)


def validate_observations(observations: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Convert observations to a 1D float array, checking they are usable.

    Raises:
        ValueError: If there are no observations or if any are not finite.
    """
    y = np.asarray(observations, dtype=np.float64).ravel()
    if y.size == 0:
        msg = "At least one observation is required"
        raise ValueError(msg)
    if not np.all(np.isfinite(y)):
        msg = f"Observations must be finite. Found {np.count_nonzero(~np.isfinite(y))} non-finite values"
        raise ValueError(msg)
    return y


@attrs.frozen
class NormalMeanModel:
    """Normal likelihood with known standard deviation and a normal prior on the mean.

    Attributes:
        prior_mean: Mean of the normal prior on mu.
        prior_sd: Standard deviation of the normal prior on mu.
        likelihood_sd: Known standard deviation of each observation.
    """

    prior_mean: float = attrs.field(converter=float, validator=_finite)
    prior_sd: float = attrs.field(converter=float, validator=_positive_and_finite)
    likelihood_sd: float = attrs.field(converter=float, validator=_positive_and_finite)

    parameter_names: ClassVar[list[str]] = ["mu"]

    @classmethod
    def from_config(cls, model_config: dict[str, Any]) -> NormalMeanModel:
        try:
            return cls(
                prior_mean=model_config["prior_mean"],
                prior_sd=model_config["prior_sd"],
                likelihood_sd=model_config["likelihood_sd"],
            )
        except KeyError as e:
            msg = f"Model configuration is missing required setting {e}"
            raise KeyError(msg) from e

    @property
    def n_parameters(self) -> int:
        return len(self.parameter_names)

    def _mu(self, parameters: npt.ArrayLike) -> npt.NDArray[np.float64]:
        # Last axis is the parameter axis. mu is the only parameter.
        return np.asarray(parameters, dtype=np.float64)[..., 0]

    def log_prior(self, parameters: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Log prior density of the parameters."""
        return scipy.stats.norm.logpdf(self._mu(parameters), loc=self.prior_mean, scale=self.prior_sd)

    def log_likelihood(self, parameters: npt.ArrayLike, observations: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Log likelihood of the observations, summed over the observations."""
        mu = self._mu(parameters)
        y = np.asarray(observations, dtype=np.float64)
        return scipy.stats.norm.logpdf(y, loc=mu[..., np.newaxis], scale=self.likelihood_sd).sum(axis=-1)

    def log_posterior(self, parameters: npt.ArrayLike, observations: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Unnormalized log posterior, i.e. log(prior * likelihood).

        The normalization (the evidence) doesn't depend on the parameters, so it cancels in
        the Metropolis ratio.
        """
        return self.log_prior(parameters) + self.log_likelihood(parameters, observations)

    def analytic_posterior(self, observations: npt.ArrayLike) -> tuple[float, float]:
        """Conjugate posterior for mu.

        Returns:
            (mean, standard deviation) of the normal posterior.
        """
        y = validate_observations(observations)
        prior_precision = 1.0 / self.prior_sd**2
        data_precision = y.size / self.likelihood_sd**2
        posterior_precision = prior_precision + data_precision
        posterior_mean = (self.prior_mean * prior_precision + y.sum() / self.likelihood_sd**2) / posterior_precision
        return float(posterior_mean), float(np.sqrt(1.0 / posterior_precision))

    def sample_prior(self, n_samples: int, rng: np.random.Generator) -> npt.NDArray[np.float64]:
        """Draw parameters from the prior, with shape (n_samples, n_parameters)."""
        return rng.normal(self.prior_mean, self.prior_sd, size=(n_samples, self.n_parameters))

    def simulate(
        self, parameters: npt.ArrayLike, n_observations: int, rng: np.random.Generator
    ) -> npt.NDArray[np.float64]:
        """Simulate datasets from the likelihood.

        Args:
            parameters: Parameter values with shape (n_samples, n_parameters).
            n_observations: Number of observations in each simulated dataset.
            rng: Random number generator.
        Returns:
            Simulated datasets with shape (n_samples, n_observations).
        """
        mu = np.atleast_1d(self._mu(np.atleast_2d(parameters)))
        return rng.normal(mu[:, np.newaxis], self.likelihood_sd, size=(mu.shape[0], n_observations))
