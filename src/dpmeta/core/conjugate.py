"""Closed-form conjugate formulas for the normal DP mixture.

Observation model: ``y_i ~ N(phi_k, v_i)`` with ``v_i`` known, cluster
locations ``phi_k ~ N(mu, sigma0^2)``, base precision
``1/sigma0^2 ~ Gamma(tau1/2, rate=tau2/2)``, optionally
``mu ~ N(m0, s0^2)`` and ``alpha ~ Gamma(a0, rate=b0)``.

All functions are pure apart from the ``rng`` argument of the samplers.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

LOG_2PI = math.log(2.0 * math.pi)


def normal_logpdf(x, mean, variance):
    """Log density of ``N(mean, variance)``; broadcasts over arrays."""
    x = np.asarray(x, dtype=float)
    mean = np.asarray(mean, dtype=float)
    variance = np.asarray(variance, dtype=float)
    return -0.5 * (LOG_2PI + np.log(variance) + (x - mean) ** 2 / variance)


def log_likelihood(y: float, variance: float, locations: np.ndarray) -> np.ndarray:
    """Log likelihood of one observation under each cluster location."""
    return normal_logpdf(y, locations, variance)


def log_prior_predictive(y: float, variance: float, mu: float, base_variance: float) -> float:
    """Log marginal density of ``y`` with the location integrated over G0.

    ``phi ~ N(mu, base_variance)`` and ``y | phi ~ N(phi, variance)`` give
    ``y ~ N(mu, base_variance + variance)``.
    """
    return float(normal_logpdf(y, mu, base_variance + variance))


def location_posterior(
    effects: np.ndarray,
    variances: np.ndarray,
    mu: float,
    base_variance: float,
) -> Tuple[float, float]:
    """Posterior mean and variance of a cluster location.

    The posterior precision is the base precision plus the sum of the
    member precisions; the mean is the precision-weighted average of the
    members' effects and ``mu``.  With no members it reduces to the base
    measure.
    """
    effects = np.atleast_1d(np.asarray(effects, dtype=float))
    variances = np.atleast_1d(np.asarray(variances, dtype=float))
    precision = 1.0 / base_variance + float(np.sum(1.0 / variances))
    weighted = mu / base_variance + float(np.sum(effects / variances))
    return weighted / precision, 1.0 / precision


def sample_location(
    rng: np.random.Generator,
    effects: np.ndarray,
    variances: np.ndarray,
    mu: float,
    base_variance: float,
) -> float:
    mean, var = location_posterior(effects, variances, mu, base_variance)
    return float(rng.normal(mean, math.sqrt(var)))


def base_precision_posterior(
    locations: np.ndarray,
    mu: float,
    tau1: float,
    tau2: float,
) -> Tuple[float, float]:
    """Shape and rate of the Gamma conditional of the base precision."""
    locations = np.asarray(locations, dtype=float)
    shape = 0.5 * (tau1 + locations.size)
    rate = 0.5 * (tau2 + float(np.sum((locations - mu) ** 2)))
    return shape, rate


def sample_base_variance(
    rng: np.random.Generator,
    locations: np.ndarray,
    mu: float,
    tau1: float,
    tau2: float,
) -> float:
    shape, rate = base_precision_posterior(locations, mu, tau1, tau2)
    precision = rng.gamma(shape, 1.0 / rate)
    return float(1.0 / precision)


def mu_posterior(
    locations: np.ndarray,
    base_variance: float,
    prior_mean: float,
    prior_variance: float,
) -> Tuple[float, float]:
    """Posterior mean and variance of the base-measure mean given the locations."""
    locations = np.asarray(locations, dtype=float)
    precision = 1.0 / prior_variance + locations.size / base_variance
    weighted = prior_mean / prior_variance + float(np.sum(locations)) / base_variance
    return weighted / precision, 1.0 / precision


def sample_mu(
    rng: np.random.Generator,
    locations: np.ndarray,
    base_variance: float,
    prior_mean: float,
    prior_variance: float,
) -> float:
    mean, var = mu_posterior(locations, base_variance, prior_mean, prior_variance)
    return float(rng.normal(mean, math.sqrt(var)))


def sample_alpha(
    rng: np.random.Generator,
    alpha: float,
    n_clusters: int,
    n_studies: int,
    shape: float,
    rate: float,
) -> float:
    """Escobar & West (1995) auxiliary-variable update of the concentration.

    Draws ``eta ~ Beta(alpha + 1, n)`` and then ``alpha`` from a two-component
    mixture of Gammas with odds ``(a0 + k - 1) / (n (b0 - log eta))``.
    """
    eta = rng.beta(alpha + 1.0, n_studies)
    post_rate = rate - math.log(eta)
    odds = (shape + n_clusters - 1.0) / (n_studies * post_rate)
    weight = odds / (1.0 + odds)
    if rng.random() < weight:
        post_shape = shape + n_clusters
    else:
        post_shape = shape + n_clusters - 1.0
    return float(rng.gamma(post_shape, 1.0 / post_rate))
