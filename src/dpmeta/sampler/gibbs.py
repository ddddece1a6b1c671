"""Collapsed-assignment Gibbs sampler for the normal DP mixture.

Each sweep follows the Polya-urn scheme (Neal 2000, algorithm 2): every study
is removed from its cluster and reassigned to an existing cluster with weight
proportional to ``size * N(y_i | phi_c, v_i)`` or to a new cluster with weight
proportional to ``alpha * N(y_i | mu, sigma0^2 + v_i)``.  Weights are computed
in log space and normalised with log-sum-exp.  After all assignments the
cluster locations and the enabled hyperparameters are refreshed from their
conjugate conditionals.

Studies are visited in index order unless ``shuffle`` is set, in which case a
permutation is drawn from the chain's generator at the start of each sweep.
Either way a sweep is a deterministic function of the state and the
generator.
"""

from __future__ import annotations

import math

import numpy as np
from scipy.special import logsumexp

from ..core import conjugate
from ..core.errors import NumericalInstabilityError
from ..core.models import EffectDataset, Hyperparameters
from .state import DPState


class DPMixtureSampler:
    """Advance a :class:`DPState` one Gibbs sweep at a time."""

    def __init__(self, dataset: EffectDataset, hyperparams: Hyperparameters, shuffle: bool = False) -> None:
        self.dataset = dataset
        self.hyperparams = hyperparams
        self.shuffle = shuffle
        self._effects = dataset.effects
        self._variances = dataset.variances

    def initial_state(self, rng: np.random.Generator, init="single") -> DPState:
        return DPState.initialize(self.dataset, self.hyperparams, rng, init=init)

    def step(self, state: DPState, rng: np.random.Generator) -> DPState:
        """Return the next state of the chain without touching ``state``."""
        next_state = state.copy()
        self.sweep(next_state, rng)
        return next_state

    def sweep(self, state: DPState, rng: np.random.Generator) -> DPState:
        """Run one full sweep in place and return ``state``."""
        if self.shuffle:
            order = rng.permutation(state.n_studies)
        else:
            order = range(state.n_studies)
        for i in order:
            self._reassign(state, int(i), rng)
        self.resample_locations(state, rng)
        self.resample_hyperparameters(state, rng)
        return state

    def assignment_log_weights(self, state: DPState, i: int):
        """Unnormalised log weights for study ``i``, which must be unassigned.

        Returns ``(cluster_ids, log_weights)`` where the last weight belongs
        to a new cluster.
        """
        y = self._effects[i]
        v = self._variances[i]
        ids = state.active_ids()
        log_existing = np.log(state.sizes(ids)) + conjugate.log_likelihood(y, v, state.locations(ids))
        log_new = math.log(state.alpha) + conjugate.log_prior_predictive(y, v, state.mu, state.base_variance)
        return ids, np.append(log_existing, log_new)

    def _reassign(self, state: DPState, i: int, rng: np.random.Generator) -> None:
        state.remove_study(i)
        ids, log_weights = self.assignment_log_weights(state, i)
        log_norm = logsumexp(log_weights)
        if not np.isfinite(log_norm):
            raise NumericalInstabilityError(
                f"Assignment weights for study {self.dataset[i].study_id!r} cannot be normalised "
                f"(log normaliser {log_norm})",
                study_index=i,
            )
        probs = np.exp(log_weights - log_norm)
        choice = int(rng.choice(probs.size, p=probs / probs.sum()))
        if choice == ids.size:
            location = conjugate.sample_location(
                rng, self._effects[i], self._variances[i], state.mu, state.base_variance
            )
            state.assign_study(i, None, location)
        else:
            state.assign_study(i, int(ids[choice]))

    def resample_locations(self, state: DPState, rng: np.random.Generator) -> None:
        """Draw every cluster location from its posterior given its members."""
        for cid in state.active_ids():
            members = state.members(int(cid))
            location = conjugate.sample_location(
                rng, self._effects[members], self._variances[members], state.mu, state.base_variance
            )
            state.set_location(int(cid), location)

    def resample_hyperparameters(self, state: DPState, rng: np.random.Generator) -> None:
        hp = self.hyperparams
        if hp.learn_base_variance:
            state.base_variance = conjugate.sample_base_variance(
                rng, state.locations(), state.mu, hp.tau1, hp.tau2
            )
        if hp.learns_mu:
            state.mu = conjugate.sample_mu(
                rng, state.locations(), state.base_variance, hp.mu_prior_mean, hp.mu_prior_variance
            )
        if hp.learns_alpha:
            state.alpha = conjugate.sample_alpha(
                rng,
                state.alpha,
                state.cluster_count(),
                state.n_studies,
                hp.alpha_prior_shape,
                hp.alpha_prior_rate,
            )
