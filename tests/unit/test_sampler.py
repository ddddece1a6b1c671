"""Unit tests for the Gibbs sweep."""

import math

import numpy as np
import pytest
from scipy import stats

from dpmeta.core.errors import NumericalInstabilityError
from dpmeta.core.models import EffectDataset, Hyperparameters
from dpmeta.sampler.gibbs import DPMixtureSampler
from dpmeta.sampler.state import DPState


@pytest.fixture
def dataset() -> EffectDataset:
    return EffectDataset.from_arrays(
        [0.1, 0.12, 0.08, 0.9, 0.92, 0.5, -0.3],
        [0.002, 0.003, 0.002, 0.002, 0.004, 0.05, 0.02],
    )


def test_sweep_preserves_partition_invariants(dataset) -> None:
    sampler = DPMixtureSampler(dataset, Hyperparameters(alpha=2.0))
    rng = np.random.default_rng(5)
    state = sampler.initial_state(rng, init="single")
    for _ in range(50):
        sampler.sweep(state, rng)
        state.check_invariants()
        assert np.all(state.sizes() >= 1)
        assert state.sizes().sum() == dataset.n_studies


def test_shuffled_sweep_preserves_invariants(dataset) -> None:
    sampler = DPMixtureSampler(dataset, Hyperparameters(alpha=1.0), shuffle=True)
    rng = np.random.default_rng(6)
    state = sampler.initial_state(rng, init="singletons")
    for _ in range(30):
        sampler.sweep(state, rng)
        state.check_invariants()


def test_step_leaves_input_untouched(dataset) -> None:
    sampler = DPMixtureSampler(dataset, Hyperparameters(alpha=1.0))
    rng = np.random.default_rng(1)
    state = sampler.initial_state(rng, init="singletons")
    before_assignments = state.assignments.copy()
    before_locations = state.locations().copy()
    before_variance = state.base_variance
    next_state = sampler.step(state, rng)
    np.testing.assert_array_equal(state.assignments, before_assignments)
    np.testing.assert_array_equal(state.locations(), before_locations)
    assert state.base_variance == before_variance
    next_state.check_invariants()


@pytest.mark.parametrize("shuffle", [False, True])
def test_sweeps_reproducible_given_generator(dataset, shuffle: bool) -> None:
    sampler = DPMixtureSampler(dataset, Hyperparameters(alpha=1.0), shuffle=shuffle)

    def trajectory(seed: int):
        rng = np.random.default_rng(seed)
        state = sampler.initial_state(rng)
        out = []
        for _ in range(20):
            sampler.sweep(state, rng)
            out.append((state.assignments.copy(), state.locations().copy(), state.base_variance))
        return out

    first, second = trajectory(99), trajectory(99)
    for (a1, l1, v1), (a2, l2, v2) in zip(first, second):
        np.testing.assert_array_equal(a1, a2)
        np.testing.assert_array_equal(l1, l2)
        assert v1 == v2


def test_assignment_log_weights(dataset) -> None:
    hp = Hyperparameters(alpha=0.7, mu=0.2, learn_base_variance=False)
    sampler = DPMixtureSampler(dataset, hp)
    state = DPState.initialize(dataset, hp, np.random.default_rng(0), init=[0, 0, 0, 1, 1, 2, 2])
    state.remove_study(0)
    ids, log_w = sampler.assignment_log_weights(state, 0)
    assert ids.size == 3
    assert log_w.size == 4
    y, v = dataset.effects[0], dataset.variances[0]
    for k, cid in enumerate(ids):
        expected = math.log(state.cluster_size(int(cid))) + stats.norm.logpdf(
            y, state.location(int(cid)), math.sqrt(v)
        )
        assert math.isclose(log_w[k], expected, rel_tol=1e-9)
    expected_new = math.log(0.7) + stats.norm.logpdf(y, 0.2, math.sqrt(1.0 + v))
    assert math.isclose(log_w[-1], expected_new, rel_tol=1e-9)


def test_weights_stay_finite_for_far_outlier() -> None:
    """Log-space weights survive likelihoods that underflow in linear space."""
    data = EffectDataset.from_arrays([0.0, 0.0, 50.0], [1e-4, 1e-4, 1e-4])
    sampler = DPMixtureSampler(data, Hyperparameters(alpha=1e-6))
    rng = np.random.default_rng(0)
    state = sampler.initial_state(rng, init="single")
    for _ in range(10):
        sampler.sweep(state, rng)
    assert state.assignments[0] == state.assignments[1]
    assert state.assignments[2] != state.assignments[0]


def test_collapsed_weights_raise_numerical_instability() -> None:
    data = EffectDataset.from_arrays([0.3], [0.01])
    sampler = DPMixtureSampler(data, Hyperparameters())
    rng = np.random.default_rng(0)
    state = sampler.initial_state(rng)
    state.base_variance = float("inf")
    with pytest.raises(NumericalInstabilityError) as excinfo:
        sampler.sweep(state, rng)
    assert excinfo.value.study_index == 0


def test_fixed_base_variance_not_resampled(dataset) -> None:
    hp = Hyperparameters(tau1=4.0, tau2=2.0, learn_base_variance=False)
    sampler = DPMixtureSampler(dataset, hp)
    rng = np.random.default_rng(2)
    state = sampler.initial_state(rng)
    for _ in range(10):
        sampler.sweep(state, rng)
    assert state.base_variance == 0.5
    assert state.mu == hp.mu
    assert state.alpha == hp.alpha


def test_hyperpriors_update_state(dataset) -> None:
    hp = Hyperparameters(
        alpha=1.0,
        mu=0.0,
        mu_prior_mean=0.0,
        mu_prior_variance=1.0,
        alpha_prior_shape=2.0,
        alpha_prior_rate=2.0,
    )
    sampler = DPMixtureSampler(dataset, hp)
    rng = np.random.default_rng(4)
    state = sampler.initial_state(rng)
    alphas, mus, variances = set(), set(), set()
    for _ in range(10):
        sampler.sweep(state, rng)
        alphas.add(state.alpha)
        mus.add(state.mu)
        variances.add(state.base_variance)
        assert state.alpha > 0
        assert state.base_variance > 0
    assert len(alphas) > 1
    assert len(mus) > 1
    assert len(variances) > 1
