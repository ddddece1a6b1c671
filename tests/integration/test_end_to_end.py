"""End-to-end integration tests for the DP mixture meta-analysis.

These tests run full chains with realistic schedules and check the
posterior behaviour of the model rather than individual code paths.
They take a few seconds each.
"""

import math

import numpy as np
import pytest

from dpmeta.core.errors import DataValidationError
from dpmeta.core.models import EffectDataset, Hyperparameters, MCMCConfig
from dpmeta.posterior.summarizer import PosteriorSummarizer
from dpmeta.sampler.driver import MCMCDriver, run_chain
from dpmeta.sampler.gibbs import DPMixtureSampler
from dpmeta.sensitivity import run_sensitivity


@pytest.fixture
def two_group_dataset() -> EffectDataset:
    return EffectDataset.from_arrays(
        [0.1, 0.1, 0.1, 0.9, 0.9],
        [0.001] * 5,
        study_ids=["s1", "s2", "s3", "s4", "s5"],
    )


@pytest.mark.integration
def test_two_groups_recovered(two_group_dataset):
    """Well-separated groups co-cluster within and not across."""
    config = MCMCConfig(burn_in=1000, n_save=500, thinning=5, seed=42)
    result = run_chain(two_group_dataset, Hyperparameters(alpha=0.1), config)
    psm = PosteriorSummarizer.from_result(result).co_clustering_matrix()

    for i, j in [(0, 1), (0, 2), (1, 2), (3, 4)]:
        assert psm[i, j] > 0.8
    for i in range(3):
        for j in range(3, 5):
            assert psm[i, j] < 0.2

    summarizer = PosteriorSummarizer.from_result(result)
    np.testing.assert_array_equal(summarizer.point_clustering(), [0, 0, 0, 1, 1])
    clusters = summarizer.cluster_summary()
    assert clusters.loc[0, "posterior_mean"] == pytest.approx(0.1, abs=0.05)
    assert clusters.loc[1, "posterior_mean"] == pytest.approx(0.9, abs=0.05)


@pytest.mark.integration
def test_single_cluster_matches_closed_form():
    """With alpha near zero the shared location follows the conjugate posterior."""
    effects = np.array([0.2, 0.35, 0.5, 0.3])
    variances = np.array([0.04, 0.05, 0.06, 0.05])
    dataset = EffectDataset.from_arrays(effects, variances)
    # Base variance fixed at tau2 / tau1 = 1.
    hp = Hyperparameters(alpha=1e-10, mu=0.0, tau1=2.0, tau2=2.0, learn_base_variance=False)
    config = MCMCConfig(burn_in=100, n_save=2000, thinning=1, seed=7, init="single")
    result = run_chain(dataset, hp, config)

    assert np.all(result.cluster_counts() == 1)
    precision = 1.0 + np.sum(1.0 / variances)
    expected_mean = np.sum(effects / variances) / precision
    locations = result.effect_matrix()[:, 0]
    assert locations.mean() == pytest.approx(expected_mean, abs=0.01)
    assert locations.var() == pytest.approx(1.0 / precision, rel=0.15)


@pytest.mark.integration
def test_co_clustering_invariant_to_initial_labels():
    dataset = EffectDataset.from_arrays([0.0, 0.05, 0.1, 0.6, 0.65, 1.2], [0.01] * 6)
    hp = Hyperparameters(alpha=1.0)
    matrices = []
    for init in ["single", "singletons", (0, 1, 0, 1, 0, 1)]:
        config = MCMCConfig(burn_in=500, n_save=2000, thinning=5, seed=123, init=init)
        result = run_chain(dataset, hp, config)
        matrices.append(PosteriorSummarizer.from_result(result).co_clustering_matrix())
    for other in matrices[1:]:
        np.testing.assert_allclose(other, matrices[0], atol=0.1)


@pytest.mark.integration
def test_cluster_count_non_decreasing_in_alpha(two_group_dataset):
    config = MCMCConfig(burn_in=500, n_save=500, thinning=5, seed=11)
    sweep = run_sensitivity(two_group_dataset, [0.01, 1.0, 5.0], config=config)
    means = sweep.summary_frame().set_index("alpha")["mean_clusters"]
    # Cross-group merges never happen here, so small alphas sit at 2.
    assert means[0.01] <= means[1.0] + 0.02
    assert means[1.0] <= means[5.0] + 0.02
    assert means[5.0] > means[0.01]


@pytest.mark.integration
@pytest.mark.parametrize("shuffle", [False, True])
def test_fixed_seed_is_bit_identical(two_group_dataset, shuffle: bool):
    config = MCMCConfig(burn_in=200, n_save=100, thinning=2, seed=2024, shuffle=shuffle)
    hp = Hyperparameters(alpha=1.0)
    r1 = MCMCDriver(two_group_dataset, hp, config).run()
    r2 = MCMCDriver(two_group_dataset, hp, config).run()
    np.testing.assert_array_equal(r1.assignment_matrix(), r2.assignment_matrix())
    np.testing.assert_array_equal(r1.effect_matrix(), r2.effect_matrix())
    assert [d.base_variance for d in r1.draws] == [d.base_variance for d in r2.draws]


@pytest.mark.integration
def test_zero_variance_fails_before_sampling(monkeypatch):
    calls = []
    original = DPMixtureSampler.sweep

    def counting_sweep(self, state, rng):
        calls.append(1)
        return original(self, state, rng)

    monkeypatch.setattr(DPMixtureSampler, "sweep", counting_sweep)

    with pytest.raises(DataValidationError):
        dataset = EffectDataset.from_arrays([0.1, 0.2, 0.3], [0.01, 0.0, 0.02])
        run_chain(dataset, Hyperparameters(), MCMCConfig(burn_in=10, n_save=10, seed=0))
    assert calls == []


@pytest.mark.integration
def test_prevalence_pipeline():
    """Counts on the logit scale produce proportion summaries."""
    dataset = EffectDataset.from_proportions(
        [5, 6, 4, 40, 45], [100, 100, 100, 100, 100], study_ids=list("abcde")
    )
    result = run_chain(dataset, Hyperparameters(alpha=0.5), MCMCConfig(burn_in=300, n_save=300, thinning=2, seed=1))
    summarizer = PosteriorSummarizer.from_result(result)
    studies = summarizer.study_summary()
    low = studies.loc[studies["study_id"] == "a", "posterior_mean_proportion"].iloc[0]
    high = studies.loc[studies["study_id"] == "e", "posterior_mean_proportion"].iloc[0]
    assert 0.02 < low < 0.1
    assert 0.35 < high < 0.5
    predictive = summarizer.predictive_summary(seed=0)
    assert 0 < predictive["ci_lower_proportion"] < predictive["ci_upper_proportion"] < 1
    assert math.isfinite(predictive["mean"])
