"""Posterior summaries of a saved draw sequence.

Cluster ids are exchangeable across draws, so nothing here counts raw ids.
Membership is summarised through the posterior co-clustering matrix (the
fraction of draws in which two studies share a cluster) or after a canonical
relabeling that ranks each draw's clusters by location.  Both are
deterministic post-processing steps over the draws.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.conjugate import normal_logpdf
from ..core.models import EffectDataset
from ..sampler.driver import MCMCDraw, MCMCResult
from ..utils.logging import get_logger

logger = get_logger(__name__)

Z_95 = 1.959963984540054


def credible_interval(values: Sequence[float], level: float = 0.95, method: str = "quantile") -> Tuple[float, float]:
    """Equal-tailed or highest-posterior-density interval of a draw sequence.

    Args:
        values: Draws of a scalar functional.
        level: Posterior mass inside the interval, in (0, 1).
        method: ``"quantile"`` for the equal-tailed interval or ``"hpd"``
            for the shortest interval holding ``level`` of the draws.
    """
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must lie in (0, 1), got {level}")
    values = np.asarray(values, dtype=float).ravel()
    if values.size == 0:
        raise ValueError("Cannot compute an interval from zero draws")
    if method == "quantile":
        tail = (1.0 - level) / 2.0
        lower, upper = np.quantile(values, [tail, 1.0 - tail])
        return float(lower), float(upper)
    if method == "hpd":
        ordered = np.sort(values)
        n = ordered.size
        n_in = int(math.floor(level * n))
        if n_in == 0 or n_in >= n:
            return float(ordered[0]), float(ordered[-1])
        widths = ordered[n_in:] - ordered[: n - n_in]
        start = int(np.argmin(widths))
        return float(ordered[start]), float(ordered[start + n_in])
    raise ValueError(f"Unknown interval method: {method!r}")


class PosteriorSummarizer:
    """Reduce saved draws to study-, cluster- and model-level summaries."""

    def __init__(self, draws: Sequence[MCMCDraw], dataset: EffectDataset) -> None:
        if not draws:
            raise ValueError("At least one draw is required")
        n = dataset.n_studies
        if any(d.n_studies != n for d in draws):
            raise ValueError("Every draw must cover the dataset's studies")
        self.draws = list(draws)
        self.dataset = dataset
        self._assignments = np.vstack([d.assignments for d in self.draws])
        self._effects = np.vstack([d.study_effects for d in self.draws])
        self._psm: Optional[np.ndarray] = None
        self._labels: Dict[str, np.ndarray] = {}

    @classmethod
    def from_result(cls, result: MCMCResult) -> "PosteriorSummarizer":
        return cls(result.draws, result.dataset)

    @property
    def n_draws(self) -> int:
        return len(self.draws)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def co_clustering_matrix(self) -> np.ndarray:
        """Posterior probability that studies i and j share a cluster."""
        if self._psm is None:
            n = self.dataset.n_studies
            counts = np.zeros((n, n), dtype=float)
            for row in self._assignments:
                counts += row[:, None] == row[None, :]
            self._psm = counts / self.n_draws
        return self._psm

    def co_clustering(self) -> pd.DataFrame:
        ids = self.dataset.study_ids
        return pd.DataFrame(self.co_clustering_matrix(), index=ids, columns=ids)

    def relabel_draws(self) -> np.ndarray:
        """Draws x studies labels where 0 is each draw's lowest-located cluster."""
        relabeled = np.empty_like(self._assignments)
        for d, draw in enumerate(self.draws):
            order = np.argsort(draw.locations, kind="stable")
            rank = {int(draw.cluster_ids[k]): r for r, k in enumerate(order)}
            relabeled[d] = [rank[int(c)] for c in draw.assignments]
        return relabeled

    def point_clustering(self, method: str = "dahl") -> np.ndarray:
        """Single partition summarising the posterior.

        ``"dahl"`` picks the saved partition closest in squared error to the
        co-clustering matrix (Dahl 2006).  ``"relabel"`` takes each study's
        most frequent canonical label from :meth:`relabel_draws`.  Labels are
        renumbered 0..K-1 by ascending posterior mean cluster effect.
        """
        if method in self._labels:
            return self._labels[method]
        if method == "dahl":
            psm = self.co_clustering_matrix()
            losses = [
                float(np.sum(((row[:, None] == row[None, :]) - psm) ** 2)) for row in self._assignments
            ]
            best = int(np.argmin(losses))
            raw = self._assignments[best]
            logger.debug(f"Dahl clustering picked draw {best} with loss {losses[best]:.4f}")
        elif method == "relabel":
            relabeled = self.relabel_draws()
            raw = np.array([np.bincount(col).argmax() for col in relabeled.T], dtype=np.int64)
        else:
            raise ValueError(f"Unknown clustering method: {method!r}")
        labels = self._renumber(raw)
        self._labels[method] = labels
        return labels

    def _renumber(self, raw: np.ndarray) -> np.ndarray:
        groups = np.unique(raw)
        group_means = [float(self._effects[:, raw == g].mean()) for g in groups]
        order = np.argsort(group_means, kind="stable")
        mapping = {int(groups[k]): new for new, k in enumerate(order)}
        return np.array([mapping[int(g)] for g in raw], dtype=np.int64)

    # ------------------------------------------------------------------
    # Cluster counts
    # ------------------------------------------------------------------
    def cluster_counts(self) -> np.ndarray:
        return np.array([d.n_clusters for d in self.draws], dtype=np.int64)

    def cluster_count_distribution(self) -> pd.Series:
        """Posterior probability of each observed number of clusters."""
        counts = pd.Series(self.cluster_counts()).value_counts(normalize=True).sort_index()
        counts.index.name = "n_clusters"
        counts.name = "probability"
        return counts

    def mean_cluster_count(self) -> float:
        return float(self.cluster_counts().mean())

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------
    def study_summary(self, level: float = 0.95, method: str = "quantile", clustering: str = "dahl") -> pd.DataFrame:
        """Posterior mean, sd and interval of every study's true effect."""
        labels = self.point_clustering(clustering)
        rows = []
        for i, study in enumerate(self.dataset):
            column = self._effects[:, i]
            lower, upper = credible_interval(column, level, method)
            rows.append(
                {
                    "study_id": study.study_id,
                    "effect": study.effect,
                    "variance": study.variance,
                    "posterior_mean": float(column.mean()),
                    "posterior_sd": float(column.std(ddof=1)) if column.size > 1 else 0.0,
                    "ci_lower": lower,
                    "ci_upper": upper,
                    "cluster": int(labels[i]),
                }
            )
        df = pd.DataFrame(rows)
        if self.dataset.scale != "generic":
            back = self.dataset.back_transform
            df["proportion"] = back(df["effect"].to_numpy())
            df["posterior_mean_proportion"] = back(self._effects).mean(axis=0)
            df["ci_lower_proportion"] = back(df["ci_lower"].to_numpy())
            df["ci_upper_proportion"] = back(df["ci_upper"].to_numpy())
        return df

    def cluster_summary(self, level: float = 0.95, method: str = "quantile", clustering: str = "dahl") -> pd.DataFrame:
        """One row per cluster of the point partition.

        The cluster effect in each draw is the average implied effect of the
        cluster's members, which equals the shared location whenever the
        members are together in that draw.
        """
        labels = self.point_clustering(clustering)
        ids = np.array(self.dataset.study_ids)
        rows = []
        for k in range(int(labels.max()) + 1):
            members = labels == k
            per_draw = self._effects[:, members].mean(axis=1)
            lower, upper = credible_interval(per_draw, level, method)
            rows.append(
                {
                    "cluster": k,
                    "size": int(members.sum()),
                    "members": ", ".join(ids[members].tolist()),
                    "posterior_mean": float(per_draw.mean()),
                    "ci_lower": lower,
                    "ci_upper": upper,
                }
            )
        df = pd.DataFrame(rows)
        if self.dataset.scale != "generic":
            back = self.dataset.back_transform
            df["posterior_mean_proportion"] = [
                float(back(self._effects[:, labels == k].mean(axis=1)).mean()) for k in df["cluster"]
            ]
            df["ci_lower_proportion"] = back(df["ci_lower"].to_numpy())
            df["ci_upper_proportion"] = back(df["ci_upper"].to_numpy())
        return df

    # ------------------------------------------------------------------
    # Prediction for a new study
    # ------------------------------------------------------------------
    def _predictive_weights(self, draw: MCMCDraw) -> Tuple[np.ndarray, float]:
        total = draw.alpha + draw.n_studies
        return draw.sizes / total, draw.alpha / total

    def predictive_density(self, grid: Sequence[float], new_variance: Optional[float] = None) -> np.ndarray:
        """Posterior predictive density of a new study's observed effect.

        Each draw contributes the Polya-urn mixture
        ``sum_k n_k/(alpha+n) N(x; phi_k, v) + alpha/(alpha+n) N(x; mu, sigma0^2 + v)``;
        the draws are averaged.  ``new_variance`` is the new study's sampling
        variance and defaults to the median variance of the dataset.
        """
        if new_variance is None:
            new_variance = float(np.median(self.dataset.variances))
        if new_variance <= 0:
            raise ValueError("new_variance must be positive for a density of observed effects")
        grid = np.atleast_1d(np.asarray(grid, dtype=float))
        density = np.zeros_like(grid)
        for draw in self.draws:
            weights, new_weight = self._predictive_weights(draw)
            components = np.exp(normal_logpdf(grid[None, :], draw.locations[:, None], new_variance))
            density += weights @ components
            density += new_weight * np.exp(normal_logpdf(grid, draw.mu, draw.base_variance + new_variance))
        return density / self.n_draws

    def sample_predictive(self, n_samples: int, rng: np.random.Generator, new_variance: float = 0.0) -> np.ndarray:
        """Draw effects of a new study from the posterior predictive.

        With ``new_variance=0`` these are true effects; a positive value
        adds sampling noise of that variance.
        """
        if new_variance < 0:
            raise ValueError("new_variance must be non-negative")
        picks = rng.integers(self.n_draws, size=n_samples)
        samples = np.empty(n_samples, dtype=float)
        for s, d in enumerate(picks):
            draw = self.draws[int(d)]
            weights, new_weight = self._predictive_weights(draw)
            probs = np.append(weights, new_weight)
            k = int(rng.choice(probs.size, p=probs / probs.sum()))
            if k == draw.n_clusters:
                samples[s] = rng.normal(draw.mu, math.sqrt(draw.base_variance + new_variance))
            elif new_variance > 0:
                samples[s] = rng.normal(draw.locations[k], math.sqrt(new_variance))
            else:
                samples[s] = draw.locations[k]
        return samples

    def predictive_summary(
        self,
        level: float = 0.95,
        n_samples: int = 4000,
        seed: Optional[int] = None,
        new_variance: float = 0.0,
    ) -> Dict[str, float]:
        rng = np.random.default_rng(seed)
        samples = self.sample_predictive(n_samples, rng, new_variance=new_variance)
        lower, upper = credible_interval(samples, level)
        summary = {
            "mean": float(samples.mean()),
            "sd": float(samples.std(ddof=1)) if samples.size > 1 else 0.0,
            "ci_lower": lower,
            "ci_upper": upper,
        }
        if self.dataset.scale != "generic":
            summary["mean_proportion"] = float(self.dataset.back_transform(samples).mean())
            summary["ci_lower_proportion"] = float(self.dataset.back_transform(lower))
            summary["ci_upper_proportion"] = float(self.dataset.back_transform(upper))
        return summary

    # ------------------------------------------------------------------
    # Hand-off to plotting
    # ------------------------------------------------------------------
    def forest_plot_frame(self, level: float = 0.95, clustering: str = "dahl") -> pd.DataFrame:
        """Rows for a forest plot grouped by posterior cluster."""
        studies = self.study_summary(level=level, clustering=clustering)
        clusters = self.cluster_summary(level=level, clustering=clustering)
        rows: List[Dict] = []
        for _, s in studies.sort_values(["cluster", "posterior_mean"], kind="stable").iterrows():
            se = math.sqrt(s["variance"])
            rows.append(
                {
                    "study": s["study_id"],
                    "cluster": int(s["cluster"]),
                    "effect": s["effect"],
                    "ci_lower": s["effect"] - Z_95 * se,
                    "ci_upper": s["effect"] + Z_95 * se,
                    "posterior_mean": s["posterior_mean"],
                    "posterior_lower": s["ci_lower"],
                    "posterior_upper": s["ci_upper"],
                    "type": "study",
                }
            )
        for _, c in clusters.iterrows():
            rows.append(
                {
                    "study": f"Cluster {int(c['cluster'])} (k={int(c['size'])})",
                    "cluster": int(c["cluster"]),
                    "effect": None,
                    "ci_lower": None,
                    "ci_upper": None,
                    "posterior_mean": c["posterior_mean"],
                    "posterior_lower": c["ci_lower"],
                    "posterior_upper": c["ci_upper"],
                    "type": "cluster",
                }
            )
        return pd.DataFrame(rows)
