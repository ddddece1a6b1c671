"""Mutable state of one DP mixture chain.

Clusters live in an arena: parallel lists of locations and sizes indexed by
cluster id.  A cluster whose last member leaves is freed and its id pushed on
a free list, which :meth:`DPState.assign_study` pops before growing the
arena.  Ids therefore stay small and carry no meaning across sweeps.
"""

from __future__ import annotations

from typing import Dict, Hashable, List, Optional, Sequence, Union

import numpy as np

from ..core.errors import DataValidationError
from ..core.models import EffectDataset, Hyperparameters

UNASSIGNED = -1


class DPState:
    """Assignments, cluster locations and current hyperparameter values."""

    def __init__(self, n_studies: int, alpha: float, mu: float, base_variance: float) -> None:
        self.n_studies = n_studies
        self.alpha = alpha
        self.mu = mu
        self.base_variance = base_variance
        self.assignments = np.full(n_studies, UNASSIGNED, dtype=np.int64)
        self._locations: List[float] = []
        self._sizes: List[int] = []
        self._free: List[int] = []
        self._n_active = 0

    @classmethod
    def initialize(
        cls,
        dataset: EffectDataset,
        hyperparams: Hyperparameters,
        rng: np.random.Generator,
        init: Union[str, Sequence[Hashable]] = "single",
    ) -> "DPState":
        """Create the starting point of a chain.

        ``init`` is ``"single"`` (one cluster holding every study),
        ``"singletons"`` (one cluster per study) or a sequence of arbitrary
        labels, one per study.  Each initial cluster's location is drawn from
        the base measure with ``rng``.
        """
        n = dataset.n_studies
        if isinstance(init, str):
            if init == "single":
                labels: Sequence[Hashable] = [0] * n
            elif init == "singletons":
                labels = list(range(n))
            else:
                raise ValueError(f"Unknown initial clustering: {init!r}")
        else:
            labels = list(init)
            if len(labels) != n:
                raise DataValidationError(
                    f"Initial labels have length {len(labels)} but the dataset has {n} studies"
                )

        state = cls(
            n_studies=n,
            alpha=hyperparams.alpha,
            mu=hyperparams.mu,
            base_variance=hyperparams.initial_base_variance,
        )
        label_to_id: Dict[Hashable, int] = {}
        for i, label in enumerate(labels):
            if label in label_to_id:
                state.assign_study(i, label_to_id[label])
            else:
                location = float(rng.normal(state.mu, np.sqrt(state.base_variance)))
                label_to_id[label] = state.assign_study(i, None, location)
        return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def cluster_count(self) -> int:
        return self._n_active

    def active_ids(self) -> np.ndarray:
        """Ids of non-empty clusters in ascending order."""
        return np.array([cid for cid, size in enumerate(self._sizes) if size > 0], dtype=np.int64)

    def sizes(self, ids: Optional[np.ndarray] = None) -> np.ndarray:
        if ids is None:
            ids = self.active_ids()
        return np.array([self._sizes[cid] for cid in ids], dtype=np.int64)

    def locations(self, ids: Optional[np.ndarray] = None) -> np.ndarray:
        if ids is None:
            ids = self.active_ids()
        return np.array([self._locations[cid] for cid in ids], dtype=float)

    def cluster_size(self, cluster_id: int) -> int:
        return self._sizes[cluster_id]

    def location(self, cluster_id: int) -> float:
        self._require_active(cluster_id)
        return self._locations[cluster_id]

    def set_location(self, cluster_id: int, value: float) -> None:
        self._require_active(cluster_id)
        self._locations[cluster_id] = float(value)

    def members(self, cluster_id: int) -> np.ndarray:
        return np.flatnonzero(self.assignments == cluster_id)

    def study_effects(self) -> np.ndarray:
        """Implied effect of every study: the location of its cluster."""
        if np.any(self.assignments == UNASSIGNED):
            raise RuntimeError("Cannot compute study effects while a study is unassigned")
        arena = np.asarray(self._locations, dtype=float)
        return arena[self.assignments]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def remove_study(self, i: int) -> bool:
        """Take study ``i`` out of its cluster.

        Returns True when the cluster became empty and was deleted.
        """
        cid = int(self.assignments[i])
        if cid == UNASSIGNED:
            raise ValueError(f"Study {i} is not assigned to a cluster")
        self.assignments[i] = UNASSIGNED
        self._sizes[cid] -= 1
        if self._sizes[cid] == 0:
            self._locations[cid] = float("nan")
            self._free.append(cid)
            self._n_active -= 1
            return True
        return False

    def assign_study(self, i: int, cluster_id: Optional[int], location: Optional[float] = None) -> int:
        """Put study ``i`` into ``cluster_id``, or into a new cluster when it is None.

        A new cluster needs ``location``.  Returns the id the study landed in.
        """
        if self.assignments[i] != UNASSIGNED:
            raise ValueError(f"Study {i} is already assigned to cluster {self.assignments[i]}")
        if cluster_id is None:
            if location is None:
                raise ValueError("A new cluster needs a location")
            if self._free:
                cluster_id = self._free.pop()
                self._locations[cluster_id] = float(location)
                self._sizes[cluster_id] = 0
            else:
                cluster_id = len(self._sizes)
                self._locations.append(float(location))
                self._sizes.append(0)
            self._n_active += 1
        else:
            self._require_active(cluster_id)
        self._sizes[cluster_id] += 1
        self.assignments[i] = cluster_id
        return int(cluster_id)

    def _require_active(self, cluster_id: int) -> None:
        if not (0 <= cluster_id < len(self._sizes)) or self._sizes[cluster_id] == 0:
            raise KeyError(f"Cluster {cluster_id} does not exist")

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------
    def check_invariants(self) -> None:
        """Raise RuntimeError unless every study has one live cluster and no cluster is empty."""
        if np.any(self.assignments == UNASSIGNED):
            missing = np.flatnonzero(self.assignments == UNASSIGNED).tolist()
            raise RuntimeError(f"Unassigned studies: {missing}")
        counts = np.bincount(self.assignments, minlength=len(self._sizes))
        if not np.array_equal(counts, np.asarray(self._sizes, dtype=np.int64)):
            raise RuntimeError("Cluster sizes disagree with the assignment vector")
        active = int(np.count_nonzero(counts))
        if active != self._n_active:
            raise RuntimeError(f"Active cluster count {self._n_active} but {active} clusters have members")
        if sorted(self._free) != [cid for cid, size in enumerate(self._sizes) if size == 0]:
            raise RuntimeError("Free list does not match the empty arena slots")

    def copy(self) -> "DPState":
        other = DPState(self.n_studies, self.alpha, self.mu, self.base_variance)
        other.assignments = self.assignments.copy()
        other._locations = list(self._locations)
        other._sizes = list(self._sizes)
        other._free = list(self._free)
        other._n_active = self._n_active
        return other

    def __repr__(self) -> str:
        return (
            f"DPState(n_studies={self.n_studies}, clusters={self._n_active}, "
            f"alpha={self.alpha:.4g}, mu={self.mu:.4g}, base_variance={self.base_variance:.4g})"
        )
