"""Burn-in, thinning and draw collection for one chain."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np
import pandas as pd

from ..core.errors import IncompleteRunError
from ..core.models import EffectDataset, Hyperparameters, MCMCConfig
from ..utils.logging import get_logger
from .gibbs import DPMixtureSampler
from .state import DPState

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


def _frozen(values: np.ndarray) -> np.ndarray:
    values = np.array(values)
    values.flags.writeable = False
    return values


@dataclass(frozen=True)
class MCMCDraw:
    """Snapshot of the chain taken after a thinning interval.

    Attributes:
        index: Position of the draw in the saved sequence (0-based).
        sweep: Sweep number after which the draw was taken (1-based).
        assignments: Cluster id of every study.
        cluster_ids: Ids of the non-empty clusters, ascending.
        locations: Location of each cluster in ``cluster_ids``.
        sizes: Member count of each cluster in ``cluster_ids``.
        study_effects: Implied true effect of every study.
        alpha: Concentration parameter at the time of the draw.
        mu: Base-measure mean at the time of the draw.
        base_variance: Base-measure variance at the time of the draw.
    """

    index: int
    sweep: int
    assignments: np.ndarray
    cluster_ids: np.ndarray
    locations: np.ndarray
    sizes: np.ndarray
    study_effects: np.ndarray
    alpha: float
    mu: float
    base_variance: float

    @property
    def n_clusters(self) -> int:
        return int(self.cluster_ids.size)

    @property
    def n_studies(self) -> int:
        return int(self.assignments.size)

    @classmethod
    def from_state(cls, state: DPState, index: int, sweep: int) -> "MCMCDraw":
        ids = state.active_ids()
        return cls(
            index=index,
            sweep=sweep,
            assignments=_frozen(state.assignments),
            cluster_ids=_frozen(ids),
            locations=_frozen(state.locations(ids)),
            sizes=_frozen(state.sizes(ids)),
            study_effects=_frozen(state.study_effects()),
            alpha=float(state.alpha),
            mu=float(state.mu),
            base_variance=float(state.base_variance),
        )

    @classmethod
    def from_records(
        cls,
        index: int,
        sweep: int,
        assignments,
        cluster_ids,
        locations,
        sizes,
        alpha: float,
        mu: float,
        base_variance: float,
    ) -> "MCMCDraw":
        """Rebuild a draw from stored columns, recomputing the study effects."""
        assignments = np.asarray(assignments, dtype=np.int64)
        cluster_ids = np.asarray(cluster_ids, dtype=np.int64)
        locations = np.asarray(locations, dtype=float)
        lookup = dict(zip(cluster_ids.tolist(), locations.tolist()))
        effects = np.array([lookup[int(c)] for c in assignments], dtype=float)
        return cls(
            index=index,
            sweep=sweep,
            assignments=_frozen(assignments),
            cluster_ids=_frozen(cluster_ids),
            locations=_frozen(locations),
            sizes=_frozen(np.asarray(sizes, dtype=np.int64)),
            study_effects=_frozen(effects),
            alpha=float(alpha),
            mu=float(mu),
            base_variance=float(base_variance),
        )


@dataclass
class MCMCResult:
    """Complete output of one chain.

    A result only exists for a finished run: building one with fewer draws
    than ``config.n_save`` raises :class:`IncompleteRunError`.
    """

    dataset: EffectDataset
    hyperparams: Hyperparameters
    config: MCMCConfig
    draws: List[MCMCDraw] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def __post_init__(self) -> None:
        if len(self.draws) != self.config.n_save:
            raise IncompleteRunError(
                f"Result holds {len(self.draws)} draws but {self.config.n_save} were configured",
                draws_collected=len(self.draws),
            )

    @property
    def n_draws(self) -> int:
        return len(self.draws)

    def assignment_matrix(self) -> np.ndarray:
        """Draws x studies matrix of raw cluster ids."""
        return np.vstack([d.assignments for d in self.draws])

    def effect_matrix(self) -> np.ndarray:
        """Draws x studies matrix of implied study effects."""
        return np.vstack([d.study_effects for d in self.draws])

    def cluster_counts(self) -> np.ndarray:
        return np.array([d.n_clusters for d in self.draws], dtype=np.int64)

    def trace_frame(self) -> pd.DataFrame:
        """Per-draw scalar trace (cluster count and hyperparameter values)."""
        return pd.DataFrame(
            {
                "draw": [d.index for d in self.draws],
                "sweep": [d.sweep for d in self.draws],
                "n_clusters": self.cluster_counts(),
                "alpha": [d.alpha for d in self.draws],
                "mu": [d.mu for d in self.draws],
                "base_variance": [d.base_variance for d in self.draws],
            }
        )


class MCMCDriver:
    """Run one chain to completion.

    The driver owns the chain's state and random generator for the duration
    of :meth:`run`.  Burn-in sweeps are discarded; afterwards one draw is
    recorded every ``thinning`` sweeps until ``n_save`` draws exist, so a
    run performs exactly ``burn_in + n_save * thinning`` sweeps.
    """

    def __init__(self, dataset: EffectDataset, hyperparams: Hyperparameters, config: MCMCConfig) -> None:
        self.dataset = dataset
        self.hyperparams = hyperparams
        self.config = config
        self.sampler = DPMixtureSampler(dataset, hyperparams, shuffle=config.shuffle)

    def run(
        self,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> MCMCResult:
        """Execute the schedule and return every saved draw.

        Args:
            cancel_event: Checked before each sweep; once set the run stops
                and :class:`IncompleteRunError` is raised.
            progress: Called with ``(sweeps_done, total_sweeps)`` after every
                sweep.
            rng: Generator to use instead of one seeded from ``config.seed``.

        Raises:
            IncompleteRunError: The run was cancelled or interrupted.
            NumericalInstabilityError: A sweep could not normalise the
                assignment weights of a study.
        """
        config = self.config
        if rng is None:
            rng = np.random.default_rng(config.seed)
        total = config.total_sweeps
        logger.info(
            f"Starting DP mixture chain: {self.dataset.n_studies} studies, alpha={self.hyperparams.alpha}, "
            f"burn_in={config.burn_in}, n_save={config.n_save}, thinning={config.thinning}, seed={config.seed}"
        )
        started = time.perf_counter()
        state = self.sampler.initial_state(rng, init=config.init)
        draws: List[MCMCDraw] = []
        sweep = 0
        try:
            while sweep < total:
                if cancel_event is not None and cancel_event.is_set():
                    raise IncompleteRunError(
                        f"Run cancelled after {sweep} of {total} sweeps ({len(draws)} of {config.n_save} draws)",
                        sweeps_completed=sweep,
                        draws_collected=len(draws),
                    )
                self.sampler.sweep(state, rng)
                sweep += 1
                past_burn_in = sweep - config.burn_in
                if past_burn_in > 0 and past_burn_in % config.thinning == 0:
                    draws.append(MCMCDraw.from_state(state, index=len(draws), sweep=sweep))
                if config.display_interval and sweep % config.display_interval == 0:
                    phase = "burn-in" if past_burn_in <= 0 else "sampling"
                    logger.info(
                        f"Sweep {sweep}/{total} ({phase}): {state.cluster_count()} clusters, "
                        f"{len(draws)} draws saved",
                        extra={
                            "chain": {
                                "sweep": sweep,
                                "phase": phase,
                                "n_clusters": state.cluster_count(),
                                "alpha": state.alpha,
                                "base_variance": state.base_variance,
                            }
                        },
                    )
                if progress is not None:
                    progress(sweep, total)
        except KeyboardInterrupt as exc:
            raise IncompleteRunError(
                f"Run interrupted after {sweep} of {total} sweeps ({len(draws)} of {config.n_save} draws)",
                sweeps_completed=sweep,
                draws_collected=len(draws),
            ) from exc

        elapsed = time.perf_counter() - started
        logger.info(f"Chain finished: {total} sweeps in {elapsed:.1f}s, {len(draws)} draws saved")
        return MCMCResult(
            dataset=self.dataset,
            hyperparams=self.hyperparams,
            config=config,
            draws=draws,
            elapsed_seconds=elapsed,
        )


def run_chain(
    dataset: EffectDataset,
    hyperparams: Hyperparameters,
    config: MCMCConfig,
    cancel_event: Optional[threading.Event] = None,
) -> MCMCResult:
    """Convenience wrapper: build a driver and run it."""
    return MCMCDriver(dataset, hyperparams, config).run(cancel_event=cancel_event)
