"""Concentration-parameter sensitivity sweeps.

Each alpha value gets its own chain with its own generator.  Seeds are
spawned from the configured seed with :class:`numpy.random.SeedSequence`, so
the chain for a given alpha is the same whether chains run sequentially or
on a process pool, and in whatever order they finish.
"""

from __future__ import annotations

import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .core.models import EffectDataset, Hyperparameters, MCMCConfig
from .posterior.summarizer import PosteriorSummarizer
from .sampler.driver import MCMCDriver, MCMCResult
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SensitivityResult:
    """Chains of a sweep keyed by alpha, plus a comparison table."""

    results: Dict[float, MCMCResult] = field(default_factory=dict)

    @property
    def alphas(self) -> List[float]:
        return sorted(self.results)

    def summary_frame(self) -> pd.DataFrame:
        rows = []
        for alpha in self.alphas:
            result = self.results[alpha]
            summarizer = PosteriorSummarizer.from_result(result)
            counts = summarizer.cluster_counts()
            dist = summarizer.cluster_count_distribution()
            rows.append(
                {
                    "alpha": alpha,
                    "mean_clusters": float(counts.mean()),
                    "sd_clusters": float(counts.std(ddof=1)) if counts.size > 1 else 0.0,
                    "modal_clusters": int(dist.idxmax()),
                    "p_one_cluster": float(dist.get(1, 0.0)),
                    "max_clusters": int(counts.max()),
                    "elapsed_seconds": result.elapsed_seconds,
                }
            )
        return pd.DataFrame(rows)


def _run_alpha_chain(
    dataset: EffectDataset,
    hyperparams: Hyperparameters,
    config: MCMCConfig,
    seed_sequence: np.random.SeedSequence,
) -> MCMCResult:
    rng = np.random.default_rng(seed_sequence)
    return MCMCDriver(dataset, hyperparams, config).run(rng=rng)


def run_sensitivity(
    dataset: EffectDataset,
    alphas: Sequence[float],
    hyperparams: Optional[Hyperparameters] = None,
    config: Optional[MCMCConfig] = None,
    max_workers: int = 1,
) -> SensitivityResult:
    """Fit one independent chain per concentration value.

    Args:
        dataset: Studies shared by every chain.
        alphas: Concentration values; each is a fixed scalar for its chain.
        hyperparams: Remaining prior settings (its ``alpha`` is replaced).
        config: Schedule shared by every chain.
        max_workers: Processes to use; 1 runs the chains in this process.

    Raises:
        ValueError: No alphas, repeated alphas, or hyperparameters carrying
            an alpha hyperprior.
    """
    hyperparams = hyperparams or Hyperparameters()
    config = config or MCMCConfig()
    alphas = [float(a) for a in alphas]
    if not alphas:
        raise ValueError("At least one alpha value is required")
    if len(set(alphas)) != len(alphas):
        raise ValueError(f"Repeated alpha values: {list(alphas)}")
    if hyperparams.learns_alpha:
        raise ValueError("Sensitivity sweeps need a fixed alpha; drop the alpha hyperprior")

    # Validation happens here, before any chain starts.
    settings_by_alpha = {
        float(a): Hyperparameters(**{**hyperparams.model_dump(), "alpha": a}) for a in alphas
    }
    seeds = np.random.SeedSequence(config.seed).spawn(len(alphas))
    jobs = list(zip(settings_by_alpha.items(), seeds))

    logger.info(f"Sensitivity sweep over alpha={sorted(settings_by_alpha)} on {max_workers} worker(s)")
    started = time.perf_counter()
    results: Dict[float, MCMCResult] = {}
    if max_workers <= 1:
        for (alpha, hp), seed in jobs:
            results[alpha] = _run_alpha_chain(dataset, hp, config, seed)
    else:
        with ProcessPoolExecutor(max_workers=min(max_workers, len(jobs))) as executor:
            futures = {
                executor.submit(_run_alpha_chain, dataset, hp, config, seed): alpha
                for (alpha, hp), seed in jobs
            }
            for future in as_completed(futures):
                alpha = futures[future]
                # A failed chain propagates and fails the whole sweep.
                results[alpha] = future.result()
                logger.info(f"Chain for alpha={alpha} finished ({len(results)}/{len(jobs)})")
    logger.info(f"Sensitivity sweep finished in {time.perf_counter() - started:.1f}s")
    return SensitivityResult(results=results)
