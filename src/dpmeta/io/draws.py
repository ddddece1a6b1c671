"""Persistence of saved draws.

One record per draw: scalar columns for the draw index, sweep, cluster count
and hyperparameter values, plus two JSON-encoded columns holding the
assignment vector and the cluster table (id, location, size).  The same
records are written to Parquet or CSV depending on the file suffix.
"""

import json
from pathlib import Path
from typing import List, Sequence, Union

import pandas as pd

from ..core.errors import DataValidationError
from ..sampler.driver import MCMCDraw, MCMCResult
from ..utils.logging import get_logger

logger = get_logger(__name__)

DRAW_COLUMNS = [
    "draw",
    "sweep",
    "n_clusters",
    "alpha",
    "mu",
    "base_variance",
    "assignments",
    "clusters",
]


def draws_to_frame(draws: Sequence[MCMCDraw]) -> pd.DataFrame:
    records = []
    for d in draws:
        clusters = [
            {"id": int(cid), "location": float(loc), "size": int(size)}
            for cid, loc, size in zip(d.cluster_ids, d.locations, d.sizes)
        ]
        records.append(
            {
                "draw": d.index,
                "sweep": d.sweep,
                "n_clusters": d.n_clusters,
                "alpha": d.alpha,
                "mu": d.mu,
                "base_variance": d.base_variance,
                "assignments": json.dumps([int(a) for a in d.assignments]),
                "clusters": json.dumps(clusters),
            }
        )
    return pd.DataFrame(records, columns=DRAW_COLUMNS)


def frame_to_draws(df: pd.DataFrame) -> List[MCMCDraw]:
    missing = [c for c in DRAW_COLUMNS if c not in df.columns]
    if missing:
        raise DataValidationError(f"Draw table is missing columns: {missing}")
    draws = []
    for row in df.sort_values("draw").itertuples(index=False):
        clusters = json.loads(row.clusters)
        draws.append(
            MCMCDraw.from_records(
                index=int(row.draw),
                sweep=int(row.sweep),
                assignments=json.loads(row.assignments),
                cluster_ids=[c["id"] for c in clusters],
                locations=[c["location"] for c in clusters],
                sizes=[c["size"] for c in clusters],
                alpha=row.alpha,
                mu=row.mu,
                base_variance=row.base_variance,
            )
        )
    return draws


def save_draws(result: Union[MCMCResult, Sequence[MCMCDraw]], path: Path) -> Path:
    """Write draws to ``path`` (``.parquet`` or ``.csv``)."""
    path = Path(path)
    draws = result.draws if isinstance(result, MCMCResult) else result
    df = draws_to_frame(draws)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(path, index=False)
    elif suffix == ".csv":
        df.to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported draw file format: {path.suffix!r} (use .parquet or .csv)")
    logger.info(f"Saved {len(df)} draws to {path}")
    return path


def load_draws(path: Path) -> List[MCMCDraw]:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df = pd.read_parquet(path)
    elif suffix == ".csv":
        df = pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported draw file format: {path.suffix!r} (use .parquet or .csv)")
    return frame_to_draws(df)
