"""Load study data from CSV files."""

from pathlib import Path
from typing import Literal, Optional

import pandas as pd

from ..core.errors import DataValidationError
from ..core.models import EffectDataset
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _read_csv(path: Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise DataValidationError(f"File not found: {path}")
    df = pd.read_csv(path)
    if df.empty:
        raise DataValidationError(f"No rows in {path}")
    return df


def load_effects_csv(
    path: Path,
    effect_col: str = "effect",
    variance_col: Optional[str] = "variance",
    se_col: Optional[str] = None,
    study_col: Optional[str] = "study_id",
) -> EffectDataset:
    """Read effect estimates with variances (or standard errors) from a CSV file."""
    df = _read_csv(path)
    dataset = EffectDataset.from_frame(
        df,
        effect_col=effect_col,
        variance_col=variance_col,
        se_col=se_col,
        study_col=study_col,
    )
    logger.info(f"Loaded {dataset.n_studies} studies from {path}")
    return dataset


def load_proportions_csv(
    path: Path,
    events_col: str = "events",
    total_col: str = "total",
    study_col: Optional[str] = "study_id",
    transform: Literal["logit", "proportion"] = "logit",
    continuity: float = 0.5,
) -> EffectDataset:
    """Read binomial counts from a CSV file and convert them to prevalence effects."""
    df = _read_csv(path)
    required = [events_col, total_col] + ([study_col] if study_col else [])
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataValidationError(f"Columns not found: {missing}")
    if df[required].isna().any().any():
        raise DataValidationError("Missing values in count columns")
    dataset = EffectDataset.from_proportions(
        df[events_col].tolist(),
        df[total_col].tolist(),
        study_ids=df[study_col].astype(str).tolist() if study_col else None,
        transform=transform,
        continuity=continuity,
    )
    logger.info(f"Loaded {dataset.n_studies} studies ({transform} scale) from {path}")
    return dataset
