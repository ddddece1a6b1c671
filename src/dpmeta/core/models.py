"""Core domain models: study observations, datasets and run inputs."""

from __future__ import annotations

import math
from collections import Counter
from typing import Iterable, Iterator, List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import DataValidationError

EffectScale = Literal["generic", "logit", "proportion"]


class StudyObservation(BaseModel):
    """One study's effect estimate with its known sampling variance."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    study_id: str = Field(..., min_length=1)
    effect: float
    variance: float = Field(..., gt=0, description="Sampling variance, treated as known")

    @property
    def se(self) -> float:
        return math.sqrt(self.variance)


class EffectDataset:
    """Ordered, immutable collection of study observations.

    The dataset is the only input the sampler reads study data from, so all
    consistency checks happen here: at least one study, unique identifiers,
    finite effects and strictly positive finite variances.  Violations raise
    :class:`DataValidationError` and nothing is dropped or coerced.
    """

    def __init__(self, studies: Iterable[StudyObservation], scale: EffectScale = "generic") -> None:
        studies = tuple(studies)
        if not studies:
            raise DataValidationError("Dataset must contain at least one study")
        ids = [s.study_id for s in studies]
        if len(set(ids)) != len(ids):
            dupes = sorted(sid for sid, count in Counter(ids).items() if count > 1)
            raise DataValidationError(f"Duplicate study identifiers: {dupes}")
        if scale not in ("generic", "logit", "proportion"):
            raise DataValidationError(f"Unknown effect scale: {scale!r}")
        self._studies: Tuple[StudyObservation, ...] = studies
        self.scale: EffectScale = scale
        self._effects = np.array([s.effect for s in studies], dtype=float)
        self._variances = np.array([s.variance for s in studies], dtype=float)
        self._effects.flags.writeable = False
        self._variances.flags.writeable = False

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_arrays(
        cls,
        effects: Sequence[float],
        variances: Sequence[float],
        study_ids: Optional[Sequence[str]] = None,
        scale: EffectScale = "generic",
    ) -> "EffectDataset":
        """Build a dataset from parallel sequences of effects and variances."""
        effects = list(effects)
        variances = list(variances)
        if len(effects) != len(variances):
            raise DataValidationError(
                f"Mismatched lengths: {len(effects)} effects but {len(variances)} variances"
            )
        if study_ids is None:
            study_ids = [f"study_{i + 1}" for i in range(len(effects))]
        study_ids = [str(s) for s in study_ids]
        if len(study_ids) != len(effects):
            raise DataValidationError(
                f"Mismatched lengths: {len(study_ids)} identifiers but {len(effects)} effects"
            )
        studies = []
        for sid, effect, variance in zip(study_ids, effects, variances):
            try:
                studies.append(StudyObservation(study_id=sid, effect=effect, variance=variance))
            except ValidationError as exc:
                raise DataValidationError(f"Invalid observation for study {sid!r}: {exc}") from exc
        return cls(studies, scale=scale)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        effect_col: str = "effect",
        variance_col: Optional[str] = "variance",
        se_col: Optional[str] = None,
        study_col: Optional[str] = "study_id",
        scale: EffectScale = "generic",
    ) -> "EffectDataset":
        """Build a dataset from a DataFrame.

        Either ``variance_col`` or ``se_col`` supplies the sampling
        uncertainty; standard errors are squared.  Missing values are a
        validation error rather than rows to skip.
        """
        if se_col is not None:
            uncertainty_col = se_col
        elif variance_col is not None:
            uncertainty_col = variance_col
        else:
            raise DataValidationError("Either variance_col or se_col must be given")
        required = [effect_col, uncertainty_col] + ([study_col] if study_col else [])
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise DataValidationError(f"Columns not found: {missing}")
        subset = df[required]
        if subset.isna().any().any():
            bad_rows = subset.index[subset.isna().any(axis=1)].tolist()
            raise DataValidationError(f"Missing values in rows {bad_rows}")
        try:
            effects = subset[effect_col].astype(float).tolist()
            uncertainty = subset[uncertainty_col].astype(float).to_numpy()
        except (TypeError, ValueError) as exc:
            raise DataValidationError(f"Non-numeric effect or uncertainty column: {exc}") from exc
        variances = (uncertainty ** 2 if se_col is not None else uncertainty).tolist()
        if se_col is not None and np.any(uncertainty <= 0):
            raise DataValidationError("Standard errors must be strictly positive")
        ids = subset[study_col].astype(str).tolist() if study_col else None
        return cls.from_arrays(effects, variances, study_ids=ids, scale=scale)

    @classmethod
    def from_proportions(
        cls,
        events: Sequence[int],
        totals: Sequence[int],
        study_ids: Optional[Sequence[str]] = None,
        transform: Literal["logit", "proportion"] = "logit",
        continuity: float = 0.5,
    ) -> "EffectDataset":
        """Build a dataset of prevalence estimates from binomial counts.

        Studies with zero events or with every subject an event receive a
        continuity correction (``continuity`` added to both cells) so that
        their variance stays strictly positive.
        """
        events_arr = np.asarray(events, dtype=float)
        totals_arr = np.asarray(totals, dtype=float)
        if events_arr.shape != totals_arr.shape:
            raise DataValidationError(
                f"Mismatched lengths: {events_arr.size} event counts but {totals_arr.size} totals"
            )
        if events_arr.ndim != 1:
            raise DataValidationError("Event counts must be one-dimensional")
        if np.any(totals_arr <= 0) or np.any(events_arr < 0) or np.any(events_arr > totals_arr):
            raise DataValidationError("Counts must satisfy 0 <= events <= totals and totals > 0")
        if np.any(events_arr != np.round(events_arr)) or np.any(totals_arr != np.round(totals_arr)):
            raise DataValidationError("Counts must be whole numbers")
        if continuity <= 0:
            raise DataValidationError("Continuity correction must be positive")

        corrected = (events_arr == 0) | (events_arr == totals_arr)
        e = np.where(corrected, events_arr + continuity, events_arr)
        n = np.where(corrected, totals_arr + 2 * continuity, totals_arr)
        if transform == "logit":
            effects = np.log(e / (n - e))
            variances = 1.0 / e + 1.0 / (n - e)
        elif transform == "proportion":
            p = e / n
            effects = p
            variances = p * (1.0 - p) / n
        else:
            raise DataValidationError(f"Unknown transform: {transform!r}")
        return cls.from_arrays(effects.tolist(), variances.tolist(), study_ids=study_ids, scale=transform)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def studies(self) -> Tuple[StudyObservation, ...]:
        return self._studies

    @property
    def study_ids(self) -> List[str]:
        return [s.study_id for s in self._studies]

    @property
    def effects(self) -> np.ndarray:
        return self._effects

    @property
    def variances(self) -> np.ndarray:
        return self._variances

    @property
    def n_studies(self) -> int:
        return len(self._studies)

    def __len__(self) -> int:
        return len(self._studies)

    def __iter__(self) -> Iterator[StudyObservation]:
        return iter(self._studies)

    def __getitem__(self, index: int) -> StudyObservation:
        return self._studies[index]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "study_id": self.study_ids,
                "effect": self._effects,
                "variance": self._variances,
                "se": np.sqrt(self._variances),
            }
        )

    def back_transform(self, values: np.ndarray) -> np.ndarray:
        """Map values on the analysis scale back to proportions.

        Identity for generic and raw-proportion datasets.
        """
        values = np.asarray(values, dtype=float)
        if self.scale == "logit":
            return 1.0 / (1.0 + np.exp(-values))
        return values


class Hyperparameters(BaseModel):
    """Prior settings for one sampler run.

    The base measure is ``N(mu, sigma0^2)``; its precision ``1/sigma0^2`` has
    a ``Gamma(tau1 / 2, rate=tau2 / 2)`` prior.  When ``learn_base_variance``
    is off the base variance is fixed at ``tau2 / tau1``.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    alpha: float = Field(1.0, gt=0, description="DP concentration parameter")
    mu: float = Field(0.0, description="Base-measure mean")
    tau1: float = Field(2.0, gt=0, description="Shape parameter (times 2) of the base precision prior")
    tau2: float = Field(2.0, gt=0, description="Rate parameter (times 2) of the base precision prior")
    learn_base_variance: bool = True

    # Optional hyperpriors
    mu_prior_mean: Optional[float] = None
    mu_prior_variance: Optional[float] = Field(None, gt=0)
    alpha_prior_shape: Optional[float] = Field(None, gt=0)
    alpha_prior_rate: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def _check_pairs(self) -> "Hyperparameters":
        if (self.mu_prior_mean is None) != (self.mu_prior_variance is None):
            raise ValueError("mu_prior_mean and mu_prior_variance must be given together")
        if (self.alpha_prior_shape is None) != (self.alpha_prior_rate is None):
            raise ValueError("alpha_prior_shape and alpha_prior_rate must be given together")
        return self

    @property
    def initial_base_variance(self) -> float:
        return self.tau2 / self.tau1

    @property
    def learns_mu(self) -> bool:
        return self.mu_prior_variance is not None

    @property
    def learns_alpha(self) -> bool:
        return self.alpha_prior_shape is not None


InitialClustering = Union[Literal["single", "singletons"], Tuple[Union[int, str], ...]]


class MCMCConfig(BaseModel):
    """Sampling schedule for one chain."""

    model_config = ConfigDict(frozen=True)

    burn_in: int = Field(1000, ge=0, description="Sweeps discarded before saving")
    n_save: int = Field(1000, ge=1, description="Number of draws to save")
    thinning: int = Field(5, ge=1, description="Sweeps between saved draws")
    display_interval: int = Field(0, ge=0, description="Sweeps between progress messages; 0 disables")
    seed: Optional[int] = Field(None, ge=0)
    init: InitialClustering = "single"
    shuffle: bool = Field(False, description="Visit studies in a freshly drawn order each sweep")

    @property
    def total_sweeps(self) -> int:
        return self.burn_in + self.n_save * self.thinning
