"""Dirichlet Process mixture random-effects meta-analysis.

Given per-study effect estimates with known sampling variances, ``dpmeta``
samples from the posterior of a DP mixture over the studies' true effects
and summarises which studies cluster together, what each cluster's effect
is, and what a new study would look like.

Basic usage:
    >>> from dpmeta import EffectDataset, Hyperparameters, MCMCConfig, MCMCDriver, PosteriorSummarizer
    >>> data = EffectDataset.from_arrays([0.1, 0.1, 0.9], [0.01, 0.01, 0.01])
    >>> result = MCMCDriver(data, Hyperparameters(alpha=1.0), MCMCConfig(seed=1)).run()
    >>> PosteriorSummarizer.from_result(result).co_clustering()
"""

__version__ = "0.1.0"

from .core.errors import (  # noqa: E402,F401
    DPMetaError,
    DataValidationError,
    IncompleteRunError,
    NumericalInstabilityError,
)
from .core.models import EffectDataset, Hyperparameters, MCMCConfig, StudyObservation  # noqa: E402,F401
from .sampler import DPMixtureSampler, DPState, MCMCDraw, MCMCDriver, MCMCResult, run_chain  # noqa: E402,F401
from .posterior import PosteriorSummarizer, credible_interval  # noqa: E402,F401
from .sensitivity import SensitivityResult, run_sensitivity  # noqa: E402,F401
