"""Core data models, errors and conjugate formulas."""

from .errors import (  # noqa: F401
    DPMetaError,
    DataValidationError,
    IncompleteRunError,
    NumericalInstabilityError,
)
from .models import EffectDataset, Hyperparameters, MCMCConfig, StudyObservation  # noqa: F401
