"""Exception hierarchy for dpmeta.

Invalid model inputs (hyperparameters, MCMC configuration) are rejected by
pydantic when the models are constructed.  The exceptions here cover the
conditions pydantic cannot see: dataset-level consistency, numerical
breakdown inside a sweep and runs that did not finish.
"""

from typing import Optional


class DPMetaError(Exception):
    """Base class for all dpmeta errors."""


class DataValidationError(DPMetaError, ValueError):
    """Raised when study data cannot be loaded as given."""


class NumericalInstabilityError(DPMetaError, ArithmeticError):
    """Raised when the assignment weights of a study cannot be normalised."""

    def __init__(self, message: str, study_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.study_index = study_index


class IncompleteRunError(DPMetaError, RuntimeError):
    """Raised when a chain stops before collecting every configured draw."""

    def __init__(self, message: str, sweeps_completed: int = 0, draws_collected: int = 0) -> None:
        super().__init__(message)
        self.sweeps_completed = sweeps_completed
        self.draws_collected = draws_collected
