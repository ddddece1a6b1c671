"""DP mixture sampling.

This package holds the chain state (:class:`DPState`), the Gibbs sweep
(:class:`DPMixtureSampler`) and the schedule that turns sweeps into saved
draws (:class:`MCMCDriver`).  A chain is sequential; independent chains are
run side by side by :mod:`dpmeta.sensitivity`.
"""

from .state import DPState  # noqa: F401
from .gibbs import DPMixtureSampler  # noqa: F401
from .driver import MCMCDraw, MCMCDriver, MCMCResult, run_chain  # noqa: F401
