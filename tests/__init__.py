"""Test suite for dpmeta.

Unit tests cover the data model, conjugate formulas, cluster bookkeeping,
the Gibbs sweep, the driver schedule and posterior summaries. Run `pytest`
from the project root; add `-m "not integration"` to skip the long chains.
"""
