"""Label-invariant posterior summaries of DP mixture draws."""

from .summarizer import PosteriorSummarizer, credible_interval  # noqa: F401
