"""Reading study data and persisting draws."""

from .draws import load_draws, save_draws  # noqa: F401
from .loaders import load_effects_csv, load_proportions_csv  # noqa: F401
from .paths import create_output_dir  # noqa: F401
