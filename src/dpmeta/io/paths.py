"""Output directory management."""

from pathlib import Path
from datetime import datetime
from typing import Optional

from ..config.settings import settings


def create_output_dir(run_name: str, timestamp: Optional[datetime] = None, base_dir: Optional[Path] = None) -> Path:
    if timestamp is None:
        timestamp = datetime.now()
    dirname = f"{run_name}_{timestamp.strftime('%Y%m%d_%H%M%S')}"
    dirpath = (base_dir or settings.output_dir) / dirname
    dirpath.mkdir(parents=True, exist_ok=True)
    return dirpath
