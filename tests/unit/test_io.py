"""Unit tests for loaders and draw persistence."""

import json
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from dpmeta.core.errors import DataValidationError
from dpmeta.core.models import EffectDataset, Hyperparameters, MCMCConfig
from dpmeta.io.draws import draws_to_frame, load_draws, save_draws
from dpmeta.io.loaders import load_effects_csv, load_proportions_csv
from dpmeta.io.paths import create_output_dir
from dpmeta.sampler.driver import run_chain


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace for I/O tests."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def result():
    dataset = EffectDataset.from_arrays([0.1, 0.2, 0.9], [0.01, 0.01, 0.01], study_ids=["a", "b", "c"])
    return run_chain(dataset, Hyperparameters(alpha=1.0), MCMCConfig(burn_in=5, n_save=8, thinning=2, seed=10))


class TestLoaders:
    """Tests for CSV loaders."""

    def test_load_effects_with_variances(self, temp_workspace) -> None:
        path = temp_workspace / "effects.csv"
        pd.DataFrame({"study_id": ["s1", "s2"], "effect": [0.2, 0.4], "variance": [0.01, 0.02]}).to_csv(
            path, index=False
        )
        ds = load_effects_csv(path)
        assert ds.study_ids == ["s1", "s2"]
        np.testing.assert_allclose(ds.variances, [0.01, 0.02])

    def test_load_effects_with_standard_errors(self, temp_workspace) -> None:
        path = temp_workspace / "effects.csv"
        pd.DataFrame({"study_id": ["s1"], "yi": [0.2], "sei": [0.3]}).to_csv(path, index=False)
        ds = load_effects_csv(path, effect_col="yi", se_col="sei")
        np.testing.assert_allclose(ds.variances, [0.09])

    def test_zero_variance_row_fails_load(self, temp_workspace) -> None:
        path = temp_workspace / "effects.csv"
        pd.DataFrame({"study_id": ["s1", "s2"], "effect": [0.2, 0.4], "variance": [0.01, 0.0]}).to_csv(
            path, index=False
        )
        with pytest.raises(DataValidationError):
            load_effects_csv(path)

    def test_missing_file(self, temp_workspace) -> None:
        with pytest.raises(DataValidationError, match="not found"):
            load_effects_csv(temp_workspace / "nope.csv")

    def test_load_proportions(self, temp_workspace) -> None:
        path = temp_workspace / "counts.csv"
        pd.DataFrame({"study_id": ["s1", "s2"], "events": [5, 0], "total": [50, 40]}).to_csv(path, index=False)
        ds = load_proportions_csv(path)
        assert ds.scale == "logit"
        assert ds.n_studies == 2
        assert np.all(ds.variances > 0)

    def test_load_proportions_missing_column(self, temp_workspace) -> None:
        path = temp_workspace / "counts.csv"
        pd.DataFrame({"study_id": ["s1"], "cases": [5], "total": [50]}).to_csv(path, index=False)
        with pytest.raises(DataValidationError, match="Columns not found"):
            load_proportions_csv(path)


class TestDrawPersistence:
    """Tests for writing and reading saved draws."""

    def test_one_record_per_draw(self, result) -> None:
        df = draws_to_frame(result.draws)
        assert len(df) == result.n_draws
        first = df.iloc[0]
        assert json.loads(first["assignments"]) == result.draws[0].assignments.tolist()
        clusters = json.loads(first["clusters"])
        assert [c["id"] for c in clusters] == result.draws[0].cluster_ids.tolist()
        assert sum(c["size"] for c in clusters) == 3

    @pytest.mark.parametrize("suffix", [".csv", ".parquet"])
    def test_save_and_load(self, result, temp_workspace, suffix: str) -> None:
        path = save_draws(result, temp_workspace / "run" / f"draws{suffix}")
        assert path.exists()
        loaded = load_draws(path)
        assert len(loaded) == result.n_draws
        for original, restored in zip(result.draws, loaded):
            assert restored.sweep == original.sweep
            np.testing.assert_array_equal(restored.assignments, original.assignments)
            np.testing.assert_allclose(restored.locations, original.locations)
            np.testing.assert_allclose(restored.study_effects, original.study_effects)
            assert restored.base_variance == pytest.approx(original.base_variance)

    def test_unsupported_suffix(self, result, temp_workspace) -> None:
        with pytest.raises(ValueError):
            save_draws(result, temp_workspace / "draws.txt")

    def test_load_rejects_incomplete_table(self, temp_workspace) -> None:
        path = temp_workspace / "draws.csv"
        pd.DataFrame({"draw": [0], "sweep": [1]}).to_csv(path, index=False)
        with pytest.raises(DataValidationError):
            load_draws(path)


def test_create_output_dir(temp_workspace) -> None:
    out = create_output_dir("fit", base_dir=temp_workspace)
    assert out.exists()
    assert out.name.startswith("fit_")
