"""Tests for msir_metapop.series — parameter grids and simulation series."""

import csv
import json
from pathlib import Path

import numpy as np
import pytest

from msir_metapop.config import default_config, load_config, validate_config
from msir_metapop.series import (
    SeriesResult,
    drop_redundant_maternal,
    expand_grid,
    run_config,
    run_series,
    series_grid,
)

CONFIG_DIR = Path(__file__).parent.parent / "configs"


# ── Helpers ───────────────────────────────────────────────────────────

def _small_config(sweep=None):
    """One fast, aseasonal patch; three short replicates."""
    config = default_config()
    config.parameters.carrying_capacity = 50.0
    config.parameters.pulse_tightness = 0.0
    config.simulation.n_replicates = 3
    config.simulation.t_end = 1.0
    config.simulation.thin = 0.1
    config.series.sweep = sweep if sweep is not None else {'R0': [0.0, 4.0]}
    validate_config(config)
    return config


# ── Parameter grid ────────────────────────────────────────────────────

class TestExpandGrid:
    def test_first_key_varies_fastest(self):
        rows = expand_grid({'a': [1, 2], 'b': [10, 20, 30]})
        assert rows == [
            {'a': 1, 'b': 10}, {'a': 2, 'b': 10},
            {'a': 1, 'b': 20}, {'a': 2, 'b': 20},
            {'a': 1, 'b': 30}, {'a': 2, 'b': 30},
        ]

    def test_key_order_preserved(self):
        rows = expand_grid({'z': [1], 'a': [2]})
        assert list(rows[0]) == ['z', 'a']

    def test_empty_sweep(self):
        assert expand_grid({}) == [{}]

    def test_single_key(self):
        assert expand_grid({'R0': [2, 4]}) == [{'R0': 2}, {'R0': 4}]


class TestDropRedundantMaternal:
    def test_drops_rho_zero_rows(self):
        sweep = {'rho': [0, 1], 'maternal_period': [0.1, 0.2, 0.3]}
        rows = drop_redundant_maternal(expand_grid(sweep), sweep)
        assert len(rows) == 4
        assert {'rho': 0, 'maternal_period': 0.1} in rows
        assert {'rho': 0, 'maternal_period': 0.2} not in rows
        assert sum(r['rho'] == 1 for r in rows) == 3

    def test_no_op_without_both_keys(self):
        sweep = {'rho': [0, 1]}
        rows = expand_grid(sweep)
        assert drop_redundant_maternal(rows, sweep) == rows

    def test_full_study_grid(self):
        config = load_config(CONFIG_DIR / "base.yaml", CONFIG_DIR / "series.yaml")
        rows = series_grid(config)
        # 3 * 3 * 2 * 3 * 7 = 378 combinations, minus 2 * 3 * 3 * 7 redundant
        assert len(rows) == 252

    def test_drop_can_be_disabled(self):
        config = load_config(CONFIG_DIR / "base.yaml", CONFIG_DIR / "series.yaml",
                             overrides={'series': {'drop_redundant_maternal': False}})
        assert len(series_grid(config)) == 378


# ── Single parameter set ──────────────────────────────────────────────

class TestRunConfig:
    def test_default_start_on_cycle(self):
        config = _small_config()
        result = run_config(config)
        assert len(result.trajectories) == 3
        assert result.extinction_times.shape == (3,)
        # Aseasonal cycle is K; one individual moved to I
        np.testing.assert_array_equal(result.x0, [49, 1, 0, 0])

    def test_explicit_state(self):
        config = _small_config()
        result = run_config(config, x0=[20, 2, 0, 0], keep_trajectories=False)
        assert result.trajectories is None
        np.testing.assert_array_equal(result.x0, [20, 2, 0, 0])

    def test_no_transmission_always_fades_out(self):
        config = _small_config()
        config.parameters.R0 = 0.0
        result = run_config(config)
        assert result.n_extinct == 3


# ── Series ────────────────────────────────────────────────────────────

class TestRunSeries:
    def test_shapes(self):
        result = run_series(_small_config())
        assert result.combinations == [{'R0': 0.0}, {'R0': 4.0}]
        assert result.extinction_times.shape == (2, 3)
        assert len(result.initial_states) == 2
        assert result.n_extinct[0] == 3

    def test_progress_and_verbose(self, capsys):
        calls = []
        run_series(_small_config(), verbose=True,
                   progress_callback=lambda d, t: calls.append((d, t)))
        assert calls == [(1, 2), (2, 2)]
        out = capsys.readouterr().out
        assert "[1/2] {'R0': 0.0}" in out
        assert "Extinctions: 3/3" in out

    def test_reproducible(self):
        a = run_series(_small_config())
        b = run_series(_small_config())
        np.testing.assert_array_equal(a.extinction_times, b.extinction_times)


class TestSeriesResult:
    def _result(self):
        return SeriesResult(
            combinations=[{'R0': 0.0, 'rho': 1}, {'R0': 4.0, 'rho': 1}],
            extinction_times=np.array([[0.1, 0.2], [np.nan, 1.5]]),
            initial_states=[np.array([9, 1, 0, 0]), np.array([9, 1, 0, 0])],
        )

    def test_n_extinct(self):
        np.testing.assert_array_equal(self._result().n_extinct, [2, 1])

    def test_to_csv(self, tmp_path):
        path = self._result().to_csv(tmp_path / "ext.csv")
        with open(path) as f:
            rows = list(csv.reader(f))
        assert rows[0] == ['R0', 'rho', 'n_extinct', 'rep_0', 'rep_1']
        assert rows[1] == ['0.0', '1', '2', '0.1', '0.2']
        assert rows[2] == ['4.0', '1', '1', '', '1.5']

    def test_save(self, tmp_path):
        out = self._result().save(tmp_path / "series")
        assert (out / "extinctions.csv").exists()
        assert not (out / "config.yaml").exists()
        with open(out / "series.json") as f:
            meta = json.load(f)
        assert meta['n_combinations'] == 2
        assert meta['n_extinct'] == [2, 1]
        assert meta['initial_states'][0] == [9, 1, 0, 0]

    def test_saved_config_reloads(self, tmp_path):
        config = _small_config()
        result = run_series(config)
        out = result.save(tmp_path / "series")
        again = load_config(out / "config.yaml")
        assert again.series.sweep == {'R0': [0.0, 4.0]}
        assert again.simulation.n_replicates == 3
