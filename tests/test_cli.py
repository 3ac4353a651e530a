"""Tests for msir_metapop.cli — the msir-metapop command."""

import csv

import pytest
import yaml

from msir_metapop.cli import _combo_label, build_parser, main


def _write_config(path, **sections):
    config = {
        'parameters': {'carrying_capacity': 30.0, 'pulse_tightness': 0.0},
        'simulation': {'n_replicates': 2, 't_end': 0.5, 'thin': 0.1},
    }
    for key, values in sections.items():
        config.setdefault(key, {}).update(values)
    with open(path, 'w') as f:
        yaml.dump(config, f)
    return path


class TestParser:
    def test_subcommands(self):
        args = build_parser().parse_args(['run', 'base.yaml', '--verbose'])
        assert args.command == 'run'
        assert args.config == 'base.yaml'
        assert args.verbose
        assert args.scenario is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRun:
    def test_run_writes_results(self, tmp_path, capsys):
        cfg = _write_config(tmp_path / "base.yaml")
        out = tmp_path / "out"
        assert main(['run', str(cfg), '--output', str(out), '--verbose']) == 0

        with open(out / "extinctions.csv") as f:
            rows = list(csv.reader(f))
        assert rows[0] == ['replicate', 'extinction_time']
        assert len(rows) == 3
        assert (out / "config.yaml").exists()
        assert (out / "trajectory_0.png").exists()
        assert (out / "persistence.png").exists()

        stdout = capsys.readouterr().out
        assert "Running 2 replicates" in stdout
        assert "replicates: 2/2" in stdout
        assert "Extinctions:" in stdout

    def test_no_plots(self, tmp_path):
        cfg = _write_config(tmp_path / "base.yaml")
        out = tmp_path / "out"
        assert main(['run', str(cfg), '--output', str(out), '--no-plots']) == 0
        assert not (out / "persistence.png").exists()

    def test_scenario_merge(self, tmp_path):
        cfg = _write_config(tmp_path / "base.yaml")
        scen = tmp_path / "scenario.yaml"
        with open(scen, 'w') as f:
            yaml.dump({'simulation': {'n_replicates': 4}}, f)
        out = tmp_path / "out"
        assert main(['run', str(cfg), '--scenario', str(scen),
                     '--output', str(out), '--no-plots']) == 0
        with open(out / "extinctions.csv") as f:
            assert len(list(csv.reader(f))) == 5

    def test_missing_config(self, tmp_path, capsys):
        assert main(['run', str(tmp_path / "nope.yaml")]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        cfg = _write_config(tmp_path / "bad.yaml", parameters={'rho': 3.0})
        assert main(['run', str(cfg)]) == 2
        assert "rho" in capsys.readouterr().err

    def test_equilibrium_failure(self, tmp_path, capsys):
        cfg = _write_config(tmp_path / "dying.yaml", parameters={'death_rate': 0.9})
        assert main(['run', str(cfg), '--output', str(tmp_path / "out")]) == 1
        assert "Simulation failed" in capsys.readouterr().err


class TestSeries:
    def test_series_writes_results(self, tmp_path, capsys):
        cfg = _write_config(tmp_path / "base.yaml",
                            series={'sweep': {'R0': [0.0, 2.0]}})
        out = tmp_path / "series"
        assert main(['series', str(cfg), '--output', str(out), '--verbose']) == 0
        assert (out / "extinctions.csv").exists()
        assert (out / "series.json").exists()
        assert (out / "config.yaml").exists()
        assert (out / "persistence.png").exists()
        assert "Completed 2 combinations" in capsys.readouterr().out

    def test_series_with_per_patch_sweep_values(self, tmp_path):
        cfg = _write_config(tmp_path / "base.yaml",
                            series={'sweep': {'carrying_capacity': [[30.0], [40.0]]}})
        out = tmp_path / "series"
        assert main(['series', str(cfg), '--output', str(out)]) == 0
        assert (out / "persistence.png").exists()


class TestComboLabel:
    def test_scalars_use_general_format(self):
        assert _combo_label({'R0': 4.0, 'rho': 1}) == 'R0=4, rho=1'

    def test_per_patch_list(self):
        label = _combo_label({'carrying_capacity': [1000.0, 2000.0], 'R0': 2.5})
        assert label == 'carrying_capacity=[1000.0, 2000.0], R0=2.5'
