"""Command-line entry point.

Usage:
    msir-metapop run configs/base.yaml --output results/run --verbose
    msir-metapop series configs/base.yaml --scenario configs/series.yaml
    python -m msir_metapop run configs/base.yaml --no-plots
"""

from __future__ import annotations

import argparse
import csv
import math
import sys
import time
from pathlib import Path
from typing import List, Optional

import numpy as np
import yaml

from msir_metapop.config import SimulationConfig, config_to_dict, load_config
from msir_metapop.errors import ConfigurationError, SimulationError
from msir_metapop.series import RunResult, run_config, run_series


def _progress_printer(label: str):
    """Callback printing roughly every 10% of ``total``."""
    def report(done: int, total: int) -> None:
        step = max(1, total // 10)
        if done == total or done % step == 0:
            print(f"  {label}: {done}/{total}")
    return report


def _write_extinctions(path: Path, times: np.ndarray) -> None:
    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['replicate', 'extinction_time'])
        for k, t in enumerate(times):
            writer.writerow([k, '' if math.isnan(t) else f'{t:.6g}'])


def _save_run(result: RunResult, config: SimulationConfig, output: Path,
              plots: bool) -> None:
    output.mkdir(parents=True, exist_ok=True)
    _write_extinctions(output / 'extinctions.csv', result.extinction_times)
    with open(output / 'config.yaml', 'w') as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)
    if plots:
        from msir_metapop.viz import plot_persistence, plot_trajectory
        if result.trajectories:
            plot_trajectory(result.trajectories[0],
                            save_path=str(output / 'trajectory_0.png'))
        plot_persistence({'all patches': result.extinction_times},
                         config.simulation.t_end,
                         save_path=str(output / 'persistence.png'))


def _combo_label(combo: dict) -> str:
    """Legend label for one sweep row; per-patch lists print as lists."""
    parts = []
    for k, v in combo.items():
        if isinstance(v, (int, float, np.number)) and not isinstance(v, bool):
            parts.append(f'{k}={v:g}')
        else:
            parts.append(f'{k}={v}')
    return ', '.join(parts)


def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.scenario)
    output = Path(args.output or config.series.output_dir)
    sim = config.simulation
    print(f"Running {sim.n_replicates} replicates on {config.n_patches} patch(es), "
          f"t_end={sim.t_end:g} yr, workers={sim.workers}")

    t0 = time.time()
    callback = _progress_printer('replicates') if args.verbose else None
    result = run_config(config, progress_callback=callback)
    elapsed = time.time() - t0

    ext = result.extinction_times
    print(f"Completed in {elapsed:.1f}s")
    print(f"Extinctions: {result.n_extinct}/{len(ext)}")
    if result.n_extinct:
        print(f"Median extinction time: {np.nanmedian(ext):.3f} yr")

    _save_run(result, config, output, plots=not args.no_plots)
    print(f"Results saved: {output}")
    return 0


def cmd_series(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.scenario)
    output = Path(args.output or config.series.output_dir)

    t0 = time.time()
    result = run_series(config, verbose=args.verbose)
    print(f"Completed {len(result.combinations)} combinations "
          f"in {time.time() - t0:.1f}s")

    result.save(output)
    if not args.no_plots and result.combinations:
        from msir_metapop.viz import plot_persistence
        curves = {
            _combo_label(combo): times
            for combo, times in zip(result.combinations, result.extinction_times)
        }
        plot_persistence(curves, config.simulation.t_end,
                         save_path=str(output / 'persistence.png'))
    print(f"Results saved: {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='msir-metapop',
        description="Stochastic MSIR metapopulation simulations",
    )
    sub = parser.add_subparsers(dest='command', required=True)

    for name, func, help_text in (
        ('run', cmd_run, "replicates for one parameter set"),
        ('series', cmd_series, "replicates over the series.sweep grid"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('config', type=str, help="Base configuration YAML")
        p.add_argument('--scenario', type=str, default=None,
                       help="Scenario YAML merged over the base")
        p.add_argument('--output', type=str, default=None,
                       help="Output directory (default: series.output_dir)")
        p.add_argument('--no-plots', action='store_true',
                       help="Skip PNG figures")
        p.add_argument('--verbose', action='store_true',
                       help="Print progress")
        p.set_defaults(func=func)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except SimulationError as exc:
        print(f"Simulation failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
