"""Figures for MSIR-Metapop runs.

Every plotting function:
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG and closes when given)
  - Uses the shared dark theme defined below

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Dict, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

from msir_metapop.birth_pulse import birth_pulse
from msir_metapop.summary import persistence_curve
from msir_metapop.types import Compartment, Trajectory

# ═══════════════════════════════════════════════════════════════════════
# THEME
# ═══════════════════════════════════════════════════════════════════════

DARK_BG = '#1a1a2e'
DARK_PANEL = '#16213e'
TEXT_COLOR = '#e0e0e0'
GRID_COLOR = '#2a2a4a'

COMPARTMENT_COLORS = {
    Compartment.S: '#3498db',
    Compartment.I: '#e94560',
    Compartment.R: '#2ecc71',
    Compartment.M: '#f39c12',
}

SERIES_COLORS = [
    '#e94560', '#48c9b0', '#f39c12', '#3498db', '#2ecc71',
    '#533483', '#e74c3c', '#f1c40f', '#1abc9c', '#9b59b6',
]


def apply_dark_theme(fig=None, ax=None):
    """Apply dark theme to a Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """Figure + Axes with the dark theme applied; axes may be an ndarray."""
    if figsize is None:
        figsize = (10, 6) if (nrows == 1 and ncols == 1) else (14, 4 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    for a in np.atleast_1d(axes).flat:
        apply_dark_theme(ax=a)
    return fig, axes


def save_figure(fig, save_path, dpi=150):
    """Save with tight layout and dark background, then close."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)


def _legend(ax):
    ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
              labelcolor=TEXT_COLOR, fontsize=9)


# ═══════════════════════════════════════════════════════════════════════
# 1. TRAJECTORY
# ═══════════════════════════════════════════════════════════════════════

def plot_trajectory(
    traj: Trajectory,
    patches: Optional[Sequence[int]] = None,
    log_infected: bool = True,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Compartment counts over time, one panel per patch.

    Args:
        traj: Trajectory from a stochastic or mean-field run.
        patches: Patches to show (default: all, at most 6).
        log_infected: Draw I on a secondary log axis (it spans decades).
        save_path: Optional path to save the figure.

    Returns:
        matplotlib Figure.
    """
    if patches is None:
        patches = list(range(min(traj.n_patches, 6)))
    fig, axes = dark_figure(len(patches), 1, sharex=True)
    axes = np.atleast_1d(axes)

    for ax, p in zip(axes, patches):
        for c in Compartment:
            counts = traj.compartment(c)[:, p]
            if c == Compartment.I and log_infected:
                twin = ax.twinx()
                twin.semilogy(traj.times, np.where(counts > 0, counts, np.nan),
                              color=COMPARTMENT_COLORS[c], linewidth=1.2, label='I')
                twin.tick_params(colors=COMPARTMENT_COLORS[c])
                twin.set_ylabel('Infectious', color=COMPARTMENT_COLORS[c])
                continue
            ax.plot(traj.times, counts, color=COMPARTMENT_COLORS[c],
                    linewidth=1.5, label=c.name)
        ax.set_ylabel(f'Patch {p}', fontsize=11)
        ax.set_ylim(bottom=0)
        _legend(ax)

    axes[-1].set_xlabel('Time (yr)', fontsize=12)
    axes[0].set_title('MSIR Trajectory', fontsize=14, fontweight='bold')

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 2. PERSISTENCE
# ═══════════════════════════════════════════════════════════════════════

def plot_persistence(
    extinction_times: Dict[str, np.ndarray],
    t_end: float,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Fraction of replicates still infected over time.

    Args:
        extinction_times: Label → extinction times (NaN = persisted).
        t_end: Right edge of the time axis (yr).
        save_path: Optional path to save the figure.

    Returns:
        matplotlib Figure.
    """
    grid = np.linspace(0.0, t_end, 401)
    fig, ax = dark_figure()

    for k, (label, times) in enumerate(extinction_times.items()):
        ax.step(grid, persistence_curve(times, grid), where='post',
                color=SERIES_COLORS[k % len(SERIES_COLORS)], linewidth=2,
                label=label)

    ax.set_xlabel('Time (yr)', fontsize=12)
    ax.set_ylabel('Fraction persisting', fontsize=12)
    ax.set_title('Infection Persistence', fontsize=14, fontweight='bold')
    ax.set_xlim(0, t_end)
    ax.set_ylim(0, 1.02)
    if extinction_times:
        _legend(ax)

    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# 3. BIRTH PULSE
# ═══════════════════════════════════════════════════════════════════════

def plot_birth_pulse(
    tightness: Sequence[float] = (0.0, 10.0, 100.0),
    phase: float = 0.5,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Birth-rate multiplier over one year for several pulse tightness values."""
    t = np.linspace(0.0, 1.0, 1001)
    fig, ax = dark_figure()

    for k, s in enumerate(tightness):
        ax.plot(t, birth_pulse(t, s, phase),
                color=SERIES_COLORS[k % len(SERIES_COLORS)], linewidth=2,
                label=f's = {s:g}')
    ax.axhline(1.0, color=GRID_COLOR, linestyle='--', linewidth=1)

    ax.set_xlabel('Time of year', fontsize=12)
    ax.set_ylabel('Birth rate multiplier b(t)', fontsize=12)
    ax.set_title('Seasonal Birth Pulse', fontsize=14, fontweight='bold')
    ax.set_xlim(0, 1)
    ax.set_ylim(bottom=0)
    _legend(ax)

    if save_path:
        save_figure(fig, save_path)
    return fig
