"""Migration network between patches.

The network is an n×n 0/1 adjacency matrix: M[i, j] = 1 means individuals
migrate from patch i to patch j. No self-loops. The matrix is fixed for a
whole run and shared read-only by every replicate.

Core functions:
  - validate_adjacency: check shape / values, return a boolean matrix
  - migration_edges: (source, destination) pairs in row-major order
  - build_topology: standard network shapes (isolated, circle, line, complete, star)
  - topology_from_config: adjacency for a TopologySection
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from msir_metapop.errors import ConfigurationError

if TYPE_CHECKING:
    from msir_metapop.config import TopologySection


TOPOLOGY_KINDS = {'isolated', 'circle', 'line', 'complete', 'star', 'matrix'}


def validate_adjacency(matrix) -> np.ndarray:
    """Validate a migration adjacency matrix.

    Args:
        matrix: Square array-like of 0/1 (or booleans).

    Returns:
        (n, n) boolean ndarray (a copy).

    Raises:
        ConfigurationError: If not square, empty, not 0/1, or has self-loops.
    """
    try:
        arr = np.array(matrix, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"adjacency matrix is not numeric: {exc}") from exc
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ConfigurationError(
            f"adjacency matrix must be square, got shape {arr.shape}"
        )
    if arr.shape[0] == 0:
        raise ConfigurationError("adjacency matrix must have at least one patch")
    if not np.all((arr == 0) | (arr == 1)):
        raise ConfigurationError("adjacency matrix entries must be 0 or 1")
    adj = arr.astype(bool)
    if np.any(np.diag(adj)):
        loops = np.flatnonzero(np.diag(adj)).tolist()
        raise ConfigurationError(f"adjacency matrix has self-loops at patches {loops}")
    return adj


def migration_edges(adjacency: np.ndarray) -> np.ndarray:
    """Directed migration edges as a (k, 2) int array of (source, destination).

    Ordered lexicographically by (source, destination).
    """
    adj = np.asarray(adjacency, dtype=bool)
    edges = np.argwhere(adj)
    return edges.astype(np.int64).reshape(-1, 2)


def build_topology(kind: str, n_patches: int) -> np.ndarray:
    """Standard migration networks.

    Args:
        kind: 'isolated' (no edges), 'circle' (ring, both directions),
            'line' (chain, both directions), 'complete' (every ordered pair),
            'star' (patch 0 ↔ every other patch).
        n_patches: Number of patches (>= 1).

    Returns:
        (n, n) boolean adjacency matrix.
    """
    if n_patches < 1:
        raise ConfigurationError(f"n_patches must be >= 1, got {n_patches}")
    n = n_patches
    adj = np.zeros((n, n), dtype=bool)
    idx = np.arange(n)

    if kind == 'isolated':
        pass
    elif kind == 'circle':
        if n > 1:
            adj[idx, (idx + 1) % n] = True
            adj[idx, (idx - 1) % n] = True
    elif kind == 'line':
        adj[idx[:-1], idx[1:]] = True
        adj[idx[1:], idx[:-1]] = True
    elif kind == 'complete':
        adj[:] = True
    elif kind == 'star':
        adj[0, 1:] = True
        adj[1:, 0] = True
    else:
        raise ConfigurationError(
            f"Unknown topology kind '{kind}'; "
            f"expected one of {sorted(TOPOLOGY_KINDS - {'matrix'})}"
        )

    np.fill_diagonal(adj, False)
    return adj


def topology_from_config(section: 'TopologySection') -> np.ndarray:
    """Adjacency matrix described by a TopologySection."""
    if section.kind == 'matrix':
        if section.matrix is None:
            raise ConfigurationError("topology.matrix required for kind 'matrix'")
        return validate_adjacency(section.matrix)
    return build_topology(section.kind, section.n_patches)
