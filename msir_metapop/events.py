"""Event schema: every transition of the MSIR metapopulation Markov process.

For n patches and k directed migration edges there are 9n + 4k events,
in fixed blocks:

    births → S        n      +1 S_i
    births → M        n      +1 M_i
    deaths            4n     -1 X_i, one per state variable in state order
    infection         n      S_i → I_i
    recovery          n      I_i → R_i
    waning            n      M_i → S_i
    migration S       k      S_i → S_j for each edge (i, j)
    migration I       k      I_i → I_j
    migration R       k      R_i → R_j
    migration M       k      M_i → M_j

Each event changes the state by an integer effect vector with one or two
non-zero entries of ±1. The rate function in rates.py emits rates in this
exact order; ``EventSchema.blocks`` is the shared contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List

import numpy as np

from msir_metapop.topology import migration_edges, validate_adjacency
from msir_metapop.types import Compartment, StateIndex


class EventKind(IntEnum):
    """Event categories, in block order."""
    BIRTH_S = 0
    BIRTH_M = 1
    DEATH = 2
    INFECTION = 3
    RECOVERY = 4
    WANING = 5
    MIGRATION = 6


@dataclass(frozen=True, eq=False)
class EventSchema:
    """Immutable event table for one migration network.

    Attributes:
        index: State layout.
        edges: (k, 2) migration edges (source, destination).
        effects: (n_events, 4n) int64 effect vectors, one row per event.
        kind: (n_events,) EventKind codes.
        compartment: (n_events,) compartment acted on (source compartment
            for infection/recovery/waning; the new individual's for births).
        patch: (n_events,) patch (source patch for migrations).
        destination: (n_events,) destination patch for migrations, -1 otherwise.
        blocks: Block name → slice into the event axis.
    """
    index: StateIndex
    edges: np.ndarray
    effects: np.ndarray
    kind: np.ndarray
    compartment: np.ndarray
    patch: np.ndarray
    destination: np.ndarray
    blocks: Dict[str, slice]

    @property
    def n_patches(self) -> int:
        return self.index.n_patches

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    @property
    def n_events(self) -> int:
        return self.effects.shape[0]

    @property
    def stoichiometry(self) -> np.ndarray:
        """(4n, n_events) float matrix whose columns are the effect vectors."""
        return self.effects.T.astype(np.float64)

    def net_change(self) -> np.ndarray:
        """(n_events,) net change in total population per event."""
        return self.effects.sum(axis=1)

    def labels(self) -> List[str]:
        """Human-readable label per event, e.g. 'death:I2', 'migration:S0->1'."""
        out = []
        for kind, comp, i, j in zip(self.kind, self.compartment,
                                    self.patch, self.destination):
            name = EventKind(kind).name.lower()
            c = Compartment(comp).name
            if kind == EventKind.MIGRATION:
                out.append(f"{name}:{c}{i}->{j}")
            else:
                out.append(f"{name}:{c}{i}")
        return out


def build_event_schema(adjacency) -> EventSchema:
    """Enumerate every event and its effect vector for a migration network.

    Args:
        adjacency: (n, n) 0/1 migration matrix (validated here).

    Returns:
        EventSchema with 9n + 4k events.
    """
    adj = validate_adjacency(adjacency)
    n = adj.shape[0]
    idx = StateIndex(n)
    edges = migration_edges(adj)
    k = len(edges)
    n_events = 9 * n + 4 * k

    effects = np.zeros((n_events, idx.size), dtype=np.int64)
    kind = np.empty(n_events, dtype=np.int64)
    compartment = np.empty(n_events, dtype=np.int64)
    patch = np.empty(n_events, dtype=np.int64)
    destination = np.full(n_events, -1, dtype=np.int64)
    blocks: Dict[str, slice] = {}
    row = 0

    def add(name, event_kind, comp, patches, changes, dest=None):
        # changes: list of (Compartment, patch array, ±1)
        nonlocal row
        m = len(patches)
        rows = np.arange(row, row + m)
        for c, p, sign in changes:
            cols = np.array([idx.index(c, int(q)) for q in p], dtype=np.int64)
            effects[rows, cols] += sign
        kind[rows] = event_kind
        compartment[rows] = comp
        patch[rows] = patches
        if dest is not None:
            destination[rows] = dest
        blocks[name] = slice(row, row + m)
        row += m

    patches = np.arange(n)
    C = Compartment

    add('birth_S', EventKind.BIRTH_S, C.S, patches, [(C.S, patches, +1)])
    add('birth_M', EventKind.BIRTH_M, C.M, patches, [(C.M, patches, +1)])

    # Deaths follow the state order: all S, then I, R, M
    start = row
    for c in C:
        add(f'death_{c.name}', EventKind.DEATH, c, patches, [(c, patches, -1)])
    blocks['death'] = slice(start, row)

    add('infection', EventKind.INFECTION, C.S, patches,
        [(C.S, patches, -1), (C.I, patches, +1)])
    add('recovery', EventKind.RECOVERY, C.I, patches,
        [(C.I, patches, -1), (C.R, patches, +1)])
    add('waning', EventKind.WANING, C.M, patches,
        [(C.M, patches, -1), (C.S, patches, +1)])

    src, dst = edges[:, 0], edges[:, 1]
    start = row
    for c in C:
        add(f'migration_{c.name}', EventKind.MIGRATION, c, src,
            [(c, src, -1), (c, dst, +1)], dest=dst)
    blocks['migration'] = slice(start, row)

    effects.setflags(write=False)

    return EventSchema(
        index=idx,
        edges=edges,
        effects=effects,
        kind=kind,
        compartment=compartment,
        patch=patch,
        destination=destination,
        blocks=blocks,
    )
