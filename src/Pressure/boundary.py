"""Ghost-cell boundary protocol.

Horizontal ghosts are always filled by the cyclic halo exchange of the Grid.
Vertical ghosts are filled from the physical wall rule, mirrored about the
cell faces at ``kstart`` and ``kend``:

    Dirichlet (value v):    ghost[kstart-1-g] = 2 v - x[kstart+g]
    Neumann   (gradient q): ghost[kstart-1-g] = x[kstart+g] - (2g+1) q dz

and the same about ``kend`` at the top (with ``+ (2g+1) q dz``).
"""

import numpy as np

from .datastructures import BoundaryConfig, BoundaryKind, VerticalBC
from .errors import ConfigurationError


def mirror_sign(kind: VerticalBC) -> float:
    """Coefficient of the mirrored owned cell in the ghost value (-1 or +1)."""
    return -1.0 if VerticalBC(kind) == VerticalBC.DIRICHLET else 1.0


def boundary_bottop(arr: np.ndarray, grid, bc: BoundaryConfig):
    """Fill the vertical ghost layers of ``arr`` (full horizontal extent)."""
    ks, ke, dz = grid.kstart, grid.kend, grid.dz

    for g in range(grid.kgc):
        # Bottom wall
        if bc.bottom == VerticalBC.DIRICHLET:
            arr[ks - 1 - g] = 2.0 * bc.bottom_value - arr[ks + g]
        else:
            arr[ks - 1 - g] = arr[ks + g] - (2 * g + 1) * bc.bottom_value * dz

        # Top wall
        if bc.top == VerticalBC.DIRICHLET:
            arr[ke + g] = 2.0 * bc.top_value - arr[ke - 1 - g]
        else:
            arr[ke + g] = arr[ke - 1 - g] + (2 * g + 1) * bc.top_value * dz


def boundary_even(arr: np.ndarray, grid):
    """Fill vertical ghosts by plain reflection (zero-gradient, no wall value)."""
    ks, ke = grid.kstart, grid.kend
    for g in range(grid.kgc):
        arr[ks - 1 - g] = arr[ks + g]
        arr[ke + g] = arr[ke - 1 - g]


def exchange_array(arr: np.ndarray, grid, kind=BoundaryKind.CYCLIC, bc: BoundaryConfig = None) -> float:
    """Fill the ghost cells of a raw array on ``grid``. Returns the halo exchange time."""
    kind = BoundaryKind(kind)
    if kind == BoundaryKind.BOTTOP and bc is None:
        raise ConfigurationError("BOTTOP exchange needs a BoundaryConfig")

    # Cyclic first: the vertical rule then also covers the horizontal ghost columns
    t = grid.boundary_cyclic(arr)
    if kind == BoundaryKind.BOTTOP:
        boundary_bottop(arr, grid, bc)
    return t


def exchange(field, kind=BoundaryKind.CYCLIC, bc: BoundaryConfig = None) -> float:
    """Fill the ghost cells of ``field``.

    ``BoundaryKind.CYCLIC`` fills the horizontal halos only;
    ``BoundaryKind.BOTTOP`` additionally applies the vertical wall rule ``bc``.
    """
    return exchange_array(field.view, field.grid, kind, bc)
