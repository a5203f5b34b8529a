"""Scalar field on a distributed Grid."""

from __future__ import annotations

import weakref

import numpy as np

from . import boundary
from .datastructures import BoundaryConfig, BoundaryKind
from .errors import ConfigurationError


class Field:
    """Flat float64 buffer of ``grid.ncells`` values with halos.

    The Field does not keep its Grid alive: it holds a weak reference, and
    touching the Field after the Grid is gone raises ConfigurationError.

    Parameters
    ----------
    grid : Grid
        Grid the buffer is laid out on.
    name : str
        Label used in logs and error messages.
    data : array_like, optional
        Initial flat buffer of length ``grid.ncells`` (copied). Zeros if omitted.
    """

    def __init__(self, grid, name: str = "field", data=None):
        self._grid_ref = weakref.ref(grid)
        self.name = name

        if data is None:
            self.data = np.zeros(grid.ncells, dtype=np.float64)
        else:
            data = np.asarray(data, dtype=np.float64)
            if data.size != grid.ncells:
                raise ConfigurationError(
                    f"Field '{name}': buffer has {data.size} values, grid needs {grid.ncells}"
                )
            self.data = data.reshape(-1).copy()

    @property
    def grid(self):
        grid = self._grid_ref()
        if grid is None:
            raise ConfigurationError(f"Field '{self.name}' used after its Grid was released")
        return grid

    @property
    def view(self) -> np.ndarray:
        """3-D view (kcells, jcells, icells) sharing memory with ``data``."""
        return self.data.reshape(self.grid.shape)

    @property
    def interior(self) -> np.ndarray:
        """View of the owned block (kmax, jmax, imax)."""
        grid = self.grid
        return self.data.reshape(grid.shape)[grid.interior]

    def fill(self, value: float):
        self.data.fill(value)

    def copy(self, name: str = None) -> "Field":
        return Field(self.grid, name or self.name, self.data)

    # ------------------------------------------------------------------
    # Boundaries
    # ------------------------------------------------------------------

    def boundary_cyclic(self) -> float:
        """Fill horizontal halos by periodic wrap."""
        return self.grid.boundary_cyclic(self.view)

    def boundary_bottop(self, bc: BoundaryConfig):
        """Fill vertical ghosts from the wall rule (horizontal halos untouched)."""
        boundary.boundary_bottop(self.view, self.grid, bc)

    def exchange(self, kind=BoundaryKind.CYCLIC, bc: BoundaryConfig = None) -> float:
        return boundary.exchange(self, kind, bc)

    def __repr__(self):
        grid = self._grid_ref()
        where = f"{grid.local_shape}" if grid is not None else "released grid"
        return f"Field('{self.name}', {where})"
