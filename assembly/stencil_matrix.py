"""
Stencil-addressed sparse matrices consumed by the Jacobian assembler.

Protocol (duck-typed, PETSc-shaped):
- stencil_type                        -> StencilType the matrix was preallocated for
- set_values_stencil(row, cols, vals) -> insert one row; row/cols are (i, j) grid points
- assembly_begin() / assembly_end()   -> two-phase finalisation
- lock_nonzero_locations()            -> any later entry outside the pattern is an error

Backends:
- PatternMatrix: numpy/SciPy, serial, fixed CSR pattern; used by the SciPy Newton path and tests.
- PetscStencilMatrix: wraps a PETSc.Mat from DMDA.createMatrix().
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set, Tuple

import numpy as np
from scipy import sparse

from assembly.jacobian_pattern import JacobianPattern, build_stencil_pattern
from core.types import StencilType
from parallel.mpi_bootstrap import bootstrap_mpi_before_petsc

logger = logging.getLogger(__name__)

GridPoint = Tuple[int, int]


class NewNonzeroLocationError(RuntimeError):
    """Raised when an entry falls outside the preallocated (or locked) pattern."""


class PatternMatrix:
    """
    Serial sparse matrix over an mx x my grid with a preallocated stencil pattern.

    Mirrors the DMDA matrix contract: entries are addressed by grid point,
    INSERT semantics, and the preallocated pattern may not grow unless
    ``allow_new_nonzeros`` is set; once locked it may not grow at all.
    """

    def __init__(self, mx: int, my: int, stencil: StencilType = StencilType.BOX, *, allow_new_nonzeros: bool = False):
        self.mx = int(mx)
        self.my = int(my)
        self.pattern: JacobianPattern = build_stencil_pattern(self.mx, self.my, stencil)
        self.allow_new_nonzeros = bool(allow_new_nonzeros)
        self.locked = False
        self.assembled = False
        self.n_assemblies = 0
        self._allowed: List[Set[int]] = [
            set(int(c) for c in self.pattern.row_cols(r)) for r in range(self.pattern.shape[0])
        ]
        self._values: Dict[Tuple[int, int], float] = {}
        self._in_assembly = False
        logger.debug(
            "PatternMatrix %dx%d (%s): nnz=%d, max/row=%d",
            self.mx,
            self.my,
            self.stencil_type.value,
            int(self.pattern.meta["nnz_total"]),
            int(self.pattern.meta["nnz_max_row"]),
        )

    @property
    def stencil_type(self) -> StencilType:
        return self.pattern.stencil

    @property
    def shape(self) -> Tuple[int, int]:
        return self.pattern.shape

    def _row_index(self, ij: GridPoint) -> int:
        i, j = int(ij[0]), int(ij[1])
        if not (0 <= i < self.mx and 0 <= j < self.my):
            raise IndexError(f"grid point ({i}, {j}) outside {self.mx} x {self.my} grid")
        return j * self.mx + i

    def set_values_stencil(self, row: GridPoint, cols: Sequence[GridPoint], values: Sequence[float]) -> None:
        if len(cols) != len(values):
            raise ValueError(f"got {len(cols)} columns but {len(values)} values")
        r = self._row_index(row)
        cidx = [self._row_index(c) for c in cols]
        allowed = self._allowed[r]
        for c, ij in zip(cidx, cols):
            if c in allowed:
                continue
            if self.locked or not self.allow_new_nonzeros:
                raise NewNonzeroLocationError(
                    f"Inserting a new nonzero at row ({int(row[0])}, {int(row[1])}) "
                    f"column ({int(ij[0])}, {int(ij[1])}) outside the preallocated "
                    f"{self.stencil_type.value} pattern"
                )
        # INSERT replaces the whole row; drop entries left by an earlier assembly.
        for c in allowed:
            self._values.pop((r, c), None)
        for c, v in zip(cidx, values):
            allowed.add(c)
            self._values[(r, c)] = float(v)
        self.assembled = False

    def assembly_begin(self) -> None:
        self._in_assembly = True

    def assembly_end(self) -> None:
        if not self._in_assembly:
            raise RuntimeError("assembly_end() called without assembly_begin()")
        self._in_assembly = False
        self.assembled = True
        self.n_assemblies += 1

    def lock_nonzero_locations(self) -> None:
        self.locked = True

    def nnz(self) -> int:
        return int(sum(len(s) for s in self._allowed))

    def to_csr(self) -> sparse.csr_matrix:
        """Assembled matrix as SciPy CSR, pattern entries without a value are stored as 0."""
        if not self.assembled:
            raise RuntimeError("matrix is not assembled; call assembly_begin()/assembly_end() first")
        rows: List[int] = []
        cols: List[int] = []
        vals: List[float] = []
        for r, allowed in enumerate(self._allowed):
            for c in sorted(allowed):
                rows.append(r)
                cols.append(c)
                vals.append(self._values.get((r, c), 0.0))
        n = self.mx * self.my
        return sparse.csr_matrix(
            (np.asarray(vals, dtype=np.float64), (np.asarray(rows), np.asarray(cols))),
            shape=(n, n),
        )

    def to_dense(self) -> np.ndarray:
        return self.to_csr().toarray()


def _get_petsc():
    try:
        bootstrap_mpi_before_petsc()
        from petsc4py import PETSc
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("petsc4py is required for PetscStencilMatrix.") from exc
    return PETSc


class PetscStencilMatrix:
    """Adapter exposing a DMDA-created PETSc.Mat through the stencil-matrix protocol."""

    def __init__(self, mat, stencil: StencilType) -> None:
        self.mat = mat
        self._stencil = StencilType(stencil)
        self._PETSc = _get_petsc()

    @property
    def stencil_type(self) -> StencilType:
        return self._stencil

    def _stencil_point(self, ij: GridPoint):
        s = self._PETSc.Mat.Stencil()
        s.index = (int(ij[0]), int(ij[1]))
        s.field = 0
        return s

    def set_values_stencil(self, row: GridPoint, cols: Sequence[GridPoint], values: Sequence[float]) -> None:
        PETSc = self._PETSc
        r = self._stencil_point(row)
        for ij, v in zip(cols, values):
            self.mat.setValueStencil(r, self._stencil_point(ij), float(v), addv=PETSc.InsertMode.INSERT_VALUES)

    def assembly_begin(self) -> None:
        self.mat.assemblyBegin(self._PETSc.Mat.AssemblyType.FINAL)

    def assembly_end(self) -> None:
        self.mat.assemblyEnd(self._PETSc.Mat.AssemblyType.FINAL)

    def lock_nonzero_locations(self) -> None:
        self.mat.setOption(self._PETSc.Mat.Option.NEW_NONZERO_LOCATION_ERR, True)
