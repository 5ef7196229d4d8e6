"""
Sparsity patterns for the structured-grid Jacobian (STAR = 5-point, BOX = 9-point).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from core.types import JacobianType, StencilType

STAR_OFFSETS: Tuple[Tuple[int, int], ...] = ((0, -1), (-1, 0), (0, 0), (1, 0), (0, 1))
BOX_OFFSETS: Tuple[Tuple[int, int], ...] = tuple((di, dj) for dj in (-1, 0, 1) for di in (-1, 0, 1))


class StencilPatternError(ValueError):
    """Raised when a Jacobian type needs entries outside the allocated stencil."""


@dataclass(slots=True)
class JacobianPattern:
    """CSR pattern for the global Jacobian in natural ordering (row = j*mx + i)."""

    indptr: np.ndarray
    indices: np.ndarray
    shape: Tuple[int, int]
    stencil: StencilType
    meta: Dict[str, float]

    def row_cols(self, row: int) -> np.ndarray:
        return self.indices[self.indptr[row] : self.indptr[row + 1]]


def stencil_offsets(stencil: StencilType) -> Tuple[Tuple[int, int], ...]:
    stencil = StencilType(stencil)
    return STAR_OFFSETS if stencil is StencilType.STAR else BOX_OFFSETS


def build_stencil_pattern(mx: int, my: int, stencil: StencilType) -> JacobianPattern:
    """
    Build the CSR pattern a DMDA of the given stencil type would preallocate.

    Every row couples to its stencil neighbours that exist on the grid; the
    diagonal is always present.
    """
    mx = int(mx)
    my = int(my)
    if mx < 1 or my < 1:
        raise ValueError(f"pattern needs positive grid sizes, got mx={mx}, my={my}")
    stencil = StencilType(stencil)
    offsets = stencil_offsets(stencil)

    N = mx * my
    indptr = np.zeros(N + 1, dtype=np.int64)
    indices_list = []
    nnz = 0
    max_row = 0
    for j in range(my):
        for i in range(mx):
            row = j * mx + i
            cols = sorted(
                (j + dj) * mx + (i + di)
                for di, dj in offsets
                if 0 <= i + di < mx and 0 <= j + dj < my
            )
            nnz += len(cols)
            max_row = max(max_row, len(cols))
            indptr[row + 1] = nnz
            indices_list.extend(cols)

    indices = np.asarray(indices_list, dtype=np.int64)
    meta = {
        "nnz_total": float(nnz),
        "nnz_avg": float(nnz) / float(N) if N > 0 else 0.0,
        "nnz_max_row": float(max_row),
    }
    return JacobianPattern(indptr=indptr, indices=indices, shape=(N, N), stencil=stencil, meta=meta)


def check_pattern_compatibility(jtype, stencil: StencilType) -> JacobianType:
    """
    Validate that ``jtype`` fits the allocated stencil before any entry is written.

    Returns the parsed JacobianType; raises UnsupportedJacobianTypeError for an
    unknown jtype and StencilPatternError for a BOX-only jtype on a STAR allocation.
    """
    jt = JacobianType.parse(jtype)
    stencil = StencilType(stencil)
    if jt.needs_box and stencil is StencilType.STAR:
        raise StencilPatternError(
            f"Jacobian type {int(jt)} assembles a 9-point (box) stencil but the matrix "
            "was preallocated for a 5-point (star) stencil; use jtype 1-3 or drop allocate_star"
        )
    return jt
