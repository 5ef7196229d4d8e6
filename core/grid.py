"""
Structured 2D grid helpers: ownership records, ghosted field access, index maps.

The stencil code never touches partitioning or halo exchange directly; it reads
the current field through :class:`GhostedArray`, which answers "give me the
(2k+1)-wide window centred at (i, j)" for any owned point.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .types import FloatArray, LocalInfo


def serial_local_info(mx: int, my: int) -> LocalInfo:
    """Ownership record for a single partition holding the whole grid."""
    mx = int(mx)
    my = int(my)
    if mx < 2 or my < 2:
        raise ValueError(f"grid needs mx, my >= 2, got mx={mx}, my={my}")
    return LocalInfo(mx=mx, my=my, xs=0, ys=0, xm=mx, ym=my, gxs=0, gys=0, gxm=mx, gym=my)


def natural_index(info: LocalInfo, i: int, j: int) -> int:
    """Global row of grid point (i, j) in natural ordering."""
    return int(j) * info.mx + int(i)


def boundary_mask(info: LocalInfo) -> np.ndarray:
    """Boolean (xm, ym) mask of owned points lying on the Dirichlet boundary."""
    ii = np.arange(info.xs, info.xs + info.xm)[:, None]
    jj = np.arange(info.ys, info.ys + info.ym)[None, :]
    return (ii == 0) | (jj == 0) | (ii == info.mx - 1) | (jj == info.my - 1)


class GhostedArray:
    """
    Read access to a ghosted local field by global (i, j) index.

    data has shape (gxm, gym) and data[0, 0] is grid point (gxs, gys).
    """

    __slots__ = ("data", "gxs", "gys")

    def __init__(self, data, gxs: int = 0, gys: int = 0) -> None:
        arr = np.asarray(data, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(f"GhostedArray expects a 2D array, got shape={arr.shape}")
        self.data = arr
        self.gxs = int(gxs)
        self.gys = int(gys)

    @classmethod
    def from_local_info(cls, info: LocalInfo, data) -> "GhostedArray":
        arr = np.asarray(data, dtype=np.float64)
        if arr.shape != info.ghosted_shape:
            raise ValueError(
                f"ghosted field shape {arr.shape} does not match local info {info.ghosted_shape}"
            )
        return cls(arr, info.gxs, info.gys)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    def __getitem__(self, ij) -> float:
        i, j = ij
        return float(self.data[int(i) - self.gxs, int(j) - self.gys])

    def _check_span(self, ilo: int, ihi: int, jlo: int, jhi: int) -> None:
        nx, ny = self.data.shape
        if ilo < 0 or jlo < 0 or ihi > nx or jhi > ny:
            raise IndexError(
                "stencil window leaves the ghosted region: "
                f"local span i=[{ilo},{ihi}) j=[{jlo},{jhi}) vs ghosted shape {self.data.shape}"
            )

    def window(self, i: int, j: int, k: int = 1) -> FloatArray:
        """(2k+1, 2k+1) neighbourhood of (i, j); w[k+di, k+dj] == u[i+di, j+dj]."""
        il = int(i) - self.gxs
        jl = int(j) - self.gys
        self._check_span(il - k, il + k + 1, jl - k, jl + k + 1)
        return self.data[il - k : il + k + 1, jl - k : jl + k + 1]

    def block(self, ilo: int, ihi: int, jlo: int, jhi: int, k: int = 1) -> FloatArray:
        """
        Stacked windows for every centre in [ilo, ihi) x [jlo, jhi).

        Returns shape (2k+1, 2k+1, ihi-ilo, jhi-jlo) so that
        out[k+di, k+dj] is the field shifted by (di, dj) over the block.
        """
        n_i = int(ihi) - int(ilo)
        n_j = int(jhi) - int(jlo)
        width = 2 * k + 1
        out = np.empty((width, width, max(n_i, 0), max(n_j, 0)), dtype=np.float64)
        if n_i <= 0 or n_j <= 0:
            return out
        il = int(ilo) - self.gxs
        jl = int(jlo) - self.gys
        self._check_span(il - k, il + n_i + k, jl - k, jl + n_j + k)
        for a in range(width):
            for b in range(width):
                out[a, b] = self.data[il - k + a : il - k + a + n_i, jl - k + b : jl - k + b + n_j]
        return out

    def owned(self, info: LocalInfo) -> FloatArray:
        """Copy of the owned (non-ghost) part as an (xm, ym) array."""
        il = info.xs - self.gxs
        jl = info.ys - self.gys
        return self.data[il : il + info.xm, jl : jl + info.ym].copy()
