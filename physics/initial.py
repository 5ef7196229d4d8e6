from __future__ import annotations

import numpy as np

from core.grid import boundary_mask
from core.types import FloatArray, LocalInfo


def build_initial_guess(info: LocalInfo) -> FloatArray:
    """
    Initial approximation over the owned part of the grid, shape (xm, ym).

    Boundary points are zero (homogeneous Dirichlet); interior points get the
    bump (1 - xx^2)(1 - yy^2) with xx, yy the grid coordinates mapped to [-1, 1].
    """
    ii = np.arange(info.xs, info.xs + info.xm, dtype=np.float64)[:, None]
    jj = np.arange(info.ys, info.ys + info.ym, dtype=np.float64)[None, :]
    xx = 2.0 * ii / (info.mx - 1) - 1.0
    yy = 2.0 * jj / (info.my - 1) - 1.0
    x = (1.0 - xx * xx) * (1.0 - yy * yy)
    x[boundary_mask(info)] = 0.0
    return x


def form_initial_guess(info: LocalInfo, out) -> None:
    """Write the initial guess into an owned (xm, ym) buffer in place."""
    out[...] = build_initial_guess(info)
