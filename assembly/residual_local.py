"""
Local residual F(u) of the p-Bratu problem over one grid partition.

    F = -hy (eta_E ux_E - eta_W ux_W) - hx (eta_N uy_N - eta_S uy_S) - hx hy lambda exp(u)

in flux form: diffusive fluxes live on cell edges and are differenced at the
centre. Boundary rows are F = u (homogeneous Dirichlet).

For p = 2 (eta == 1) the two flux differences collapse to the 5-point Laplacian
    (2u - u_W - u_E) hy/hx + (2u - u_S - u_N) hx/hy.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from core.grid import GhostedArray, boundary_mask
from core.types import FloatArray, LocalInfo, PBratuParams
from physics.stencil import EdgeState


def interior_residual(params: PBratuParams, state: EdgeState, hx: float, hy: float):
    """Residual at interior centres from precomputed edge quantities."""
    g = state.grad
    sc = hx * hy * params.lam
    uxx = -hy * (state.e_E * g.ux_E - state.e_W * g.ux_W)
    uyy = -hx * (state.e_N * g.uy_N - state.e_S * g.uy_S)
    return uxx + uyy - sc * np.exp(state.u)


def form_function_local(
    info: LocalInfo,
    x: GhostedArray,
    params: PBratuParams,
    f: Optional[FloatArray] = None,
) -> FloatArray:
    """
    Evaluate the residual at every owned point.

    x is the ghosted current field (read only). f, if given, is an owned
    (xm, ym) buffer that is overwritten; otherwise a fresh array is returned.
    """
    if f is None:
        f = np.empty(info.owned_shape, dtype=np.float64)
    elif f.shape != info.owned_shape:
        raise ValueError(f"residual buffer shape {f.shape} != owned shape {info.owned_shape}")

    hx, hy = info.hx, info.hy

    mask = boundary_mask(info)
    if np.any(mask):
        f[mask] = x.owned(info)[mask]

    ilo, ihi, jlo, jhi = info.interior_ranges()
    if ilo < ihi and jlo < jhi:
        w = x.block(ilo, ihi, jlo, jhi, k=1)
        state = EdgeState.build(params, w, hx, hy)
        f[ilo - info.xs : ihi - info.xs, jlo - info.ys : jhi - info.ys] = interior_residual(
            params, state, hx, hy
        )
    return f
