"""
Local Jacobian assembly for the p-Bratu residual (assembly/residual_local.py).

Four fidelity levels, selected by jtype:

    1  plain        5-point Laplacian of the p=2 problem, ignores eta entirely
    2  picard       5-point, eta frozen on each edge (no derivative of eta)
    3  star Newton  5-point, Newton edge terms; the cross terms that belong on the
                    diagonal neighbours are lumped onto the axis neighbours
    4  full Newton  9-point, exact linearisation of the flux-form residual

The Newton linearisation of an edge flux q = eta(ux, uy) * ux is

    dq = (eta + deta ux^2) d(ux) + (deta ux uy) d(uy) = newt d(ux) + skew d(uy)

and since the tangential gradient d(uy) is a 4-point average it reaches the
diagonal neighbours; jtype 4 keeps those entries, jtype 3 folds the
E-W / N-S skew differences into the axis entries instead.

Each strategy maps the shared EdgeState to {(di, dj): coefficient array}.
Boundary rows are identity rows, matching F = u there.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Tuple

import numpy as np

from assembly.jacobian_pattern import check_pattern_compatibility
from core.grid import GhostedArray
from core.types import JacobianType, LocalInfo, PBratuParams
from physics.stencil import EdgeState

logger = logging.getLogger(__name__)

Offset = Tuple[int, int]
RowCoefficients = Dict[Offset, object]
JacobianStrategy = Callable[[EdgeState, float, float, float], RowCoefficients]


def _reaction(state: EdgeState, sc: float):
    return sc * np.exp(state.u)


def jacobian_plain(state: EdgeState, hx: float, hy: float, sc: float) -> RowCoefficients:
    """Jacobian of the p=2 problem, whatever p is."""
    hxdhy = hx / hy
    hydhx = hy / hx
    ones = np.ones_like(state.u)
    return {
        (0, -1): -hxdhy * ones,
        (-1, 0): -hydhx * ones,
        (0, 0): 2.0 * (hydhx + hxdhy) - _reaction(state, sc),
        (1, 0): -hydhx * ones,
        (0, 1): -hxdhy * ones,
    }


def jacobian_picard(state: EdgeState, hx: float, hy: float, sc: float) -> RowCoefficients:
    """Picard linearisation: edge diffusivities frozen at the current iterate."""
    hxdhy = hx / hy
    hydhx = hy / hx
    return {
        (0, -1): -hxdhy * state.e_S,
        (-1, 0): -hydhx * state.e_W,
        (0, 0): (state.e_W + state.e_E) * hydhx + (state.e_S + state.e_N) * hxdhy - _reaction(state, sc),
        (1, 0): -hydhx * state.e_E,
        (0, 1): -hxdhy * state.e_N,
    }


def jacobian_star_newton(state: EdgeState, hx: float, hy: float, sc: float) -> RowCoefficients:
    """Newton terms on a 5-point stencil, cross terms lumped onto the axis neighbours."""
    hxdhy = hx / hy
    hydhx = hy / hx
    cross_EW = state.cross_EW
    cross_NS = state.cross_NS
    return {
        (0, -1): -hxdhy * state.newt_S + cross_EW,
        (-1, 0): -hydhx * state.newt_W + cross_NS,
        (0, 0): hxdhy * (state.newt_N + state.newt_S)
        + hydhx * (state.newt_E + state.newt_W)
        - _reaction(state, sc),
        (1, 0): -hydhx * state.newt_E - cross_NS,
        (0, 1): -hxdhy * state.newt_N - cross_EW,
    }


def jacobian_full_newton(state: EdgeState, hx: float, hy: float, sc: float) -> RowCoefficients:
    """
    Exact Jacobian on the 9-point stencil:

        -div [ eta grad(du) + deta (grad u . grad du) grad u ] - lambda exp(u) du
    """
    coeffs = jacobian_star_newton(state, hx, hy, sc)
    skew_E, skew_W = state.skew_E, state.skew_W
    skew_N, skew_S = state.skew_N, state.skew_S
    coeffs[(-1, -1)] = -0.25 * (skew_S + skew_W)
    coeffs[(1, -1)] = 0.25 * (skew_S + skew_E)
    coeffs[(-1, 1)] = 0.25 * (skew_N + skew_W)
    coeffs[(1, 1)] = -0.25 * (skew_N + skew_E)
    return coeffs


JACOBIAN_STRATEGIES: Dict[JacobianType, JacobianStrategy] = {
    JacobianType.PLAIN: jacobian_plain,
    JacobianType.PICARD: jacobian_picard,
    JacobianType.STAR_NEWTON: jacobian_star_newton,
    JacobianType.FULL_NEWTON: jacobian_full_newton,
}

# Row ordering used when emitting entries (south row first, as in the natural ordering).
_EMIT_ORDER: Tuple[Offset, ...] = (
    (-1, -1), (0, -1), (1, -1),
    (-1, 0), (0, 0), (1, 0),
    (-1, 1), (0, 1), (1, 1),
)


def interior_jacobian_coefficients(
    info: LocalInfo,
    x: GhostedArray,
    params: PBratuParams,
    jtype: JacobianType,
) -> Tuple[RowCoefficients, Tuple[int, int, int, int]]:
    """Coefficient arrays over the owned interior block plus the block ranges."""
    ilo, ihi, jlo, jhi = info.interior_ranges()
    if ilo >= ihi or jlo >= jhi:
        return {}, (ilo, ihi, jlo, jhi)
    hx, hy = info.hx, info.hy
    w = x.block(ilo, ihi, jlo, jhi, k=1)
    state = EdgeState.build(params, w, hx, hy)
    strategy = JACOBIAN_STRATEGIES[jtype]
    return strategy(state, hx, hy, hx * hy * params.lam), (ilo, ihi, jlo, jhi)


def form_jacobian_local(info: LocalInfo, x: GhostedArray, B, params: PBratuParams) -> None:
    """
    Assemble the Jacobian rows of all owned points into B, then finalise and lock it.

    B follows the stencil-matrix protocol (assembly/stencil_matrix.py). The
    jtype / preallocation compatibility is checked before any entry is written.
    """
    jtype = check_pattern_compatibility(params.jtype, B.stencil_type)
    coeffs, (ilo, ihi, jlo, jhi) = interior_jacobian_coefficients(info, x, params, jtype)
    offsets = [o for o in _EMIT_ORDER if o in coeffs]

    for j in range(info.ys, info.ys + info.ym):
        for i in range(info.xs, info.xs + info.xm):
            if info.is_boundary(i, j):
                B.set_values_stencil((i, j), [(i, j)], [1.0])
                continue
            a = i - ilo
            b = j - jlo
            cols = [(i + di, j + dj) for di, dj in offsets]
            vals = [float(coeffs[o][a, b]) for o in offsets]
            B.set_values_stencil((i, j), cols, vals)

    B.assembly_begin()
    B.assembly_end()
    # Never add a new nonzero location from here on; doing so is an error.
    B.lock_nonzero_locations()
    logger.debug(
        "Jacobian assembled: jtype=%d stencil=%s owned=%dx%d",
        int(jtype),
        B.stencil_type.value,
        info.xm,
        info.ym,
    )
