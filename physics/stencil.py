"""
Edge-centred quantities of the 9-point p-Laplacian stencil.

For a centre (i, j) the diffusive flux is evaluated on the four cell edges
E (i+1/2, j), W (i-1/2, j), N (i, j+1/2), S (i, j-1/2). The gradient normal to
an edge is a plain difference; the tangential component is the 4-point average
of the two flanking centred differences, which is what pulls the diagonal
neighbours into the stencil.

Input is a stacked window ``w`` of shape (3, 3, ...) with
``w[1+di, 1+dj] == u[i+di, j+dj]`` (see core.grid.GhostedArray.block/window).
"""

from __future__ import annotations

from dataclasses import dataclass

from core.types import PBratuParams
from physics.diffusivity import deta, eta


@dataclass(slots=True)
class EdgeGradients:
    ux_E: object
    uy_E: object
    ux_W: object
    uy_W: object
    ux_N: object
    uy_N: object
    ux_S: object
    uy_S: object

    @classmethod
    def from_window(cls, w, hx: float, hy: float) -> "EdgeGradients":
        dhx = 1.0 / hx
        dhy = 1.0 / hy
        c = w[1, 1]
        e, wst = w[2, 1], w[0, 1]
        n, s = w[1, 2], w[1, 0]
        ne, nw = w[2, 2], w[0, 2]
        se, sw = w[2, 0], w[0, 0]
        return cls(
            ux_E=dhx * (e - c),
            uy_E=0.25 * dhy * (n + ne - s - se),
            ux_W=dhx * (c - wst),
            uy_W=0.25 * dhy * (nw + n - sw - s),
            ux_N=0.25 * dhx * (e + ne - wst - nw),
            uy_N=dhy * (n - c),
            ux_S=0.25 * dhx * (se + e - sw - wst),
            uy_S=dhy * (c - s),
        )


@dataclass(slots=True)
class EdgeState:
    """Edge gradients plus diffusivities; everything the Jacobian strategies consume."""

    u: object
    grad: EdgeGradients
    e_E: object
    e_W: object
    e_N: object
    e_S: object
    de_E: object
    de_W: object
    de_N: object
    de_S: object

    @classmethod
    def build(cls, params: PBratuParams, w, hx: float, hy: float) -> "EdgeState":
        g = EdgeGradients.from_window(w, hx, hy)
        return cls(
            u=w[1, 1],
            grad=g,
            e_E=eta(params, g.ux_E, g.uy_E),
            e_W=eta(params, g.ux_W, g.uy_W),
            e_N=eta(params, g.ux_N, g.uy_N),
            e_S=eta(params, g.ux_S, g.uy_S),
            de_E=deta(params, g.ux_E, g.uy_E),
            de_W=deta(params, g.ux_W, g.uy_W),
            de_N=deta(params, g.ux_N, g.uy_N),
            de_S=deta(params, g.ux_S, g.uy_S),
        )

    # Skew products deta * ux * uy: sensitivity of an edge flux to its tangential gradient.
    @property
    def skew_E(self):
        return self.de_E * self.grad.ux_E * self.grad.uy_E

    @property
    def skew_W(self):
        return self.de_W * self.grad.ux_W * self.grad.uy_W

    @property
    def skew_N(self):
        return self.de_N * self.grad.ux_N * self.grad.uy_N

    @property
    def skew_S(self):
        return self.de_S * self.grad.ux_S * self.grad.uy_S

    @property
    def cross_EW(self):
        return 0.25 * (self.skew_E - self.skew_W)

    @property
    def cross_NS(self):
        return 0.25 * (self.skew_N - self.skew_S)

    # Sensitivity of an edge flux to its normal gradient.
    @property
    def newt_E(self):
        return self.e_E + self.de_E * self.grad.ux_E ** 2

    @property
    def newt_W(self):
        return self.e_W + self.de_W * self.grad.ux_W ** 2

    @property
    def newt_N(self):
        return self.e_N + self.de_N * self.grad.uy_N ** 2

    @property
    def newt_S(self):
        return self.e_S + self.de_S * self.grad.uy_S ** 2
