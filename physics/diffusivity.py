"""
p-Laplacian diffusivity closure.

    eta(gamma)  = (epsilon^2 + gamma)^((p-2)/2),   gamma = 1/2 (ux^2 + uy^2)
    deta(gamma) = d eta / d gamma = 1/2 (p-2) (epsilon^2 + gamma)^((p-4)/2)

so that d eta/d ux = deta * ux and d eta/d uy = deta * uy.

Both functions are pure and broadcast over numpy arrays of edge gradients.
epsilon > 0 keeps eta finite and positive at zero gradient; it is validated by
the config layer, not here.
"""

from __future__ import annotations

import numpy as np

from core.types import PBratuParams


def _strain(params: PBratuParams, ux, uy):
    return params.epsilon * params.epsilon + 0.5 * (ux * ux + uy * uy)


def eta(params: PBratuParams, ux, uy):
    """Diffusivity at an edge with gradient components (ux, uy)."""
    return np.power(_strain(params, ux, uy), 0.5 * (params.p - 2.0))


def deta(params: PBratuParams, ux, uy):
    """Derivative of eta with respect to gamma; identically zero for p == 2."""
    s = _strain(params, ux, uy)
    if params.p == 2:
        return np.zeros_like(s)
    return np.power(s, 0.5 * (params.p - 4.0)) * 0.5 * (params.p - 2.0)
