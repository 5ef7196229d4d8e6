"""
Serial nonlinear solve context.

Packages the configuration, problem parameters and single-partition ownership
record so the serial Newton loop only depends on residual(u) / jacobian(u).
Unknowns are flattened in natural ordering (row = j*mx + i).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from assembly.jacobian_local import form_jacobian_local
from assembly.residual_local import form_function_local
from assembly.stencil_matrix import PatternMatrix
from core.grid import GhostedArray, serial_local_info
from core.types import CaseConfig, LocalInfo, PBratuParams
from physics.initial import build_initial_guess


@dataclass(slots=True)
class NonlinearContext:
    cfg: CaseConfig
    params: PBratuParams
    info: LocalInfo
    jac: Optional[PatternMatrix] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_grid(self, u_flat: np.ndarray) -> np.ndarray:
        u_flat = np.asarray(u_flat, dtype=np.float64)
        return u_flat.reshape((self.info.my, self.info.mx)).T

    def to_flat(self, u_grid: np.ndarray) -> np.ndarray:
        return np.ascontiguousarray(np.asarray(u_grid, dtype=np.float64).T).ravel()

    def residual(self, u_flat: np.ndarray) -> np.ndarray:
        x = GhostedArray.from_local_info(self.info, self.to_grid(u_flat))
        self.meta["n_func_eval"] = int(self.meta.get("n_func_eval", 0)) + 1
        return self.to_flat(form_function_local(self.info, x, self.params))

    def jacobian(self, u_flat: np.ndarray) -> PatternMatrix:
        """
        Reassemble the Jacobian at u into the context's matrix.

        The matrix is allocated once with the configured stencil and reused, so
        every assembly after the first runs against a locked pattern.
        """
        if self.jac is None:
            self.jac = PatternMatrix(self.info.mx, self.info.my, self.cfg.stencil_type)
        x = GhostedArray.from_local_info(self.info, self.to_grid(u_flat))
        form_jacobian_local(self.info, x, self.jac, self.params)
        self.meta["n_jac_eval"] = int(self.meta.get("n_jac_eval", 0)) + 1
        return self.jac


def build_nonlinear_context(cfg: CaseConfig) -> Tuple[NonlinearContext, np.ndarray]:
    """
    Build the serial NonlinearContext and return the initial guess u0 (flat, natural order).
    """
    info = serial_local_info(cfg.grid.mx, cfg.grid.my)
    ctx = NonlinearContext(cfg=cfg, params=cfg.params(), info=info)
    u0 = ctx.to_flat(build_initial_guess(info))
    return ctx, u0
