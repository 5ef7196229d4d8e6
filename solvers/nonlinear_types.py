"""
Nonlinear solve result types shared by the SciPy Newton loop and PETSc SNES.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class NonlinearBackend(str, Enum):
    SCIPY = "scipy"
    PETSC = "petsc"


@dataclass(slots=True)
class NonlinearDiagnostics:
    """
    Outcome of one nonlinear solve.

    reason uses SNES converged-reason names (CONVERGED_FNORM_ABS, DIVERGED_MAX_IT, ...)
    for both backends; history_res_2 holds ||F||_2 at every accepted iterate.
    """

    converged: bool
    method: str
    n_iter: int
    res_norm_2: float
    res_norm_inf: float
    reason: str = ""
    history_res_2: List[float] = field(default_factory=list)
    message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        text = f"{self.reason or ('CONVERGED' if self.converged else 'DIVERGED')} Number of Newton iterations = {self.n_iter}"
        if self.message:
            text += f" ({self.message})"
        return text


@dataclass(slots=True)
class NonlinearSolveResult:
    """u is the full (mx, my) solution; empty on non-root MPI ranks."""

    u: np.ndarray
    diag: NonlinearDiagnostics
